from typing import Callable, Literal

from src.core.scenarios.errors import FeatureDisabledError

ScenarioFeature = Literal["SCENARIOS", "APPLY", "CONFLICT_RESOLUTION"]
CapabilityCheck = Callable[[ScenarioFeature], bool]

_DISABLED_CODES: dict[str, str] = {
    "SCENARIOS": "SCENARIOS_FEATURE_DISABLED",
    "APPLY": "SCENARIO_APPLY_FEATURE_DISABLED",
    "CONFLICT_RESOLUTION": "SCENARIO_CONFLICT_RESOLUTION_DISABLED",
}


def static_capabilities(
    *,
    scenarios: bool = True,
    apply: bool = True,
    conflict_resolution: bool = False,
) -> CapabilityCheck:
    flags = {
        "SCENARIOS": scenarios,
        "APPLY": apply,
        "CONFLICT_RESOLUTION": conflict_resolution,
    }

    def _check(feature: ScenarioFeature) -> bool:
        return flags.get(feature, False)

    return _check


def require_features(check: CapabilityCheck, *features: ScenarioFeature) -> None:
    for feature in features:
        if not check(feature):
            raise FeatureDisabledError(_DISABLED_CODES[feature], feature=feature)
