"""Three-way field diff between a scenario copy, its branch baseline and the live case.

All comparisons run on resolved values, so flipping a field between auto and
manual without changing its effective value is not a change.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from src.core.scenarios.models import ConflictReport, ConflictResolutionChoice
from src.core.scenarios.overrides import effective_value, field_mode, is_manual_pin

_MISSING = object()


@dataclass(frozen=True)
class FieldDiff:
    writes: list[str] = field(default_factory=list)
    conflicts: list[ConflictReport] = field(default_factory=list)


def diff_fields(
    *,
    scenario_fields: Mapping[str, Any],
    baseline_fields: Mapping[str, Any],
    live_fields: Mapping[str, Any],
) -> FieldDiff:
    writes: list[str] = []
    conflicts: list[ConflictReport] = []
    for key in sorted(scenario_fields):
        scenario_value = effective_value(scenario_fields[key])
        baseline_raw = baseline_fields.get(key, _MISSING)
        live_raw = live_fields.get(key, _MISSING)
        baseline_value = None if baseline_raw is _MISSING else effective_value(baseline_raw)
        live_value = None if live_raw is _MISSING else effective_value(live_raw)

        scenario_changed = baseline_raw is _MISSING or scenario_value != baseline_value
        if not scenario_changed:
            continue
        live_changed = (baseline_raw is _MISSING) != (live_raw is _MISSING) or (
            live_value != baseline_value
        )
        if not live_changed:
            writes.append(key)
            continue
        if live_raw is not _MISSING and live_value == scenario_value:
            # Both sides converged on the same effective value.
            continue
        conflicts.append(
            ConflictReport(
                field=key,
                baseline_value=baseline_value,
                live_value=live_value,
                scenario_value=scenario_value,
                scenario_mode=field_mode(scenario_fields[key]),
            )
        )
    return FieldDiff(writes=writes, conflicts=conflicts)


def resolve_conflicts(
    conflicts: list[ConflictReport],
    *,
    scenario_fields: Mapping[str, Any],
    resolutions: Mapping[str, ConflictResolutionChoice],
    auto_resolve: bool,
) -> tuple[list[ConflictReport], list[ConflictReport]]:
    """Splits conflicts into (resolved, unresolved).

    An explicit per-field resolution always applies. Otherwise, with automatic
    resolution on, a manual pin in the scenario wins and anything else defers to
    the live value.
    """
    resolved: list[ConflictReport] = []
    unresolved: list[ConflictReport] = []
    for conflict in conflicts:
        choice: Optional[ConflictResolutionChoice] = resolutions.get(conflict.field)
        if choice is None and auto_resolve:
            choice = "scenario" if is_manual_pin(scenario_fields[conflict.field]) else "live"
        if choice is None:
            unresolved.append(conflict)
        else:
            resolved.append(conflict.model_copy(update={"resolution": choice}))
    return resolved, unresolved
