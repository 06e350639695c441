from collections.abc import Mapping
from copy import deepcopy
from typing import Any, Optional

from src.core.scenarios.models import OverrideTriplet

_TRIPLET_KEYS = {"mode", "auto", "manual"}


def is_triplet(value: Any) -> bool:
    if isinstance(value, OverrideTriplet):
        return True
    if not isinstance(value, Mapping) or "mode" not in value:
        return False
    return value.get("mode") in {"auto", "manual"} and set(value.keys()) <= _TRIPLET_KEYS


def resolve(triplet: Any) -> Optional[Any]:
    """Effective value of an override triplet.

    A manual value only counts when the mode is ``manual`` and the value is set;
    otherwise the computed value wins. Missing triplets resolve to ``None``.
    """
    if triplet is None:
        return None
    if isinstance(triplet, OverrideTriplet):
        mode, auto, manual = triplet.mode, triplet.auto, triplet.manual
    elif isinstance(triplet, Mapping):
        mode, auto, manual = triplet.get("mode"), triplet.get("auto"), triplet.get("manual")
    else:
        return None
    if mode == "manual" and manual is not None:
        return manual
    return auto


def effective_value(value: Any) -> Optional[Any]:
    if is_triplet(value):
        return resolve(value)
    return value


def field_mode(value: Any) -> Optional[str]:
    if isinstance(value, OverrideTriplet):
        return value.mode
    if is_triplet(value):
        return value["mode"]
    return None


def is_manual_pin(value: Any) -> bool:
    if not is_triplet(value):
        return False
    return field_mode(value) == "manual" and _manual_of(value) is not None


def pin(value: Any, manual: Any) -> dict[str, Any]:
    """Returns a new triplet pinned to ``manual``, keeping the computed value."""
    return {"mode": "manual", "auto": _auto_of(value), "manual": deepcopy(manual)}


def unpin(value: Any) -> dict[str, Any]:
    return {"mode": "auto", "auto": _auto_of(value), "manual": None}


def dump_field_value(value: Any) -> Any:
    if isinstance(value, OverrideTriplet):
        return value.model_dump(mode="python")
    return deepcopy(value)


def _auto_of(value: Any) -> Any:
    if isinstance(value, OverrideTriplet):
        return deepcopy(value.auto)
    if is_triplet(value):
        return deepcopy(value.get("auto"))
    return deepcopy(value)


def _manual_of(value: Any) -> Any:
    if isinstance(value, OverrideTriplet):
        return value.manual
    return value.get("manual")
