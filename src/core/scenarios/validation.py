from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Optional

from src.core.scenarios.errors import ScenarioValidationError
from src.core.scenarios.models import FundRecord, FundType, OverrideTriplet
from src.core.scenarios.overrides import dump_field_value

_TRIPLET_KEYS = {"mode", "auto", "manual"}


def require_name(value: Optional[str], *, code: str) -> str:
    if value is None or not value.strip():
        raise ScenarioValidationError(code)
    return value.strip()


def normalize_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Checks a field set against the live instance-update contract.

    Keys must be non-empty strings. Values shaped like an override triplet must
    carry a valid mode; they are stored as plain dicts.
    """
    normalized: dict[str, Any] = {}
    for key, value in fields.items():
        if not isinstance(key, str) or not key.strip():
            raise ScenarioValidationError("INVALID_FIELD_KEY", field=key)
        if isinstance(value, OverrideTriplet):
            normalized[key] = dump_field_value(value)
            continue
        if isinstance(value, Mapping) and "mode" in value and set(value.keys()) <= _TRIPLET_KEYS:
            if value.get("mode") not in {"auto", "manual"}:
                raise ScenarioValidationError(
                    "INVALID_OVERRIDE_MODE", field=key, mode=value.get("mode")
                )
            normalized[key] = {
                "mode": value["mode"],
                "auto": dump_field_value(value.get("auto")),
                "manual": dump_field_value(value.get("manual")),
            }
            continue
        normalized[key] = dump_field_value(value)
    return normalized


def validate_allocation(*, amount_allocated: Decimal, amount_used: Decimal) -> None:
    if amount_allocated < 0 or amount_used < 0:
        raise ScenarioValidationError(
            "NEGATIVE_FUNDING_AMOUNT",
            amount_allocated=amount_allocated,
            amount_used=amount_used,
        )
    if amount_used > amount_allocated:
        raise ScenarioValidationError(
            "FUNDING_USED_EXCEEDS_ALLOCATED",
            amount_allocated=amount_allocated,
            amount_used=amount_used,
        )


def validate_fund_type(fund: FundRecord, fund_type: FundType) -> None:
    if fund.fund_type != fund_type:
        raise ScenarioValidationError(
            "FUND_TYPE_MISMATCH",
            fund_id=fund.fund_id,
            expected=fund.fund_type,
            actual=fund_type,
        )
