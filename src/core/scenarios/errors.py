from typing import Any, Optional


class ScenarioLifecycleError(Exception):
    """Base error for scenario branching, apply and rollback.

    ``str(exc)`` is the stable error code; ``details`` carries the structured
    context (record ids, field names, values) a caller needs to render a remedy.
    """

    retriable = False

    def __init__(self, code: str, **details: Any) -> None:
        super().__init__(code)
        self.code = code
        self.details = details

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, **_jsonable(self.details)}


class ScenarioValidationError(ScenarioLifecycleError):
    pass


class ScenarioNotFoundError(ScenarioLifecycleError):
    pass


class ScenarioConflictError(ScenarioLifecycleError):
    retriable = True

    def __init__(self, code: str, *, conflicts: Optional[list] = None, **details: Any) -> None:
        super().__init__(code, conflicts=conflicts or [], **details)
        self.conflicts = conflicts or []


class ScenarioStaleReferenceError(ScenarioLifecycleError):
    retriable = True


class InsufficientFundsError(ScenarioLifecycleError):
    retriable = True


class RollbackConflictError(ScenarioLifecycleError):
    pass


class FeatureDisabledError(ScenarioLifecycleError):
    pass


def _jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
