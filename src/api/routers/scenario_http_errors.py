from typing import NoReturn

from fastapi import HTTPException, status

from src.core.scenarios import (
    FeatureDisabledError,
    InsufficientFundsError,
    RollbackConflictError,
    ScenarioConflictError,
    ScenarioNotFoundError,
    ScenarioStaleReferenceError,
    ScenarioValidationError,
)

HTTP_422_UNPROCESSABLE = getattr(
    status,
    "HTTP_422_UNPROCESSABLE_CONTENT",
    status.HTTP_422_UNPROCESSABLE_ENTITY,
)


def raise_scenario_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, (ScenarioNotFoundError, FeatureDisabledError)):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()
        ) from exc
    if isinstance(
        exc,
        (
            ScenarioConflictError,
            ScenarioStaleReferenceError,
            InsufficientFundsError,
            RollbackConflictError,
        ),
    ):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_detail()) from exc
    if isinstance(exc, ScenarioValidationError):
        raise HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=exc.to_detail()) from exc
    raise exc
