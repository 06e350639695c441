from __future__ import annotations

import os

from src.api.routers.scenarios_config import (
    scenario_postgres_dsn,
    scenario_store_backend_name,
)

_PRODUCTION_PROFILE = "PRODUCTION"
_LOCAL_PROFILE = "LOCAL"


def app_persistence_profile_name() -> str:
    profile = os.getenv("APP_PERSISTENCE_PROFILE", _LOCAL_PROFILE).strip().upper()
    return _PRODUCTION_PROFILE if profile == _PRODUCTION_PROFILE else _LOCAL_PROFILE


def validate_persistence_profile_guardrails() -> None:
    """Refuses to start a production profile on the in-memory scenario store."""
    if app_persistence_profile_name() != _PRODUCTION_PROFILE:
        return
    if scenario_store_backend_name() != "POSTGRES":
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_SCENARIO_POSTGRES")
    if not scenario_postgres_dsn():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_SCENARIO_POSTGRES_DSN")
