import os
from typing import cast

from src.api.routers.runtime_utils import env_flag
from src.core.scenarios.features import CapabilityCheck, ScenarioFeature
from src.core.scenarios.repository import ScenarioRepository
from src.infrastructure.scenarios import InMemoryScenarioRepository, PostgresScenarioRepository

_FEATURE_FLAGS: dict[str, tuple[str, bool]] = {
    "SCENARIOS": ("SCENARIOS_ENABLED", True),
    "APPLY": ("SCENARIOS_APPLY_ENABLED", True),
    "CONFLICT_RESOLUTION": ("SCENARIOS_CONFLICT_RESOLUTION_ENABLED", False),
}


def scenario_store_backend_name() -> str:
    backend = os.getenv("SCENARIO_STORE_BACKEND", "IN_MEMORY").strip().upper()
    return "POSTGRES" if backend == "POSTGRES" else "IN_MEMORY"


def scenario_postgres_dsn() -> str:
    return os.getenv("SCENARIO_POSTGRES_DSN", "").strip()


def env_capabilities() -> CapabilityCheck:
    """Capability check backed by environment flags, read on every call."""

    def _check(feature: ScenarioFeature) -> bool:
        name, default = _FEATURE_FLAGS[feature]
        return env_flag(name, default)

    return _check


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repository() -> ScenarioRepository:
    if scenario_store_backend_name() == "POSTGRES":
        dsn = scenario_postgres_dsn()
        if not dsn:
            raise RuntimeError("SCENARIO_POSTGRES_DSN_REQUIRED")
        try:
            return cast(ScenarioRepository, PostgresScenarioRepository(dsn=dsn))
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("SCENARIO_POSTGRES_CONNECTION_FAILED") from exc
    return cast(ScenarioRepository, InMemoryScenarioRepository())
