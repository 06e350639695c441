"""
FILE: tests/conftest.py
Shared fixtures for scenario tests.
"""

from pathlib import Path

import pytest

from src.api.routers.scenarios import reset_scenario_repository_for_tests
from src.core.scenarios import (
    ScenarioApplyEngine,
    ScenarioFundingService,
    ScenarioInstanceService,
    ScenarioService,
    static_capabilities,
)
from src.infrastructure.scenarios import InMemoryScenarioRepository


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if (
            _has_marker(item, "unit")
            or _has_marker(item, "integration")
            or _has_marker(item, "e2e")
        ):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        if "/tests/e2e/" in path:
            item.add_marker(pytest.mark.e2e)
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def scenario_runtime_test_harness(monkeypatch: pytest.MonkeyPatch):
    """Pin the API to a fresh in-memory store with default feature gates."""

    monkeypatch.delenv("APP_PERSISTENCE_PROFILE", raising=False)
    monkeypatch.setenv("SCENARIO_STORE_BACKEND", "IN_MEMORY")
    monkeypatch.delenv("SCENARIO_POSTGRES_DSN", raising=False)
    for name in (
        "SCENARIOS_ENABLED",
        "SCENARIOS_APPLY_ENABLED",
        "SCENARIOS_CONFLICT_RESOLUTION_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_scenario_repository_for_tests()
    yield
    reset_scenario_repository_for_tests()


@pytest.fixture
def repository() -> InMemoryScenarioRepository:
    return InMemoryScenarioRepository()


@pytest.fixture
def capabilities():
    return static_capabilities()


@pytest.fixture
def scenario_service(repository, capabilities) -> ScenarioService:
    return ScenarioService(repository=repository, capabilities=capabilities)


@pytest.fixture
def instance_service(repository, capabilities) -> ScenarioInstanceService:
    return ScenarioInstanceService(repository=repository, capabilities=capabilities)


@pytest.fixture
def funding_service(repository, capabilities) -> ScenarioFundingService:
    return ScenarioFundingService(repository=repository, capabilities=capabilities)


@pytest.fixture
def apply_engine(repository, capabilities) -> ScenarioApplyEngine:
    return ScenarioApplyEngine(repository=repository, capabilities=capabilities)
