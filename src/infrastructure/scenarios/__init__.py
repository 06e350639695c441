from src.infrastructure.scenarios.in_memory import InMemoryScenarioRepository
from src.infrastructure.scenarios.postgres import (
    PostgresScenarioRepository,
    PostgresScenarioSession,
)

__all__ = [
    "InMemoryScenarioRepository",
    "PostgresScenarioRepository",
    "PostgresScenarioSession",
]
