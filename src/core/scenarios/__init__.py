from src.core.scenarios.apply_engine import ScenarioApplyEngine
from src.core.scenarios.errors import (
    FeatureDisabledError,
    InsufficientFundsError,
    RollbackConflictError,
    ScenarioConflictError,
    ScenarioLifecycleError,
    ScenarioNotFoundError,
    ScenarioStaleReferenceError,
    ScenarioValidationError,
)
from src.core.scenarios.features import CapabilityCheck, static_capabilities
from src.core.scenarios.funding_service import ScenarioFundingService
from src.core.scenarios.instance_service import ScenarioInstanceService
from src.core.scenarios.models import (
    ApplyResult,
    ConflictCheckResult,
    ConflictReport,
    OverrideTriplet,
    ScenarioFundingApplicationRecord,
    ScenarioInstanceFundingRecord,
    ScenarioInstanceRecord,
    ScenarioRecord,
)
from src.core.scenarios.overrides import resolve
from src.core.scenarios.repository import ScenarioRepository, ScenarioStore
from src.core.scenarios.scenario_service import ScenarioService

__all__ = [
    "ApplyResult",
    "CapabilityCheck",
    "ConflictCheckResult",
    "ConflictReport",
    "FeatureDisabledError",
    "InsufficientFundsError",
    "OverrideTriplet",
    "RollbackConflictError",
    "ScenarioApplyEngine",
    "ScenarioConflictError",
    "ScenarioFundingApplicationRecord",
    "ScenarioFundingService",
    "ScenarioInstanceFundingRecord",
    "ScenarioInstanceRecord",
    "ScenarioInstanceService",
    "ScenarioLifecycleError",
    "ScenarioNotFoundError",
    "ScenarioRecord",
    "ScenarioRepository",
    "ScenarioService",
    "ScenarioStaleReferenceError",
    "ScenarioStore",
    "ScenarioValidationError",
    "resolve",
    "static_capabilities",
]
