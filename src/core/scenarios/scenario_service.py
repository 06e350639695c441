import logging
from copy import deepcopy

from src.core.scenarios.access import load_scenario, new_id, utc_now
from src.core.scenarios.errors import ScenarioConflictError
from src.core.scenarios.features import CapabilityCheck, require_features
from src.core.scenarios.models import (
    ScenarioCreateRequest,
    ScenarioRecord,
    ScenarioUpdateRequest,
)
from src.core.scenarios.repository import ScenarioRepository
from src.core.scenarios.validation import require_name

logger = logging.getLogger(__name__)


class ScenarioService:
    def __init__(
        self,
        *,
        repository: ScenarioRepository,
        capabilities: CapabilityCheck,
    ) -> None:
        self._repository = repository
        self._capabilities = capabilities

    def create_scenario(self, *, owner_id: str, payload: ScenarioCreateRequest) -> ScenarioRecord:
        require_features(self._capabilities, "SCENARIOS")
        now = utc_now()
        scenario = ScenarioRecord(
            scenario_id=new_id("sc"),
            owner_id=owner_id,
            name=require_name(payload.name, code="SCENARIO_NAME_REQUIRED"),
            description=payload.description,
            is_primary=False,
            status="draft",
            tags=list(payload.tags),
            settings=dict(payload.settings),
            created_at=now,
            updated_at=now,
        )
        self._repository.create_scenario(scenario)
        logger.info(
            "scenario.created",
            extra={"extra_fields": {"owner_id": owner_id, "scenario_id": scenario.scenario_id}},
        )
        return scenario

    def get_scenario(self, *, owner_id: str, scenario_id: str) -> ScenarioRecord:
        require_features(self._capabilities, "SCENARIOS")
        return load_scenario(self._repository, owner_id=owner_id, scenario_id=scenario_id)

    def list_scenarios(self, *, owner_id: str) -> list[ScenarioRecord]:
        require_features(self._capabilities, "SCENARIOS")
        return self._repository.list_scenarios(owner_id=owner_id)

    def update_scenario(
        self, *, owner_id: str, scenario_id: str, payload: ScenarioUpdateRequest
    ) -> ScenarioRecord:
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            scenario = load_scenario(store, owner_id=owner_id, scenario_id=scenario_id)
            if payload.name is not None:
                scenario.name = require_name(payload.name, code="SCENARIO_NAME_REQUIRED")
            if payload.description is not None:
                scenario.description = payload.description
            if payload.status is not None:
                scenario.status = payload.status
            if payload.tags is not None:
                scenario.tags = list(payload.tags)
            if payload.settings is not None:
                scenario.settings = dict(payload.settings)
            if payload.snapshot is not None:
                scenario.snapshot = dict(payload.snapshot)
                scenario.snapshot_version += 1
            scenario.updated_at = utc_now()
            store.update_scenario(scenario)
        return scenario

    def delete_scenario(self, *, owner_id: str, scenario_id: str) -> None:
        """Deletes a scenario with its instances and their fundings.

        The primary scenario cannot be deleted; promote another one first.
        Applications recorded against its instances are kept for audit.
        """
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            scenario = load_scenario(store, owner_id=owner_id, scenario_id=scenario_id)
            if scenario.is_primary:
                raise ScenarioConflictError("SCENARIO_IS_PRIMARY", scenario_id=scenario_id)
            for row in store.list_scenario_instances(scenario_id=scenario_id):
                for funding in store.list_scenario_fundings(
                    scenario_instance_id=row.scenario_instance_id
                ):
                    store.delete_scenario_funding(scenario_funding_id=funding.scenario_funding_id)
                store.delete_scenario_instance(scenario_instance_id=row.scenario_instance_id)
            store.delete_scenario(scenario_id=scenario_id)
        logger.info(
            "scenario.deleted",
            extra={"extra_fields": {"owner_id": owner_id, "scenario_id": scenario_id}},
        )

    def set_primary_scenario(self, *, owner_id: str, scenario_id: str) -> ScenarioRecord:
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            target = load_scenario(store, owner_id=owner_id, scenario_id=scenario_id)
            if target.is_primary:
                return target
            now = utc_now()
            for scenario in store.list_scenarios(owner_id=owner_id):
                if scenario.is_primary:
                    scenario.is_primary = False
                    scenario.updated_at = now
                    store.update_scenario(scenario)
            target.is_primary = True
            target.updated_at = now
            store.update_scenario(target)
        logger.info(
            "scenario.primary_changed",
            extra={"extra_fields": {"owner_id": owner_id, "scenario_id": scenario_id}},
        )
        return target

    def duplicate_scenario(self, *, owner_id: str, scenario_id: str) -> ScenarioRecord:
        """Copies the scenario header and snapshot; instances stay with the source."""
        require_features(self._capabilities, "SCENARIOS")
        source = load_scenario(self._repository, owner_id=owner_id, scenario_id=scenario_id)
        now = utc_now()
        duplicate = ScenarioRecord(
            scenario_id=new_id("sc"),
            owner_id=owner_id,
            name=f"{source.name} (Copy)",
            description=source.description,
            is_primary=False,
            status="draft",
            tags=list(source.tags),
            settings=deepcopy(source.settings),
            snapshot=deepcopy(source.snapshot),
            snapshot_version=source.snapshot_version,
            created_at=now,
            updated_at=now,
        )
        self._repository.create_scenario(duplicate)
        logger.info(
            "scenario.duplicated",
            extra={
                "extra_fields": {
                    "owner_id": owner_id,
                    "scenario_id": duplicate.scenario_id,
                    "source_scenario_id": scenario_id,
                }
            },
        )
        return duplicate
