import logging
from copy import deepcopy
from typing import Optional

from src.core.scenarios.access import (
    load_instance,
    load_scenario,
    load_scenario_instance,
    new_id,
    utc_now,
)
from src.core.scenarios.errors import ScenarioStaleReferenceError, ScenarioValidationError
from src.core.scenarios.features import CapabilityCheck, require_features
from src.core.scenarios.models import (
    ScenarioInstanceCreateRequest,
    ScenarioInstanceFundingRecord,
    ScenarioInstanceRecord,
    ScenarioInstanceUpdateRequest,
)
from src.core.scenarios.repository import ScenarioRepository, ScenarioStore
from src.core.scenarios.validation import normalize_fields, require_name

logger = logging.getLogger(__name__)


class ScenarioInstanceService:
    def __init__(
        self,
        *,
        repository: ScenarioRepository,
        capabilities: CapabilityCheck,
    ) -> None:
        self._repository = repository
        self._capabilities = capabilities

    def add_instance_to_scenario(
        self,
        *,
        owner_id: str,
        scenario_id: str,
        instance_id: str,
        display_name: Optional[str] = None,
    ) -> ScenarioInstanceRecord:
        """Branches a live instance into the scenario.

        Fields and funding allocations are deep-copied; the copied field set also
        becomes the baseline the apply diff compares against.
        """
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            load_scenario(store, owner_id=owner_id, scenario_id=scenario_id)
            live = load_instance(store, owner_id=owner_id, instance_id=instance_id)
            now = utc_now()
            scenario_instance = ScenarioInstanceRecord(
                scenario_instance_id=new_id("si"),
                scenario_id=scenario_id,
                owner_id=owner_id,
                source_instance_id=live.instance_id,
                display_name=(
                    require_name(display_name, code="SCENARIO_INSTANCE_NAME_REQUIRED")
                    if display_name is not None
                    else live.name
                ),
                fields=deepcopy(live.fields),
                baseline_fields=deepcopy(live.fields),
                status="draft",
                last_synced_at=now,
                created_at=now,
                updated_at=now,
            )
            store.create_scenario_instance(scenario_instance)
            self._copy_live_fundings(store, scenario_instance=scenario_instance, now=now)
        logger.info(
            "scenario_instance.branched",
            extra={
                "extra_fields": {
                    "owner_id": owner_id,
                    "scenario_id": scenario_id,
                    "scenario_instance_id": scenario_instance.scenario_instance_id,
                    "source_instance_id": instance_id,
                }
            },
        )
        return scenario_instance

    def create_new_instance_in_scenario(
        self,
        *,
        owner_id: str,
        scenario_id: str,
        payload: ScenarioInstanceCreateRequest,
    ) -> ScenarioInstanceRecord:
        require_features(self._capabilities, "SCENARIOS")
        display_name = require_name(payload.display_name, code="SCENARIO_INSTANCE_NAME_REQUIRED")
        fields = normalize_fields(payload.fields)
        with self._repository.atomic() as store:
            load_scenario(store, owner_id=owner_id, scenario_id=scenario_id)
            now = utc_now()
            scenario_instance = ScenarioInstanceRecord(
                scenario_instance_id=new_id("si"),
                scenario_id=scenario_id,
                owner_id=owner_id,
                source_instance_id=None,
                display_name=display_name,
                fields=fields,
                baseline_fields={},
                status="draft",
                created_at=now,
                updated_at=now,
            )
            store.create_scenario_instance(scenario_instance)
        return scenario_instance

    def get_scenario_instance(
        self, *, owner_id: str, scenario_instance_id: str
    ) -> ScenarioInstanceRecord:
        require_features(self._capabilities, "SCENARIOS")
        return load_scenario_instance(
            self._repository, owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )

    def list_scenario_instances(
        self, *, owner_id: str, scenario_id: str
    ) -> list[ScenarioInstanceRecord]:
        require_features(self._capabilities, "SCENARIOS")
        load_scenario(self._repository, owner_id=owner_id, scenario_id=scenario_id)
        return self._repository.list_scenario_instances(scenario_id=scenario_id)

    def update_scenario_instance(
        self,
        *,
        owner_id: str,
        scenario_instance_id: str,
        payload: ScenarioInstanceUpdateRequest,
        expected_version: Optional[int] = None,
    ) -> ScenarioInstanceRecord:
        """Edits the scenario copy only. Editing an applied copy starts a new draft cycle."""
        require_features(self._capabilities, "SCENARIOS")
        fields = normalize_fields(payload.fields)
        with self._repository.atomic() as store:
            scenario_instance = load_scenario_instance(
                store,
                owner_id=owner_id,
                scenario_instance_id=scenario_instance_id,
                for_update=True,
            )
            if expected_version is not None and expected_version != scenario_instance.version:
                raise ScenarioStaleReferenceError(
                    "SCENARIO_INSTANCE_VERSION_CHANGED",
                    scenario_instance_id=scenario_instance_id,
                    expected_version=expected_version,
                    actual_version=scenario_instance.version,
                )
            if payload.display_name is not None:
                scenario_instance.display_name = require_name(
                    payload.display_name, code="SCENARIO_INSTANCE_NAME_REQUIRED"
                )
            overlap = sorted(set(fields).intersection(payload.remove_fields))
            if overlap:
                raise ScenarioValidationError("FIELD_SET_AND_REMOVED", fields=overlap)
            scenario_instance.fields.update(fields)
            for key in payload.remove_fields:
                scenario_instance.fields.pop(key, None)
            _touch(scenario_instance)
            store.update_scenario_instance(scenario_instance)
        return scenario_instance

    def remove_scenario_instance(self, *, owner_id: str, scenario_instance_id: str) -> None:
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            load_scenario_instance(
                store, owner_id=owner_id, scenario_instance_id=scenario_instance_id
            )
            for funding in store.list_scenario_fundings(scenario_instance_id=scenario_instance_id):
                store.delete_scenario_funding(scenario_funding_id=funding.scenario_funding_id)
            store.delete_scenario_instance(scenario_instance_id=scenario_instance_id)

    def refresh_scenario_instance(
        self, *, owner_id: str, scenario_instance_id: str
    ) -> ScenarioInstanceRecord:
        """Discards scenario edits and re-branches from the current live instance."""
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            scenario_instance = load_scenario_instance(
                store,
                owner_id=owner_id,
                scenario_instance_id=scenario_instance_id,
                for_update=True,
            )
            if scenario_instance.source_instance_id is None:
                raise ScenarioValidationError(
                    "SCENARIO_INSTANCE_HAS_NO_SOURCE",
                    scenario_instance_id=scenario_instance_id,
                )
            live = store.get_instance(instance_id=scenario_instance.source_instance_id)
            if live is None or live.owner_id != owner_id:
                raise ScenarioStaleReferenceError(
                    "SOURCE_INSTANCE_NOT_FOUND",
                    scenario_instance_id=scenario_instance_id,
                    source_instance_id=scenario_instance.source_instance_id,
                )
            now = utc_now()
            scenario_instance.fields = deepcopy(live.fields)
            scenario_instance.baseline_fields = deepcopy(live.fields)
            scenario_instance.last_synced_at = now
            _touch(scenario_instance, now=now)
            store.update_scenario_instance(scenario_instance)
            for funding in store.list_scenario_fundings(scenario_instance_id=scenario_instance_id):
                store.delete_scenario_funding(scenario_funding_id=funding.scenario_funding_id)
            self._copy_live_fundings(store, scenario_instance=scenario_instance, now=now)
        return scenario_instance

    def _copy_live_fundings(
        self, store: ScenarioStore, *, scenario_instance: ScenarioInstanceRecord, now
    ) -> None:
        if scenario_instance.source_instance_id is None:
            return
        for funding in store.list_instance_fundings(
            instance_id=scenario_instance.source_instance_id
        ):
            store.create_scenario_funding(
                ScenarioInstanceFundingRecord(
                    scenario_funding_id=new_id("sf"),
                    scenario_instance_id=scenario_instance.scenario_instance_id,
                    owner_id=scenario_instance.owner_id,
                    fund_id=funding.fund_id,
                    fund_type=funding.fund_type,
                    amount_allocated=funding.amount_allocated,
                    amount_used=funding.amount_used,
                    notes=funding.notes,
                    created_at=now,
                    updated_at=now,
                )
            )


def _touch(scenario_instance: ScenarioInstanceRecord, *, now=None) -> None:
    scenario_instance.status = "draft"
    scenario_instance.version += 1
    scenario_instance.updated_at = now or utc_now()
