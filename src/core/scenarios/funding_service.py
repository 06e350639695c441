from collections import defaultdict
from decimal import Decimal
from typing import Optional

from src.core.scenarios.access import (
    load_fund,
    load_scenario_funding,
    load_scenario_instance,
    new_id,
    utc_now,
)
from src.core.scenarios.features import CapabilityCheck, require_features
from src.core.scenarios.models import (
    ScenarioFundingApplicationRecord,
    ScenarioFundingConflict,
    ScenarioFundingCreateRequest,
    ScenarioFundingUpdateRequest,
    ScenarioInstanceFundingRecord,
)
from src.core.scenarios.repository import ScenarioRepository, ScenarioStore
from src.core.scenarios.validation import validate_allocation, validate_fund_type


class ScenarioFundingService:
    def __init__(
        self,
        *,
        repository: ScenarioRepository,
        capabilities: CapabilityCheck,
    ) -> None:
        self._repository = repository
        self._capabilities = capabilities

    def add_scenario_funding(
        self,
        *,
        owner_id: str,
        scenario_instance_id: str,
        payload: ScenarioFundingCreateRequest,
    ) -> ScenarioInstanceFundingRecord:
        require_features(self._capabilities, "SCENARIOS")
        validate_allocation(
            amount_allocated=payload.amount_allocated, amount_used=payload.amount_used
        )
        with self._repository.atomic() as store:
            _touch_scenario_instance(
                store, owner_id=owner_id, scenario_instance_id=scenario_instance_id
            )
            fund = load_fund(store, owner_id=owner_id, fund_id=payload.fund_id)
            validate_fund_type(fund, payload.fund_type)
            now = utc_now()
            funding = ScenarioInstanceFundingRecord(
                scenario_funding_id=new_id("sf"),
                scenario_instance_id=scenario_instance_id,
                owner_id=owner_id,
                fund_id=payload.fund_id,
                fund_type=payload.fund_type,
                amount_allocated=payload.amount_allocated,
                amount_used=payload.amount_used,
                notes=payload.notes,
                created_at=now,
                updated_at=now,
            )
            store.create_scenario_funding(funding)
        return funding

    def update_scenario_funding(
        self,
        *,
        owner_id: str,
        scenario_funding_id: str,
        payload: ScenarioFundingUpdateRequest,
    ) -> ScenarioInstanceFundingRecord:
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            funding = load_scenario_funding(
                store, owner_id=owner_id, scenario_funding_id=scenario_funding_id
            )
            if payload.amount_allocated is not None:
                funding.amount_allocated = payload.amount_allocated
            if payload.amount_used is not None:
                funding.amount_used = payload.amount_used
            if payload.notes is not None:
                funding.notes = payload.notes
            validate_allocation(
                amount_allocated=funding.amount_allocated, amount_used=funding.amount_used
            )
            funding.updated_at = utc_now()
            store.update_scenario_funding(funding)
            _touch_scenario_instance(
                store, owner_id=owner_id, scenario_instance_id=funding.scenario_instance_id
            )
        return funding

    def remove_scenario_funding(self, *, owner_id: str, scenario_funding_id: str) -> None:
        require_features(self._capabilities, "SCENARIOS")
        with self._repository.atomic() as store:
            funding = load_scenario_funding(
                store, owner_id=owner_id, scenario_funding_id=scenario_funding_id
            )
            store.delete_scenario_funding(scenario_funding_id=scenario_funding_id)
            _touch_scenario_instance(
                store, owner_id=owner_id, scenario_instance_id=funding.scenario_instance_id
            )

    def list_scenario_fundings(
        self, *, owner_id: str, scenario_instance_id: str
    ) -> list[ScenarioInstanceFundingRecord]:
        require_features(self._capabilities, "SCENARIOS")
        load_scenario_instance(
            self._repository, owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
        return self._repository.list_scenario_fundings(scenario_instance_id=scenario_instance_id)

    def check_funding_conflicts(
        self, *, owner_id: str, scenario_instance_id: str
    ) -> list[ScenarioFundingConflict]:
        """Compares scenario allocations with the live allocations of the source instance.

        Rows are matched on fund id. Scenario-only instances report every row as a
        new allocation.
        """
        require_features(self._capabilities, "SCENARIOS")
        scenario_instance = load_scenario_instance(
            self._repository, owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
        live_rows = {}
        if scenario_instance.source_instance_id is not None:
            live_rows = {
                row.fund_id: row
                for row in self._repository.list_instance_fundings(
                    instance_id=scenario_instance.source_instance_id
                )
            }
        requested: dict[str, Decimal] = defaultdict(Decimal)
        for row in self._repository.list_scenario_fundings(
            scenario_instance_id=scenario_instance_id
        ):
            requested[row.fund_id] += row.amount_allocated

        conflicts: list[ScenarioFundingConflict] = []
        for row in self._repository.list_scenario_fundings(
            scenario_instance_id=scenario_instance_id
        ):
            live = live_rows.get(row.fund_id)
            if live is None:
                conflicts.append(
                    ScenarioFundingConflict(
                        scenario_funding_id=row.scenario_funding_id,
                        fund_id=row.fund_id,
                        fund_type=row.fund_type,
                        conflict_type="new_allocation",
                        scenario_amount=row.amount_allocated,
                    )
                )
            elif live.amount_allocated != requested[row.fund_id]:
                conflicts.append(
                    ScenarioFundingConflict(
                        scenario_funding_id=row.scenario_funding_id,
                        fund_id=row.fund_id,
                        fund_type=row.fund_type,
                        conflict_type="amount_mismatch",
                        scenario_amount=row.amount_allocated,
                        live_amount=live.amount_allocated,
                        live_funding_id=live.funding_id,
                    )
                )
        return conflicts

    def list_funding_applications(
        self, *, owner_id: str, scenario_instance_id: Optional[str] = None
    ) -> list[ScenarioFundingApplicationRecord]:
        require_features(self._capabilities, "SCENARIOS")
        return self._repository.list_applications(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )


def _touch_scenario_instance(
    store: ScenarioStore, *, owner_id: str, scenario_instance_id: str
) -> None:
    # Funding edits invalidate any apply that loaded the previous allocation set.
    scenario_instance = load_scenario_instance(
        store, owner_id=owner_id, scenario_instance_id=scenario_instance_id, for_update=True
    )
    scenario_instance.status = "draft"
    scenario_instance.version += 1
    scenario_instance.updated_at = utc_now()
    store.update_scenario_instance(scenario_instance)
