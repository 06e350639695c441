from contextlib import contextmanager
from copy import deepcopy
from threading import RLock
from typing import Iterator, Optional

from src.core.scenarios.models import (
    FundRecord,
    InstanceFundingRecord,
    LiveInstanceRecord,
    ScenarioFundingApplicationRecord,
    ScenarioInstanceFundingRecord,
    ScenarioInstanceRecord,
    ScenarioRecord,
)
from src.core.scenarios.repository import ScenarioRepository, ScenarioStore


class InMemoryScenarioRepository(ScenarioRepository):
    def __init__(self) -> None:
        self._lock = RLock()
        self._scenarios: dict[str, ScenarioRecord] = {}
        self._scenario_instances: dict[str, ScenarioInstanceRecord] = {}
        self._scenario_fundings: dict[str, ScenarioInstanceFundingRecord] = {}
        self._instances: dict[str, LiveInstanceRecord] = {}
        self._instance_fundings: dict[str, InstanceFundingRecord] = {}
        self._funds: dict[str, FundRecord] = {}
        self._applications: dict[str, ScenarioFundingApplicationRecord] = {}

    @contextmanager
    def atomic(self) -> Iterator[ScenarioStore]:
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield self
            except Exception:
                self._restore(snapshot)
                raise

    def create_scenario(self, scenario: ScenarioRecord) -> None:
        with self._lock:
            self._scenarios[scenario.scenario_id] = deepcopy(scenario)

    def update_scenario(self, scenario: ScenarioRecord) -> None:
        with self._lock:
            self._scenarios[scenario.scenario_id] = deepcopy(scenario)

    def get_scenario(self, *, scenario_id: str) -> Optional[ScenarioRecord]:
        with self._lock:
            scenario = self._scenarios.get(scenario_id)
            return deepcopy(scenario) if scenario is not None else None

    def list_scenarios(self, *, owner_id: str) -> list[ScenarioRecord]:
        with self._lock:
            rows = [row for row in self._scenarios.values() if row.owner_id == owner_id]
            rows = sorted(rows, key=lambda x: (x.updated_at, x.scenario_id), reverse=True)
            return [deepcopy(row) for row in rows]

    def delete_scenario(self, *, scenario_id: str) -> None:
        with self._lock:
            self._scenarios.pop(scenario_id, None)

    def create_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None:
        with self._lock:
            self._scenario_instances[scenario_instance.scenario_instance_id] = deepcopy(
                scenario_instance
            )

    def update_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None:
        with self._lock:
            self._scenario_instances[scenario_instance.scenario_instance_id] = deepcopy(
                scenario_instance
            )

    def get_scenario_instance(
        self, *, scenario_instance_id: str, for_update: bool = False
    ) -> Optional[ScenarioInstanceRecord]:
        with self._lock:
            row = self._scenario_instances.get(scenario_instance_id)
            return deepcopy(row) if row is not None else None

    def list_scenario_instances(self, *, scenario_id: str) -> list[ScenarioInstanceRecord]:
        with self._lock:
            rows = [
                row for row in self._scenario_instances.values() if row.scenario_id == scenario_id
            ]
            rows = sorted(rows, key=lambda x: (x.created_at, x.scenario_instance_id))
            return [deepcopy(row) for row in rows]

    def delete_scenario_instance(self, *, scenario_instance_id: str) -> None:
        with self._lock:
            self._scenario_instances.pop(scenario_instance_id, None)

    def create_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None:
        with self._lock:
            self._scenario_fundings[funding.scenario_funding_id] = deepcopy(funding)

    def update_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None:
        with self._lock:
            self._scenario_fundings[funding.scenario_funding_id] = deepcopy(funding)

    def get_scenario_funding(
        self, *, scenario_funding_id: str
    ) -> Optional[ScenarioInstanceFundingRecord]:
        with self._lock:
            row = self._scenario_fundings.get(scenario_funding_id)
            return deepcopy(row) if row is not None else None

    def list_scenario_fundings(
        self, *, scenario_instance_id: str
    ) -> list[ScenarioInstanceFundingRecord]:
        with self._lock:
            rows = [
                row
                for row in self._scenario_fundings.values()
                if row.scenario_instance_id == scenario_instance_id
            ]
            rows = sorted(rows, key=lambda x: (x.created_at, x.scenario_funding_id))
            return [deepcopy(row) for row in rows]

    def delete_scenario_funding(self, *, scenario_funding_id: str) -> None:
        with self._lock:
            self._scenario_fundings.pop(scenario_funding_id, None)

    def create_instance(self, instance: LiveInstanceRecord) -> None:
        with self._lock:
            self._instances[instance.instance_id] = deepcopy(instance)

    def update_instance(self, instance: LiveInstanceRecord) -> None:
        with self._lock:
            self._instances[instance.instance_id] = deepcopy(instance)

    def get_instance(
        self, *, instance_id: str, for_update: bool = False
    ) -> Optional[LiveInstanceRecord]:
        with self._lock:
            row = self._instances.get(instance_id)
            return deepcopy(row) if row is not None else None

    def delete_instance(self, *, instance_id: str) -> None:
        with self._lock:
            self._instances.pop(instance_id, None)

    def create_instance_funding(self, funding: InstanceFundingRecord) -> None:
        with self._lock:
            self._instance_fundings[funding.funding_id] = deepcopy(funding)

    def update_instance_funding(self, funding: InstanceFundingRecord) -> None:
        with self._lock:
            self._instance_fundings[funding.funding_id] = deepcopy(funding)

    def get_instance_funding(self, *, funding_id: str) -> Optional[InstanceFundingRecord]:
        with self._lock:
            row = self._instance_fundings.get(funding_id)
            return deepcopy(row) if row is not None else None

    def list_instance_fundings(self, *, instance_id: str) -> list[InstanceFundingRecord]:
        with self._lock:
            rows = [
                row for row in self._instance_fundings.values() if row.instance_id == instance_id
            ]
            rows = sorted(rows, key=lambda x: (x.allocation_date, x.funding_id))
            return [deepcopy(row) for row in rows]

    def list_fund_allocations(self, *, fund_id: str) -> list[InstanceFundingRecord]:
        with self._lock:
            rows = [row for row in self._instance_fundings.values() if row.fund_id == fund_id]
            rows = sorted(rows, key=lambda x: (x.allocation_date, x.funding_id))
            return [deepcopy(row) for row in rows]

    def delete_instance_funding(self, *, funding_id: str) -> None:
        with self._lock:
            self._instance_fundings.pop(funding_id, None)

    def create_fund(self, fund: FundRecord) -> None:
        with self._lock:
            self._funds[fund.fund_id] = deepcopy(fund)

    def update_fund(self, fund: FundRecord) -> None:
        with self._lock:
            self._funds[fund.fund_id] = deepcopy(fund)

    def get_fund(self, *, fund_id: str, for_update: bool = False) -> Optional[FundRecord]:
        with self._lock:
            fund = self._funds.get(fund_id)
            return deepcopy(fund) if fund is not None else None

    def create_application(self, application: ScenarioFundingApplicationRecord) -> None:
        with self._lock:
            self._applications[application.application_id] = deepcopy(application)

    def update_application(self, application: ScenarioFundingApplicationRecord) -> None:
        with self._lock:
            self._applications[application.application_id] = deepcopy(application)

    def get_application(
        self, *, application_id: str
    ) -> Optional[ScenarioFundingApplicationRecord]:
        with self._lock:
            row = self._applications.get(application_id)
            return deepcopy(row) if row is not None else None

    def list_applications(
        self, *, owner_id: str, scenario_instance_id: Optional[str] = None
    ) -> list[ScenarioFundingApplicationRecord]:
        with self._lock:
            rows = [row for row in self._applications.values() if row.owner_id == owner_id]
        if scenario_instance_id is not None:
            rows = [row for row in rows if row.scenario_instance_id == scenario_instance_id]
        rows = sorted(rows, key=lambda x: (x.applied_at, x.application_id), reverse=True)
        return [deepcopy(row) for row in rows]

    def _snapshot(self) -> tuple:
        return deepcopy(
            (
                self._scenarios,
                self._scenario_instances,
                self._scenario_fundings,
                self._instances,
                self._instance_fundings,
                self._funds,
                self._applications,
            )
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self._scenarios,
            self._scenario_instances,
            self._scenario_fundings,
            self._instances,
            self._instance_fundings,
            self._funds,
            self._applications,
        ) = snapshot
