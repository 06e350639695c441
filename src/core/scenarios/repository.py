from typing import ContextManager, Optional, Protocol

from src.core.scenarios.models import (
    FundRecord,
    InstanceFundingRecord,
    LiveInstanceRecord,
    ScenarioFundingApplicationRecord,
    ScenarioInstanceFundingRecord,
    ScenarioInstanceRecord,
    ScenarioRecord,
)


class ScenarioStore(Protocol):
    def create_scenario(self, scenario: ScenarioRecord) -> None: ...

    def update_scenario(self, scenario: ScenarioRecord) -> None: ...

    def get_scenario(self, *, scenario_id: str) -> Optional[ScenarioRecord]: ...

    def list_scenarios(self, *, owner_id: str) -> list[ScenarioRecord]: ...

    def delete_scenario(self, *, scenario_id: str) -> None: ...

    def create_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None: ...

    def update_scenario_instance(self, scenario_instance: ScenarioInstanceRecord) -> None: ...

    def get_scenario_instance(
        self, *, scenario_instance_id: str, for_update: bool = False
    ) -> Optional[ScenarioInstanceRecord]: ...

    def list_scenario_instances(self, *, scenario_id: str) -> list[ScenarioInstanceRecord]: ...

    def delete_scenario_instance(self, *, scenario_instance_id: str) -> None: ...

    def create_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None: ...

    def update_scenario_funding(self, funding: ScenarioInstanceFundingRecord) -> None: ...

    def get_scenario_funding(
        self, *, scenario_funding_id: str
    ) -> Optional[ScenarioInstanceFundingRecord]: ...

    def list_scenario_fundings(
        self, *, scenario_instance_id: str
    ) -> list[ScenarioInstanceFundingRecord]: ...

    def delete_scenario_funding(self, *, scenario_funding_id: str) -> None: ...

    def create_instance(self, instance: LiveInstanceRecord) -> None: ...

    def update_instance(self, instance: LiveInstanceRecord) -> None: ...

    def get_instance(
        self, *, instance_id: str, for_update: bool = False
    ) -> Optional[LiveInstanceRecord]: ...

    def delete_instance(self, *, instance_id: str) -> None: ...

    def create_instance_funding(self, funding: InstanceFundingRecord) -> None: ...

    def update_instance_funding(self, funding: InstanceFundingRecord) -> None: ...

    def get_instance_funding(self, *, funding_id: str) -> Optional[InstanceFundingRecord]: ...

    def list_instance_fundings(self, *, instance_id: str) -> list[InstanceFundingRecord]: ...

    def list_fund_allocations(self, *, fund_id: str) -> list[InstanceFundingRecord]: ...

    def delete_instance_funding(self, *, funding_id: str) -> None: ...

    def create_fund(self, fund: FundRecord) -> None: ...

    def update_fund(self, fund: FundRecord) -> None: ...

    def get_fund(self, *, fund_id: str, for_update: bool = False) -> Optional[FundRecord]: ...

    def create_application(self, application: ScenarioFundingApplicationRecord) -> None: ...

    def update_application(self, application: ScenarioFundingApplicationRecord) -> None: ...

    def get_application(
        self, *, application_id: str
    ) -> Optional[ScenarioFundingApplicationRecord]: ...

    def list_applications(
        self, *, owner_id: str, scenario_instance_id: Optional[str] = None
    ) -> list[ScenarioFundingApplicationRecord]: ...


class ScenarioRepository(ScenarioStore, Protocol):
    def atomic(self) -> ContextManager[ScenarioStore]:
        """Unit of work: every write made through the yielded store becomes visible
        together when the block exits cleanly, and none of them does if it raises."""
        ...
