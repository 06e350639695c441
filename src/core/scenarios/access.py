"""Owner-scoped record loading shared by the scenario services.

Records that belong to another owner are reported exactly like missing ones so
callers cannot probe for ids they do not own.
"""

import uuid
from datetime import datetime, timezone

from src.core.scenarios.errors import ScenarioNotFoundError
from src.core.scenarios.models import (
    FundRecord,
    LiveInstanceRecord,
    ScenarioFundingApplicationRecord,
    ScenarioInstanceFundingRecord,
    ScenarioInstanceRecord,
    ScenarioRecord,
)
from src.core.scenarios.repository import ScenarioStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def load_scenario(store: ScenarioStore, *, owner_id: str, scenario_id: str) -> ScenarioRecord:
    scenario = store.get_scenario(scenario_id=scenario_id)
    if scenario is None or scenario.owner_id != owner_id:
        raise ScenarioNotFoundError("SCENARIO_NOT_FOUND", scenario_id=scenario_id)
    return scenario


def load_scenario_instance(
    store: ScenarioStore,
    *,
    owner_id: str,
    scenario_instance_id: str,
    for_update: bool = False,
) -> ScenarioInstanceRecord:
    row = store.get_scenario_instance(
        scenario_instance_id=scenario_instance_id, for_update=for_update
    )
    if row is None or row.owner_id != owner_id:
        raise ScenarioNotFoundError(
            "SCENARIO_INSTANCE_NOT_FOUND", scenario_instance_id=scenario_instance_id
        )
    return row


def load_scenario_funding(
    store: ScenarioStore, *, owner_id: str, scenario_funding_id: str
) -> ScenarioInstanceFundingRecord:
    row = store.get_scenario_funding(scenario_funding_id=scenario_funding_id)
    if row is None or row.owner_id != owner_id:
        raise ScenarioNotFoundError(
            "SCENARIO_FUNDING_NOT_FOUND", scenario_funding_id=scenario_funding_id
        )
    return row


def load_instance(
    store: ScenarioStore, *, owner_id: str, instance_id: str, for_update: bool = False
) -> LiveInstanceRecord:
    row = store.get_instance(instance_id=instance_id, for_update=for_update)
    if row is None or row.owner_id != owner_id:
        raise ScenarioNotFoundError("INSTANCE_NOT_FOUND", instance_id=instance_id)
    return row


def load_fund(
    store: ScenarioStore, *, owner_id: str, fund_id: str, for_update: bool = False
) -> FundRecord:
    fund = store.get_fund(fund_id=fund_id, for_update=for_update)
    if fund is None or fund.owner_id != owner_id:
        raise ScenarioNotFoundError("FUND_NOT_FOUND", fund_id=fund_id)
    return fund


def load_application(
    store: ScenarioStore, *, owner_id: str, application_id: str
) -> ScenarioFundingApplicationRecord:
    row = store.get_application(application_id=application_id)
    if row is None or row.owner_id != owner_id:
        raise ScenarioNotFoundError(
            "FUNDING_APPLICATION_NOT_FOUND", application_id=application_id
        )
    return row
