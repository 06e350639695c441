from decimal import Decimal

import pytest

from src.core.scenarios import ScenarioNotFoundError, ScenarioValidationError
from src.core.scenarios.models import (
    ScenarioCreateRequest,
    ScenarioFundingCreateRequest,
    ScenarioFundingUpdateRequest,
    ScenarioInstanceCreateRequest,
)
from tests.factories import fund, live_funding, live_instance


@pytest.fixture
def branched(repository, scenario_service, instance_service):
    live_instance(repository)
    fund(repository)
    fund(repository, fund_id="fund_cash_1", fund_type="cash", total="50000")
    live_funding(repository, allocated="10000")
    scenario = scenario_service.create_scenario(
        owner_id="user_1", payload=ScenarioCreateRequest(name="Funding")
    )
    return instance_service.add_instance_to_scenario(
        owner_id="user_1", scenario_id=scenario.scenario_id, instance_id="inst_1"
    )


def _add(funding_service, branched, **overrides):
    payload = {"fund_id": "fund_cash_1", "fund_type": "cash", "amount_allocated": "5000"}
    payload.update(overrides)
    return funding_service.add_scenario_funding(
        owner_id="user_1",
        scenario_instance_id=branched.scenario_instance_id,
        payload=ScenarioFundingCreateRequest(**payload),
    )


def test_add_funding_bumps_scenario_instance_version(
    repository, branched, funding_service, instance_service
):
    created = _add(funding_service, branched)

    assert created.amount_allocated == Decimal("5000")
    assert created.scenario_funding_id.startswith("sf_")
    current = instance_service.get_scenario_instance(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )
    assert current.version == branched.version + 1
    assert len(repository.list_instance_fundings(instance_id="inst_1")) == 1


def test_add_funding_validates_fund_and_amounts(branched, funding_service):
    with pytest.raises(ScenarioNotFoundError) as missing:
        _add(funding_service, branched, fund_id="fund_nope")
    assert missing.value.code == "FUND_NOT_FOUND"

    with pytest.raises(ScenarioValidationError) as mismatch:
        _add(funding_service, branched, fund_type="loan")
    assert mismatch.value.code == "FUND_TYPE_MISMATCH"

    with pytest.raises(ScenarioValidationError) as negative:
        _add(funding_service, branched, amount_allocated="-1")
    assert negative.value.code == "NEGATIVE_FUNDING_AMOUNT"

    with pytest.raises(ScenarioValidationError) as overused:
        _add(funding_service, branched, amount_allocated="100", amount_used="200")
    assert overused.value.code == "FUNDING_USED_EXCEEDS_ALLOCATED"


def test_foreign_fund_is_not_visible(repository, branched, funding_service):
    fund(repository, fund_id="fund_other", owner_id="user_2", fund_type="cash")

    with pytest.raises(ScenarioNotFoundError):
        _add(funding_service, branched, fund_id="fund_other")


def test_update_and_remove_funding(repository, branched, funding_service):
    created = _add(funding_service, branched)

    updated = funding_service.update_scenario_funding(
        owner_id="user_1",
        scenario_funding_id=created.scenario_funding_id,
        payload=ScenarioFundingUpdateRequest(amount_allocated=Decimal("7500"), notes="Top-up"),
    )
    assert updated.amount_allocated == Decimal("7500")
    assert updated.notes == "Top-up"

    with pytest.raises(ScenarioValidationError):
        funding_service.update_scenario_funding(
            owner_id="user_1",
            scenario_funding_id=created.scenario_funding_id,
            payload=ScenarioFundingUpdateRequest(amount_used=Decimal("9000")),
        )
    assert repository.get_scenario_funding(
        scenario_funding_id=created.scenario_funding_id
    ).amount_used == Decimal("0")

    funding_service.remove_scenario_funding(
        owner_id="user_1", scenario_funding_id=created.scenario_funding_id
    )
    remaining = funding_service.list_scenario_fundings(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )
    assert [row.fund_id for row in remaining] == ["fund_loan_1"]


def test_check_funding_conflicts_reports_mismatch_and_new_allocations(
    branched, funding_service
):
    assert (
        funding_service.check_funding_conflicts(
            owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
        )
        == []
    )

    copied = funding_service.list_scenario_fundings(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )[0]
    funding_service.update_scenario_funding(
        owner_id="user_1",
        scenario_funding_id=copied.scenario_funding_id,
        payload=ScenarioFundingUpdateRequest(amount_allocated=Decimal("15000")),
    )
    _add(funding_service, branched)

    conflicts = funding_service.check_funding_conflicts(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )
    by_fund = {item.fund_id: item for item in conflicts}
    assert by_fund["fund_loan_1"].conflict_type == "amount_mismatch"
    assert by_fund["fund_loan_1"].live_amount == Decimal("10000")
    assert by_fund["fund_loan_1"].scenario_amount == Decimal("15000")
    assert by_fund["fund_loan_1"].live_funding_id == "if_1"
    assert by_fund["fund_cash_1"].conflict_type == "new_allocation"
    assert by_fund["fund_cash_1"].live_amount is None


def test_scenario_only_instance_reports_every_row_as_new(
    repository, scenario_service, instance_service, funding_service
):
    fund(repository, fund_id="fund_cash_1", fund_type="cash", total="50000")
    scenario = scenario_service.create_scenario(
        owner_id="user_1", payload=ScenarioCreateRequest(name="New build")
    )
    created = instance_service.create_new_instance_in_scenario(
        owner_id="user_1",
        scenario_id=scenario.scenario_id,
        payload=ScenarioInstanceCreateRequest(display_name="Lot 7"),
    )
    _add(funding_service, created)

    conflicts = funding_service.check_funding_conflicts(
        owner_id="user_1", scenario_instance_id=created.scenario_instance_id
    )
    assert [item.conflict_type for item in conflicts] == ["new_allocation"]
