from decimal import Decimal

import pytest

from src.core.scenarios import (
    RollbackConflictError,
    ScenarioApplyEngine,
    ScenarioNotFoundError,
    resolve,
    static_capabilities,
)
from src.core.scenarios.models import (
    ScenarioCreateRequest,
    ScenarioFundingCreateRequest,
    ScenarioFundingUpdateRequest,
    ScenarioInstanceCreateRequest,
    ScenarioInstanceUpdateRequest,
)
from tests.factories import bump_live_field, fund, live_funding, live_instance, triplet


@pytest.fixture
def applied(repository, scenario_service, instance_service, funding_service, apply_engine):
    """Live case with a 10000 loan allocation, applied with rent pinned and loan raised."""
    live_instance(repository)
    fund(repository, total="100000", available="90000")
    fund(repository, fund_id="fund_cash_1", fund_type="cash", total="50000")
    live_funding(repository, allocated="10000")
    scenario = scenario_service.create_scenario(
        owner_id="user_1", payload=ScenarioCreateRequest(name="Refinance")
    )
    branched = instance_service.add_instance_to_scenario(
        owner_id="user_1", scenario_id=scenario.scenario_id, instance_id="inst_1"
    )
    instance_service.update_scenario_instance(
        owner_id="user_1",
        scenario_instance_id=branched.scenario_instance_id,
        payload=ScenarioInstanceUpdateRequest(
            fields={"weekly_rent": triplet(500, 550), "strata_fees": 1200}
        ),
    )
    copied = funding_service.list_scenario_fundings(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )[0]
    funding_service.update_scenario_funding(
        owner_id="user_1",
        scenario_funding_id=copied.scenario_funding_id,
        payload=ScenarioFundingUpdateRequest(amount_allocated=Decimal("30000")),
    )
    funding_service.add_scenario_funding(
        owner_id="user_1",
        scenario_instance_id=branched.scenario_instance_id,
        payload=ScenarioFundingCreateRequest(
            fund_id="fund_cash_1", fund_type="cash", amount_allocated=Decimal("5000")
        ),
    )
    result = apply_engine.apply_scenario_instance(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )
    return branched, result


def test_rollback_restores_fields_allocations_and_fund_availability(
    repository, applied, apply_engine, instance_service
):
    branched, result = applied
    assert repository.get_fund(fund_id="fund_loan_1").available_amount == Decimal("70000")
    assert repository.get_fund(fund_id="fund_cash_1").available_amount == Decimal("45000")

    assert apply_engine.rollback_scenario_funding(
        owner_id="user_1", application_id=result.application_id
    )

    live = repository.get_instance(instance_id="inst_1")
    assert live.fields == {"weekly_rent": triplet(500)}
    assert resolve(live.fields["weekly_rent"]) == 500
    assert [
        (row.funding_id, row.amount_allocated)
        for row in repository.list_instance_fundings(instance_id="inst_1")
    ] == [("if_1", Decimal("10000"))]
    assert repository.get_fund(fund_id="fund_loan_1").available_amount == Decimal("90000")
    assert repository.get_fund(fund_id="fund_cash_1").available_amount == Decimal("50000")

    application = repository.get_application(application_id=result.application_id)
    assert application.status == "rolled_back"
    assert application.rolled_back_at is not None
    restored = instance_service.get_scenario_instance(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )
    assert restored.status == "draft"
    assert restored.applied_at is None
    assert restored.baseline_fields == {"weekly_rent": triplet(500)}


def test_rolled_back_scenario_can_be_applied_again(repository, applied, apply_engine):
    branched, result = applied
    apply_engine.rollback_scenario_funding(owner_id="user_1", application_id=result.application_id)

    again = apply_engine.apply_scenario_instance(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )

    assert again.success is True
    assert resolve(repository.get_instance(instance_id="inst_1").fields["weekly_rent"]) == 550
    assert repository.get_fund(fund_id="fund_loan_1").available_amount == Decimal("70000")


def test_rollback_defaults_to_latest_application_for_scenario_instance(
    repository, applied, apply_engine
):
    branched, result = applied

    apply_engine.rollback_scenario_funding(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )

    assert repository.get_application(application_id=result.application_id).status == (
        "rolled_back"
    )


def test_second_rollback_is_rejected(applied, apply_engine):
    _, result = applied
    apply_engine.rollback_scenario_funding(owner_id="user_1", application_id=result.application_id)

    with pytest.raises(RollbackConflictError) as exc:
        apply_engine.rollback_scenario_funding(
            owner_id="user_1", application_id=result.application_id
        )
    assert exc.value.code == "APPLICATION_ALREADY_ROLLED_BACK"


def test_rollback_refuses_when_live_field_changed_since_apply(repository, applied, apply_engine):
    _, result = applied
    bump_live_field(repository, instance_id="inst_1", key="strata_fees", value=1500)

    with pytest.raises(RollbackConflictError) as exc:
        apply_engine.rollback_scenario_funding(
            owner_id="user_1", application_id=result.application_id
        )

    assert exc.value.code == "LIVE_FIELD_CHANGED_SINCE_APPLY"
    assert exc.value.details["field"] == "strata_fees"
    assert repository.get_fund(fund_id="fund_loan_1").available_amount == Decimal("70000")
    assert repository.get_application(application_id=result.application_id).status == "applied"


def test_rollback_refuses_when_live_funding_changed_since_apply(
    repository, applied, apply_engine
):
    _, result = applied
    funding = repository.get_instance_funding(funding_id="if_1")
    funding.amount_used = Decimal("100")
    repository.update_instance_funding(funding)

    with pytest.raises(RollbackConflictError) as exc:
        apply_engine.rollback_scenario_funding(
            owner_id="user_1", application_id=result.application_id
        )
    assert exc.value.code == "LIVE_FUNDING_CHANGED_SINCE_APPLY"


def test_rollback_without_any_application_is_not_found(apply_engine):
    with pytest.raises(ScenarioNotFoundError) as exc:
        apply_engine.rollback_scenario_funding(owner_id="user_1")
    assert exc.value.code == "FUNDING_APPLICATION_NOT_FOUND"


def test_rollback_of_foreign_application_is_not_found(applied, apply_engine):
    _, result = applied

    with pytest.raises(ScenarioNotFoundError):
        apply_engine.rollback_scenario_funding(
            owner_id="user_2", application_id=result.application_id
        )


def _apply_new_build(
    repository, scenario_service, instance_service, funding_service, apply_engine
):
    fund(repository, fund_id="fund_cash_1", fund_type="cash", total="50000")
    scenario = scenario_service.create_scenario(
        owner_id="user_1", payload=ScenarioCreateRequest(name="New build")
    )
    created = instance_service.create_new_instance_in_scenario(
        owner_id="user_1",
        scenario_id=scenario.scenario_id,
        payload=ScenarioInstanceCreateRequest(
            display_name="Lot 7", fields={"weekly_rent": triplet(380)}
        ),
    )
    funding_service.add_scenario_funding(
        owner_id="user_1",
        scenario_instance_id=created.scenario_instance_id,
        payload=ScenarioFundingCreateRequest(
            fund_id="fund_cash_1", fund_type="cash", amount_allocated=Decimal("12000")
        ),
    )
    result = apply_engine.apply_scenario_instance(
        owner_id="user_1", scenario_instance_id=created.scenario_instance_id
    )
    return created, result


def test_rollback_of_create_removes_the_created_instance(
    repository, scenario_service, instance_service, funding_service, apply_engine
):
    created, result = _apply_new_build(
        repository, scenario_service, instance_service, funding_service, apply_engine
    )

    apply_engine.rollback_scenario_funding(owner_id="user_1")

    assert repository.get_instance(instance_id=result.applied_instance_id) is None
    assert repository.list_instance_fundings(instance_id=result.applied_instance_id) == []
    assert repository.get_fund(fund_id="fund_cash_1").available_amount == Decimal("50000")
    restored = instance_service.get_scenario_instance(
        owner_id="user_1", scenario_instance_id=created.scenario_instance_id
    )
    assert restored.source_instance_id is None
    assert restored.status == "draft"


def test_rollback_of_create_refuses_when_funding_was_added_since(
    repository, scenario_service, instance_service, funding_service, apply_engine
):
    _, result = _apply_new_build(
        repository, scenario_service, instance_service, funding_service, apply_engine
    )
    live_funding(
        repository,
        funding_id="if_9",
        instance_id=result.applied_instance_id,
        fund_id="fund_cash_1",
        fund_type="cash",
        allocated="1000",
    )

    with pytest.raises(RollbackConflictError) as exc:
        apply_engine.rollback_scenario_funding(
            owner_id="user_1", application_id=result.application_id
        )

    assert exc.value.code == "LIVE_FUNDING_ADDED_SINCE_APPLY"
    assert exc.value.details["funding_id"] == "if_9"
    assert repository.get_instance(instance_id=result.applied_instance_id) is not None
    assert len(repository.list_instance_fundings(instance_id=result.applied_instance_id)) == 2
    assert repository.get_application(application_id=result.application_id).status == "applied"


def test_rollback_only_needs_the_scenarios_feature(repository, applied):
    _, result = applied
    engine = ScenarioApplyEngine(
        repository=repository, capabilities=static_capabilities(apply=False)
    )

    assert engine.rollback_scenario_funding(owner_id="user_1", application_id=result.application_id)


def test_rollback_survives_later_apply_against_same_fund(
    repository, applied, scenario_service, instance_service, funding_service, apply_engine
):
    _, result = applied
    live_instance(repository, instance_id="inst_2", name="Unit 5")
    other = scenario_service.create_scenario(
        owner_id="user_1", payload=ScenarioCreateRequest(name="Second purchase")
    )
    branched = instance_service.add_instance_to_scenario(
        owner_id="user_1", scenario_id=other.scenario_id, instance_id="inst_2"
    )
    funding_service.add_scenario_funding(
        owner_id="user_1",
        scenario_instance_id=branched.scenario_instance_id,
        payload=ScenarioFundingCreateRequest(
            fund_id="fund_loan_1", fund_type="loan", amount_allocated=Decimal("20000")
        ),
    )
    later = apply_engine.apply_scenario_instance(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )
    assert repository.get_fund(fund_id="fund_loan_1").available_amount == Decimal("50000")

    apply_engine.rollback_scenario_funding(owner_id="user_1", application_id=result.application_id)

    assert repository.get_instance_funding(funding_id="if_1").amount_allocated == Decimal("10000")
    assert repository.get_fund(fund_id="fund_loan_1").available_amount == Decimal("70000")
    assert repository.get_fund(fund_id="fund_cash_1").available_amount == Decimal("50000")

    apply_engine.rollback_scenario_funding(owner_id="user_1", application_id=later.application_id)

    assert repository.list_instance_fundings(instance_id="inst_2") == []
    assert repository.get_fund(fund_id="fund_loan_1").available_amount == Decimal("90000")


def test_rollback_restores_scenario_value_replaced_by_live_resolution(
    repository, scenario_service, instance_service, apply_engine
):
    live_instance(repository, fields={"weekly_rent": triplet(500), "purchase_price": 650000})
    scenario = scenario_service.create_scenario(
        owner_id="user_1", payload=ScenarioCreateRequest(name="Hold")
    )
    branched = instance_service.add_instance_to_scenario(
        owner_id="user_1", scenario_id=scenario.scenario_id, instance_id="inst_1"
    )
    instance_service.update_scenario_instance(
        owner_id="user_1",
        scenario_instance_id=branched.scenario_instance_id,
        payload=ScenarioInstanceUpdateRequest(fields={"purchase_price": 600000}),
    )
    bump_live_field(repository, instance_id="inst_1", key="purchase_price", value=700000)
    result = apply_engine.apply_scenario_instance(
        owner_id="user_1",
        scenario_instance_id=branched.scenario_instance_id,
        resolutions={"purchase_price": "live"},
    )

    apply_engine.rollback_scenario_funding(owner_id="user_1", application_id=result.application_id)

    restored = instance_service.get_scenario_instance(
        owner_id="user_1", scenario_instance_id=branched.scenario_instance_id
    )
    assert restored.fields["purchase_price"] == 600000
    assert restored.baseline_fields["purchase_price"] == 650000
    assert repository.get_instance(instance_id="inst_1").fields["purchase_price"] == 700000
