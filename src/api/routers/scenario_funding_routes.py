from typing import Annotated, Optional

from fastapi import Depends, Path, Query, status

from src.api.routers import scenarios as shared
from src.api.routers.scenario_http_errors import raise_scenario_http_exception
from src.core.scenarios import (
    ApplyResult,
    ConflictCheckResult,
    ScenarioApplyEngine,
    ScenarioFundingApplicationRecord,
    ScenarioFundingService,
    ScenarioInstanceFundingRecord,
    ScenarioLifecycleError,
)
from src.core.scenarios.models import (
    ScenarioApplyRequest,
    ScenarioFundingConflict,
    ScenarioFundingCreateRequest,
    ScenarioFundingUpdateRequest,
    ScenarioRollbackRequest,
)

ScenarioFundingId = Annotated[
    str, Path(description="Scenario funding identifier.", examples=["sf_001"])
]


@shared.router.get(
    "/scenario-instances/{scenario_instance_id}/fundings",
    response_model=list[ScenarioInstanceFundingRecord],
    status_code=status.HTTP_200_OK,
    summary="List Scenario Fundings",
)
def list_scenario_fundings(
    scenario_instance_id: shared.ScenarioInstanceId,
    owner_id: shared.OwnerId,
    service: Annotated[ScenarioFundingService, Depends(shared.get_scenario_funding_service)],
) -> list[ScenarioInstanceFundingRecord]:
    try:
        return service.list_scenario_fundings(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@shared.router.post(
    "/scenario-instances/{scenario_instance_id}/fundings",
    response_model=ScenarioInstanceFundingRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Add Scenario Funding",
    description="Adds an allocation to the scenario copy; fund balances move only on apply.",
)
def add_scenario_funding(
    scenario_instance_id: shared.ScenarioInstanceId,
    payload: ScenarioFundingCreateRequest,
    owner_id: shared.OwnerId,
    service: Annotated[ScenarioFundingService, Depends(shared.get_scenario_funding_service)],
) -> ScenarioInstanceFundingRecord:
    try:
        return service.add_scenario_funding(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id, payload=payload
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@shared.router.patch(
    "/scenario-fundings/{scenario_funding_id}",
    response_model=ScenarioInstanceFundingRecord,
    status_code=status.HTTP_200_OK,
    summary="Update Scenario Funding",
)
def update_scenario_funding(
    scenario_funding_id: ScenarioFundingId,
    payload: ScenarioFundingUpdateRequest,
    owner_id: shared.OwnerId,
    service: Annotated[ScenarioFundingService, Depends(shared.get_scenario_funding_service)],
) -> ScenarioInstanceFundingRecord:
    try:
        return service.update_scenario_funding(
            owner_id=owner_id, scenario_funding_id=scenario_funding_id, payload=payload
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@shared.router.delete(
    "/scenario-fundings/{scenario_funding_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove Scenario Funding",
)
def remove_scenario_funding(
    scenario_funding_id: ScenarioFundingId,
    owner_id: shared.OwnerId,
    service: Annotated[ScenarioFundingService, Depends(shared.get_scenario_funding_service)],
) -> None:
    try:
        service.remove_scenario_funding(owner_id=owner_id, scenario_funding_id=scenario_funding_id)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@shared.router.get(
    "/scenario-instances/{scenario_instance_id}/funding-conflicts",
    response_model=list[ScenarioFundingConflict],
    status_code=status.HTTP_200_OK,
    summary="Check Scenario Funding Conflicts",
    description="Compares scenario allocations with the live allocations, matched by fund.",
)
def check_funding_conflicts(
    scenario_instance_id: shared.ScenarioInstanceId,
    owner_id: shared.OwnerId,
    service: Annotated[ScenarioFundingService, Depends(shared.get_scenario_funding_service)],
) -> list[ScenarioFundingConflict]:
    try:
        return service.check_funding_conflicts(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@shared.router.get(
    "/scenario-instances/{scenario_instance_id}/conflicts",
    response_model=ConflictCheckResult,
    status_code=status.HTTP_200_OK,
    summary="Check Scenario Instance Field Conflicts",
    description="Dry-run of the apply diff: fields changed both in the scenario and live.",
)
def check_scenario_instance_conflicts(
    scenario_instance_id: shared.ScenarioInstanceId,
    owner_id: shared.OwnerId,
    engine: Annotated[ScenarioApplyEngine, Depends(shared.get_scenario_apply_engine)],
) -> ConflictCheckResult:
    try:
        return engine.check_scenario_instance_conflicts(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@shared.router.post(
    "/scenario-instances/{scenario_instance_id}/apply",
    response_model=ApplyResult,
    status_code=status.HTTP_200_OK,
    summary="Apply Scenario Instance",
    description=(
        "Commits scenario fields and funding allocations into live data as one unit of work. "
        "Unresolved conflicts, stale references and fund capacity breaches return 409."
    ),
)
def apply_scenario_instance(
    scenario_instance_id: shared.ScenarioInstanceId,
    owner_id: shared.OwnerId,
    engine: Annotated[ScenarioApplyEngine, Depends(shared.get_scenario_apply_engine)],
    payload: Optional[ScenarioApplyRequest] = None,
) -> ApplyResult:
    try:
        return engine.apply_scenario_instance(
            owner_id=owner_id,
            scenario_instance_id=scenario_instance_id,
            resolutions=payload.resolutions if payload is not None else None,
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@shared.router.post(
    "/scenarios/{scenario_id}/apply",
    response_model=list[ApplyResult],
    status_code=status.HTTP_200_OK,
    summary="Apply All Scenario Instances",
    description="Applies each instance independently and reports a result per instance.",
)
def apply_all_scenario_instances(
    scenario_id: shared.ScenarioId,
    owner_id: shared.OwnerId,
    engine: Annotated[ScenarioApplyEngine, Depends(shared.get_scenario_apply_engine)],
) -> list[ApplyResult]:
    try:
        return engine.apply_all_scenario_instances(owner_id=owner_id, scenario_id=scenario_id)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@shared.router.post(
    "/scenario-funding-applications/rollback",
    status_code=status.HTTP_200_OK,
    summary="Roll Back Scenario Funding Application",
    description=(
        "Reverses the given application, or the latest one for a scenario instance, or the "
        "owner's latest one. Returns 409 when live data changed since the apply."
    ),
)
def rollback_scenario_funding(
    owner_id: shared.OwnerId,
    engine: Annotated[ScenarioApplyEngine, Depends(shared.get_scenario_apply_engine)],
    payload: Optional[ScenarioRollbackRequest] = None,
) -> dict[str, bool]:
    payload = payload or ScenarioRollbackRequest()
    try:
        rolled_back = engine.rollback_scenario_funding(
            owner_id=owner_id,
            application_id=payload.application_id,
            scenario_instance_id=payload.scenario_instance_id,
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)
    return {"rolled_back": rolled_back}


@shared.router.get(
    "/scenario-funding-applications",
    response_model=list[ScenarioFundingApplicationRecord],
    status_code=status.HTTP_200_OK,
    summary="List Scenario Funding Applications",
    description="Audit trail of applies for the owner, newest first.",
)
def list_funding_applications(
    owner_id: shared.OwnerId,
    service: Annotated[ScenarioFundingService, Depends(shared.get_scenario_funding_service)],
    scenario_instance_id: Annotated[
        Optional[str],
        Query(description="Restrict to one scenario instance.", examples=["si_001"]),
    ] = None,
) -> list[ScenarioFundingApplicationRecord]:
    try:
        return service.list_funding_applications(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)
