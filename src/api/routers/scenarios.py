from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, status

from src.api.routers import scenarios_config
from src.api.routers.runtime_utils import normalize_backend_init_error
from src.api.routers.scenario_http_errors import raise_scenario_http_exception
from src.core.scenarios import (
    ScenarioApplyEngine,
    ScenarioFundingService,
    ScenarioInstanceRecord,
    ScenarioInstanceService,
    ScenarioLifecycleError,
    ScenarioRecord,
    ScenarioRepository,
    ScenarioService,
)
from src.core.scenarios.models import (
    ScenarioCreateRequest,
    ScenarioInstanceBranchRequest,
    ScenarioInstanceCreateRequest,
    ScenarioInstanceUpdateRequest,
    ScenarioSupportabilityConfigResponse,
    ScenarioUpdateRequest,
)

router = APIRouter(tags=["Property Scenarios"])

_REPOSITORY: Optional[ScenarioRepository] = None

OwnerId = Annotated[
    str,
    Header(
        alias="X-Owner-Id",
        description="Authenticated owner; every record lookup is scoped to it.",
        examples=["user_1"],
    ),
]
ScenarioId = Annotated[str, Path(description="Scenario identifier.", examples=["sc_001"])]
ScenarioInstanceId = Annotated[
    str, Path(description="Scenario instance identifier.", examples=["si_001"])
]


def get_scenario_repository() -> ScenarioRepository:
    global _REPOSITORY
    if _REPOSITORY is None:
        try:
            _REPOSITORY = scenarios_config.build_repository()
        except RuntimeError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=normalize_backend_init_error(
                    detail=str(exc),
                    passthrough_details={
                        "SCENARIO_POSTGRES_DSN_REQUIRED",
                        "SCENARIO_POSTGRES_DRIVER_MISSING",
                    },
                    fallback_detail="SCENARIO_POSTGRES_CONNECTION_FAILED",
                ),
            ) from exc
    return _REPOSITORY


def get_scenario_service(
    repository: Annotated[ScenarioRepository, Depends(get_scenario_repository)],
) -> ScenarioService:
    return ScenarioService(
        repository=repository, capabilities=scenarios_config.env_capabilities()
    )


def get_scenario_instance_service(
    repository: Annotated[ScenarioRepository, Depends(get_scenario_repository)],
) -> ScenarioInstanceService:
    return ScenarioInstanceService(
        repository=repository, capabilities=scenarios_config.env_capabilities()
    )


def get_scenario_funding_service(
    repository: Annotated[ScenarioRepository, Depends(get_scenario_repository)],
) -> ScenarioFundingService:
    return ScenarioFundingService(
        repository=repository, capabilities=scenarios_config.env_capabilities()
    )


def get_scenario_apply_engine(
    repository: Annotated[ScenarioRepository, Depends(get_scenario_repository)],
) -> ScenarioApplyEngine:
    return ScenarioApplyEngine(
        repository=repository, capabilities=scenarios_config.env_capabilities()
    )


def reset_scenario_repository_for_tests(repository: Optional[ScenarioRepository] = None) -> None:
    global _REPOSITORY
    _REPOSITORY = repository


@router.get(
    "/scenarios/supportability/config",
    response_model=ScenarioSupportabilityConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Scenario Supportability Configuration",
    description="Returns scenario store backend status and feature gate values.",
)
def get_scenario_supportability_config() -> ScenarioSupportabilityConfigResponse:
    backend_error: Optional[str] = None
    backend_ready = True
    try:
        scenarios_config.build_repository()
    except RuntimeError as exc:
        backend_ready = False
        backend_error = str(exc)
    capabilities = scenarios_config.env_capabilities()
    return ScenarioSupportabilityConfigResponse(
        store_backend=scenarios_config.scenario_store_backend_name(),
        backend_ready=backend_ready,
        backend_init_error=backend_error,
        scenarios_enabled=capabilities("SCENARIOS"),
        apply_enabled=capabilities("APPLY"),
        conflict_resolution_enabled=capabilities("CONFLICT_RESOLUTION"),
    )


@router.post(
    "/scenarios",
    response_model=ScenarioRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Create Scenario",
    description="Creates an empty, non-primary scenario branch for the owner.",
)
def create_scenario(
    payload: ScenarioCreateRequest,
    owner_id: OwnerId,
    service: Annotated[ScenarioService, Depends(get_scenario_service)],
) -> ScenarioRecord:
    try:
        return service.create_scenario(owner_id=owner_id, payload=payload)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.get(
    "/scenarios",
    response_model=list[ScenarioRecord],
    status_code=status.HTTP_200_OK,
    summary="List Scenarios",
    description="Lists the owner's scenarios, most recently updated first.",
)
def list_scenarios(
    owner_id: OwnerId,
    service: Annotated[ScenarioService, Depends(get_scenario_service)],
) -> list[ScenarioRecord]:
    try:
        return service.list_scenarios(owner_id=owner_id)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.get(
    "/scenarios/{scenario_id}",
    response_model=ScenarioRecord,
    status_code=status.HTTP_200_OK,
    summary="Get Scenario",
)
def get_scenario(
    scenario_id: ScenarioId,
    owner_id: OwnerId,
    service: Annotated[ScenarioService, Depends(get_scenario_service)],
) -> ScenarioRecord:
    try:
        return service.get_scenario(owner_id=owner_id, scenario_id=scenario_id)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.patch(
    "/scenarios/{scenario_id}",
    response_model=ScenarioRecord,
    status_code=status.HTTP_200_OK,
    summary="Update Scenario",
    description="Partial update; omitted attributes are left unchanged.",
)
def update_scenario(
    scenario_id: ScenarioId,
    payload: ScenarioUpdateRequest,
    owner_id: OwnerId,
    service: Annotated[ScenarioService, Depends(get_scenario_service)],
) -> ScenarioRecord:
    try:
        return service.update_scenario(owner_id=owner_id, scenario_id=scenario_id, payload=payload)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.delete(
    "/scenarios/{scenario_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Scenario",
    description="Deletes a non-primary scenario with all of its instances and fundings.",
)
def delete_scenario(
    scenario_id: ScenarioId,
    owner_id: OwnerId,
    service: Annotated[ScenarioService, Depends(get_scenario_service)],
) -> None:
    try:
        service.delete_scenario(owner_id=owner_id, scenario_id=scenario_id)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.post(
    "/scenarios/{scenario_id}/primary",
    response_model=ScenarioRecord,
    status_code=status.HTTP_200_OK,
    summary="Set Primary Scenario",
    description="Promotes the scenario to primary and demotes the previous one atomically.",
)
def set_primary_scenario(
    scenario_id: ScenarioId,
    owner_id: OwnerId,
    service: Annotated[ScenarioService, Depends(get_scenario_service)],
) -> ScenarioRecord:
    try:
        return service.set_primary_scenario(owner_id=owner_id, scenario_id=scenario_id)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.post(
    "/scenarios/{scenario_id}/duplicate",
    response_model=ScenarioRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate Scenario",
    description="Creates a non-primary copy of the scenario named '<name> (Copy)'.",
)
def duplicate_scenario(
    scenario_id: ScenarioId,
    owner_id: OwnerId,
    service: Annotated[ScenarioService, Depends(get_scenario_service)],
) -> ScenarioRecord:
    try:
        return service.duplicate_scenario(owner_id=owner_id, scenario_id=scenario_id)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.get(
    "/scenarios/{scenario_id}/instances",
    response_model=list[ScenarioInstanceRecord],
    status_code=status.HTTP_200_OK,
    summary="List Scenario Instances",
)
def list_scenario_instances(
    scenario_id: ScenarioId,
    owner_id: OwnerId,
    service: Annotated[ScenarioInstanceService, Depends(get_scenario_instance_service)],
) -> list[ScenarioInstanceRecord]:
    try:
        return service.list_scenario_instances(owner_id=owner_id, scenario_id=scenario_id)
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.post(
    "/scenarios/{scenario_id}/instances/branch",
    response_model=ScenarioInstanceRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Branch Live Instance Into Scenario",
    description="Deep-copies a live instance, with its funding allocations, into the scenario.",
)
def add_instance_to_scenario(
    scenario_id: ScenarioId,
    payload: ScenarioInstanceBranchRequest,
    owner_id: OwnerId,
    service: Annotated[ScenarioInstanceService, Depends(get_scenario_instance_service)],
) -> ScenarioInstanceRecord:
    try:
        return service.add_instance_to_scenario(
            owner_id=owner_id,
            scenario_id=scenario_id,
            instance_id=payload.instance_id,
            display_name=payload.display_name,
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.post(
    "/scenarios/{scenario_id}/instances",
    response_model=ScenarioInstanceRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Create Scenario-Only Instance",
    description="Creates an instance with no live source; applying it creates a new live case.",
)
def create_new_instance_in_scenario(
    scenario_id: ScenarioId,
    payload: ScenarioInstanceCreateRequest,
    owner_id: OwnerId,
    service: Annotated[ScenarioInstanceService, Depends(get_scenario_instance_service)],
) -> ScenarioInstanceRecord:
    try:
        return service.create_new_instance_in_scenario(
            owner_id=owner_id, scenario_id=scenario_id, payload=payload
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.get(
    "/scenario-instances/{scenario_instance_id}",
    response_model=ScenarioInstanceRecord,
    status_code=status.HTTP_200_OK,
    summary="Get Scenario Instance",
)
def get_scenario_instance(
    scenario_instance_id: ScenarioInstanceId,
    owner_id: OwnerId,
    service: Annotated[ScenarioInstanceService, Depends(get_scenario_instance_service)],
) -> ScenarioInstanceRecord:
    try:
        return service.get_scenario_instance(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.patch(
    "/scenario-instances/{scenario_instance_id}",
    response_model=ScenarioInstanceRecord,
    status_code=status.HTTP_200_OK,
    summary="Update Scenario Instance",
    description="Edits the scenario copy only; live data is untouched until apply.",
)
def update_scenario_instance(
    scenario_instance_id: ScenarioInstanceId,
    payload: ScenarioInstanceUpdateRequest,
    owner_id: OwnerId,
    service: Annotated[ScenarioInstanceService, Depends(get_scenario_instance_service)],
    expected_version: Annotated[
        Optional[int],
        Header(
            alias="If-Match-Version",
            description="Optional optimistic concurrency guard on the instance version.",
            examples=[3],
        ),
    ] = None,
) -> ScenarioInstanceRecord:
    try:
        return service.update_scenario_instance(
            owner_id=owner_id,
            scenario_instance_id=scenario_instance_id,
            payload=payload,
            expected_version=expected_version,
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.delete(
    "/scenario-instances/{scenario_instance_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove Scenario Instance",
)
def remove_scenario_instance(
    scenario_instance_id: ScenarioInstanceId,
    owner_id: OwnerId,
    service: Annotated[ScenarioInstanceService, Depends(get_scenario_instance_service)],
) -> None:
    try:
        service.remove_scenario_instance(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)


@router.post(
    "/scenario-instances/{scenario_instance_id}/refresh",
    response_model=ScenarioInstanceRecord,
    status_code=status.HTTP_200_OK,
    summary="Refresh Scenario Instance From Live",
    description="Discards scenario edits and re-copies fields and fundings from the live case.",
)
def refresh_scenario_instance(
    scenario_instance_id: ScenarioInstanceId,
    owner_id: OwnerId,
    service: Annotated[ScenarioInstanceService, Depends(get_scenario_instance_service)],
) -> ScenarioInstanceRecord:
    try:
        return service.refresh_scenario_instance(
            owner_id=owner_id, scenario_instance_id=scenario_instance_id
        )
    except ScenarioLifecycleError as exc:
        raise_scenario_http_exception(exc)
