"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

import src.api.routers.scenario_funding_routes  # noqa: F401
from src.api.observability import setup_observability
from src.api.persistence_profile import validate_persistence_profile_guardrails
from src.api.routers.scenarios import router as scenario_router


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    validate_persistence_profile_guardrails()
    yield


app = FastAPI(
    title="Property Scenario API",
    version="0.1.0",
    description=(
        "Scenario branching for property investment cases.\n\n"
        "Branch live cases into named scenarios, edit them freely, then apply a scenario "
        "back onto live data as one atomic commit of fields and funding allocations, "
        "with a paired rollback."
    ),
    openapi_tags=[
        {
            "name": "Property Scenarios",
            "description": "Scenario, scenario instance, funding, apply and rollback endpoints.",
        },
    ],
    lifespan=_app_lifespan,
)

setup_observability(app)
logger = logging.getLogger(__name__)

app.include_router(scenario_router)


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )


@app.get("/health", tags=["Property Scenarios"], summary="Liveness probe")
def health() -> dict[str, str]:
    return {"status": "ok"}
