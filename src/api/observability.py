import json
import logging
import os
import time
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from prometheus_fastapi_instrumentator import Instrumentator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")
owner_id_var: ContextVar[str] = ContextVar("owner_id", default="")

_UNMETERED_PATHS = ["/health", "/metrics"]


class JsonFormatter(logging.Formatter):
    """One JSON object per record, carrying request context and ``extra_fields``."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": os.getenv("SERVICE_NAME", "property-scenarios"),
            "environment": os.getenv("ENVIRONMENT", "local"),
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get() or None,
            "request_id": request_id_var.get() or None,
            "trace_id": trace_id_var.get() or None,
            "owner_id": owner_id_var.get() or None,
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps({k: v for k, v in payload.items() if v is not None}, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)


def trace_id_from_traceparent(traceparent: str) -> Optional[str]:
    parts = traceparent.split("-")
    if len(parts) >= 4 and len(parts[1]) == 32:
        return parts[1]
    return None


def setup_observability(app: FastAPI) -> None:
    configure_logging()
    Instrumentator(excluded_handlers=_UNMETERED_PATHS).instrument(app).expose(app)

    @app.middleware("http")
    async def _request_context_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        access_logger = logging.getLogger("http.access")
        started = time.perf_counter()
        correlation_id = request.headers.get("X-Correlation-Id") or f"corr_{uuid4().hex[:12]}"
        request_id = request.headers.get("X-Request-Id") or f"req_{uuid4().hex[:12]}"
        trace_id = (
            trace_id_from_traceparent(request.headers.get("traceparent", "")) or uuid4().hex
        )

        tokens = [
            (correlation_id_var, correlation_id_var.set(correlation_id)),
            (request_id_var, request_id_var.set(request_id)),
            (trace_id_var, trace_id_var.set(trace_id)),
            (owner_id_var, owner_id_var.set(request.headers.get("X-Owner-Id", ""))),
        ]
        status_code = 500
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
        finally:
            access_logger.info(
                "request.completed",
                extra={
                    "extra_fields": {
                        "http_method": request.method,
                        "endpoint": request.url.path,
                        "status_code": status_code,
                        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                    }
                },
            )
            for var, token in reversed(tokens):
                var.reset(token)

        response.headers["X-Correlation-Id"] = correlation_id
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Trace-Id"] = trace_id
        response.headers["traceparent"] = f"00-{trace_id}-0000000000000001-01"
        return response
