from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.medstock.core.db_timing import get_db_time_ms, start_db_timer, stop_db_timer
from app.medstock.core.logging import log_json
from app.medstock.core.metrics import metrics

logger = logging.getLogger("medstock.request")


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def log_level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def build_request_log_payload(
    *,
    request: Request,
    response: Response | None,
    latency_ms: float,
    db_time_ms: float | None,
) -> dict:
    """One ``http_request`` line: who called which route, with what outcome and cost."""
    state = request.state
    status_code = response.status_code if response is not None else 500
    return {
        "event": "http_request",
        "trace_id": getattr(state, "trace_id", ""),
        "organization_id": getattr(state, "organization_id", None),
        "department_id": getattr(state, "department_id", None),
        "user_id": getattr(state, "user_id", None),
        "role": getattr(state, "role", None),
        "route": _route_template(request),
        "method": request.method,
        "status_code": status_code,
        "latency_ms": round(latency_ms, 2),
        "db_time_ms": None if db_time_ms is None else round(db_time_ms, 2),
        "error_code": getattr(state, "error_code", None),
        "error_class": getattr(state, "error_class", None),
        "idempotency_result": response.headers.get("X-Idempotency-Result") if response is not None else None,
    }


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        timer = start_db_timer()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            payload = build_request_log_payload(
                request=request,
                response=response,
                latency_ms=elapsed_ms,
                db_time_ms=get_db_time_ms(),
            )
            stop_db_timer(timer)
            log_json(logger, payload, level=log_level_for(payload["status_code"]))
            metrics.record_http_request(
                route=payload["route"],
                method=payload["method"],
                status_code=payload["status_code"],
                latency_ms=elapsed_ms,
            )
