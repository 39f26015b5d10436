import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from app.medstock.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition, TransferError
from app.medstock.core.logging import log_json
from app.medstock.core.metrics import metrics

logger = logging.getLogger(__name__)
rejections = logging.getLogger("medstock.transfers.rejected")

_HTTP_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

_LOCK_MARKERS = ("lock timeout", "deadlock detected", "database is locked", "could not obtain lock")


def _is_lock_timeout(exc: Exception) -> bool:
    return isinstance(exc, OperationalError) and any(marker in str(exc).lower() for marker in _LOCK_MARKERS)


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _respond(request: Request, *, status_code: int, code: str, message: str, details, exc: Exception) -> JSONResponse:
    """Build the error body, remember it for logging and settle any open idempotency record."""
    request.state.error_code = code
    request.state.error_class = exc.__class__.__name__
    payload = {
        "code": code,
        "message": message,
        "details": jsonable_encoder(details),
        "trace_id": _trace_id(request),
    }
    idempotency = getattr(request.state, "idempotency", None)
    if idempotency is not None:
        idempotency.record_failure(status_code=status_code, response_body=payload)
    return JSONResponse(status_code=status_code, content=payload)


def _respond_with(request: Request, error: ErrorDefinition, details, exc: Exception) -> JSONResponse:
    return _respond(
        request,
        status_code=error.status_code,
        code=error.code,
        message=error.message,
        details=details,
        exc=exc,
    )


def _validation_details(exc: RequestValidationError) -> dict:
    errors = []
    for error in exc.errors():
        loc = list(error.get("loc", []))
        field = ".".join(str(part) for part in loc if part not in {"body", "query", "path", "header"})
        errors.append(
            {
                "field": field or None,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
                "loc": loc,
            }
        )
    return {"errors": errors}


def _http_message_and_details(exc: HTTPException) -> tuple[str, object]:
    detail = exc.detail
    if isinstance(detail, dict):
        rest = {key: value for key, value in detail.items() if key != "message"}
        return str(detail.get("message", "HTTP error")), rest or None
    if isinstance(detail, list):
        return "HTTP error", {"errors": detail}
    return (str(detail) if detail is not None else "HTTP error"), None


def error_response(code: str, message: str, details: object, trace_id: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": code, "message": message, "details": details, "trace_id": trace_id},
    )


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.error is ErrorCatalog.PERMISSION_DENIED:
            metrics.increment_permission_denied()
        if isinstance(exc, TransferError):
            log_json(
                rejections,
                {
                    "event": "transfer.rejected",
                    "code": exc.error.code,
                    "route": request.url.path,
                    "organization_id": getattr(request.state, "organization_id", None),
                    "trace_id": _trace_id(request),
                },
            )
        return _respond_with(request, exc.error, exc.details, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        message, details = _http_message_and_details(exc)
        return _respond(
            request,
            status_code=exc.status_code,
            code=_HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR"),
            message=message,
            details=details,
            exc=exc,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _respond_with(request, ErrorCatalog.VALIDATION_ERROR, _validation_details(exc), exc)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        if _is_lock_timeout(exc):
            metrics.increment_lock_wait_timeout()
            error = ErrorCatalog.LOCK_TIMEOUT
        else:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            error = ErrorCatalog.INTERNAL_ERROR
        return _respond_with(request, error, {"type": exc.__class__.__name__}, exc)
