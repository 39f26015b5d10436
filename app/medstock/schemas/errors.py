from pydantic import BaseModel

from app.medstock.core.error_catalog import ErrorCatalog, ErrorDefinition


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None
    trace_id: str | None = None


class ValidationErrorItem(BaseModel):
    field: str | None = None
    message: str
    type: str
    loc: list[str | int] | None = None


class ValidationErrorResponse(ErrorResponse):
    details: dict[str, list[ValidationErrorItem]] | None = None


def _documented(*definitions: ErrorDefinition) -> dict:
    by_status: dict[int, list[str]] = {}
    for definition in definitions:
        by_status.setdefault(definition.status_code, []).append(definition.code)
    responses = {}
    for status_code, codes in sorted(by_status.items()):
        model = ValidationErrorResponse if ErrorCatalog.VALIDATION_ERROR.code in codes else ErrorResponse
        responses[status_code] = {"model": model, "description": " | ".join(codes)}
    return responses


TRANSFER_CREATE_ERRORS = _documented(
    ErrorCatalog.VALIDATION_ERROR,
    ErrorCatalog.INVALID_TRANSFER_REQUEST,
    ErrorCatalog.PERMISSION_DENIED,
    ErrorCatalog.TRANSFER_CODE_CONFLICT,
    ErrorCatalog.IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD,
)

ITEM_ACTION_ERRORS = _documented(
    ErrorCatalog.VALIDATION_ERROR,
    ErrorCatalog.QUANTITY_OUT_OF_RANGE,
    ErrorCatalog.ALLOCATION_MISMATCH,
    ErrorCatalog.PERMISSION_DENIED,
    ErrorCatalog.NOT_FOUND,
    ErrorCatalog.INVALID_TRANSITION,
    ErrorCatalog.INSUFFICIENT_BATCH_STOCK,
)
