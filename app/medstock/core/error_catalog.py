from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    INVALID_CREDENTIALS = ErrorDefinition(
        "INVALID_CREDENTIALS",
        "Invalid credentials",
        status.HTTP_401_UNAUTHORIZED,
    )
    USER_INACTIVE = ErrorDefinition(
        "USER_INACTIVE",
        "User is inactive or suspended",
        status.HTTP_403_FORBIDDEN,
    )
    PERMISSION_DENIED = ErrorDefinition(
        "PERMISSION_DENIED",
        "Permission denied",
        status.HTTP_403_FORBIDDEN,
    )
    NOT_FOUND = ErrorDefinition("NOT_FOUND", "Resource not found", status.HTTP_404_NOT_FOUND)
    INVALID_TRANSFER_REQUEST = ErrorDefinition(
        "INVALID_TRANSFER_REQUEST",
        "Invalid transfer request",
        status.HTTP_400_BAD_REQUEST,
    )
    INVALID_TRANSITION = ErrorDefinition(
        "INVALID_TRANSITION",
        "Transition not allowed from the current status",
        status.HTTP_409_CONFLICT,
    )
    QUANTITY_OUT_OF_RANGE = ErrorDefinition(
        "QUANTITY_OUT_OF_RANGE",
        "Quantity out of range",
        status.HTTP_400_BAD_REQUEST,
    )
    ALLOCATION_MISMATCH = ErrorDefinition(
        "ALLOCATION_MISMATCH",
        "Batch allocations do not match prepared quantity",
        status.HTTP_400_BAD_REQUEST,
    )
    INSUFFICIENT_BATCH_STOCK = ErrorDefinition(
        "INSUFFICIENT_BATCH_STOCK",
        "Insufficient batch stock",
        status.HTTP_409_CONFLICT,
    )
    TRANSFER_CODE_CONFLICT = ErrorDefinition(
        "TRANSFER_CODE_CONFLICT",
        "Transfer code already in use",
        status.HTTP_409_CONFLICT,
    )
    DUPLICATE_RESOURCE = ErrorDefinition(
        "DUPLICATE_RESOURCE",
        "Resource already exists",
        status.HTTP_409_CONFLICT,
    )
    BATCH_RESERVED = ErrorDefinition(
        "BATCH_RESERVED",
        "Batch still holds reserved stock",
        status.HTTP_409_CONFLICT,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_400_BAD_REQUEST,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD = ErrorDefinition(
        "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "Idempotency key reused with different payload",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REQUEST_IN_PROGRESS = ErrorDefinition(
        "IDEMPOTENCY_REQUEST_IN_PROGRESS",
        "Idempotency request already in progress",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)


class TransferError(AppError):
    """Base for the transfer engine's error kinds; each kind pins its definition."""

    definition: ErrorDefinition

    def __init__(self, message: str | None = None, **details):
        if message is not None:
            details = {"message": message, **details}
        super().__init__(self.definition, details or None)


class InvalidTransferRequest(TransferError):
    definition = ErrorCatalog.INVALID_TRANSFER_REQUEST


class NotFound(TransferError):
    definition = ErrorCatalog.NOT_FOUND


class InvalidTransition(TransferError):
    definition = ErrorCatalog.INVALID_TRANSITION


class QuantityOutOfRange(TransferError):
    definition = ErrorCatalog.QUANTITY_OUT_OF_RANGE


class AllocationMismatch(TransferError):
    definition = ErrorCatalog.ALLOCATION_MISMATCH


class InsufficientBatchStock(TransferError):
    definition = ErrorCatalog.INSUFFICIENT_BATCH_STOCK


class PermissionDenied(TransferError):
    definition = ErrorCatalog.PERMISSION_DENIED
