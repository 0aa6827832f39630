"""
Error Mapping - Converts ledger exceptions into structured JSON failures.

Every LedgerError becomes ``{success: false, error: CODE, message, ...}``.
Storage faults are logged with detail but answered with a generic message.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from structlog import get_logger

from points_ledger.exceptions import (
    BelowMinimumThresholdError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    LedgerError,
    StorageError,
    UnknownFeatureError,
)
from points_ledger.models.api import ErrorResponse

logger = get_logger(__name__)

STATUS_BY_CODE: dict[str, int] = {
    "INVALID_AMOUNT": status.HTTP_400_BAD_REQUEST,
    "MISSING_FIELD": status.HTTP_400_BAD_REQUEST,
    "INVALID_TRANSACTION_TYPE": status.HTTP_400_BAD_REQUEST,
    "INVALID_METADATA": status.HTTP_400_BAD_REQUEST,
    "BELOW_MINIMUM_THRESHOLD": status.HTTP_400_BAD_REQUEST,
    "INSUFFICIENT_BALANCE": status.HTTP_402_PAYMENT_REQUIRED,
    "UNKNOWN_FEATURE": status.HTTP_404_NOT_FOUND,
    "IDEMPOTENCY_CONFLICT": status.HTTP_409_CONFLICT,
    "SERVICE_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}

SERVICE_UNAVAILABLE_MESSAGE = "Service unavailable"


def build_error_response(exc: LedgerError) -> JSONResponse:
    """Render a ledger exception as its HTTP failure body."""
    body = ErrorResponse(error=exc.code, message=str(exc))
    headers: dict[str, str] | None = None

    if isinstance(exc, InsufficientBalanceError):
        body.current_balance = exc.current_balance
        body.required = exc.required
        body.shortfall = exc.shortfall
    elif isinstance(exc, BelowMinimumThresholdError):
        body.minimum = exc.minimum
    elif isinstance(exc, UnknownFeatureError):
        body.feature_key = exc.feature_key
    elif isinstance(exc, IdempotencyConflictError):
        headers = {"X-Existing-Transaction-ID": str(exc.existing_id)}
    elif isinstance(exc, StorageError):
        body.message = SERVICE_UNAVAILABLE_MESSAGE

    return JSONResponse(
        status_code=STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """FastAPI exception handler for the LedgerError hierarchy."""
    if isinstance(exc, StorageError):
        logger.error("ledger_request_failed", path=request.url.path, error=str(exc))
    else:
        logger.info(
            "ledger_request_rejected", path=request.url.path, error=exc.code, message=str(exc)
        )
    return build_error_response(exc)
