"""
Unified Error Governance

Centrally handles exception classification, structured logging and the
closed error-kind envelope returned to callers.
"""

from typing import Any, Optional
import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from app.shared.core.exceptions import GatewayError, MenuraiException

logger = structlog.get_logger()

# Messages for these kinds are specific and actionable; everything else is sanitized.
SAFE_CODES = {
    "unauthenticated",
    "invalid_argument",
    "not_found",
    "failed_precondition",
}

GATEWAY_UNAVAILABLE_MESSAGE = (
    "The payment service is temporarily unavailable. Please try again."
)
INTERNAL_ERROR_MESSAGE = "An unexpected internal error occurred"


def handle_exception(
    request: Request, exc: Exception, error_id: Optional[str] = None
) -> JSONResponse:
    """
    Classifies and records exceptions, returning a standardized JSON response.
    """
    from uuid import uuid4

    error_id = error_id or str(uuid4())

    if isinstance(exc, MenuraiException):
        menurai_exc = exc
        if isinstance(exc, GatewayError):
            logger.error(
                "gateway_error",
                error=exc.message,
                gateway_status=exc.gateway_status,
                error_id=error_id,
                path=request.url.path,
                **exc.details,
            )
            message = GATEWAY_UNAVAILABLE_MESSAGE
        elif menurai_exc.code in SAFE_CODES:
            logger.info(
                "request_rejected",
                code=menurai_exc.code,
                error=menurai_exc.message,
                error_id=error_id,
                path=request.url.path,
            )
            message = menurai_exc.message
        else:
            logger.error(
                "internal_error",
                error=menurai_exc.message,
                error_id=error_id,
                path=request.url.path,
                **menurai_exc.details,
            )
            # Errors that carry caller-facing details are actionable as-is.
            message = (
                menurai_exc.message
                if menurai_exc.public_details
                else INTERNAL_ERROR_MESSAGE
            )
    else:
        # Always sanitize unhandled exceptions to avoid leaking secrets via message bodies.
        menurai_exc = MenuraiException(message=INTERNAL_ERROR_MESSAGE)
        message = INTERNAL_ERROR_MESSAGE
        logger.exception(
            "unhandled_raw_exception",
            error=str(exc),
            error_id=error_id,
            path=request.url.path,
        )

    content: dict[str, Any] = {
        "error": menurai_exc.code,
        "message": message,
        "error_id": error_id,
    }
    if menurai_exc.public_details:
        content["details"] = menurai_exc.public_details
    return JSONResponse(status_code=menurai_exc.status_code, content=content)
