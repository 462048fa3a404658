from typing import Optional, Dict, Any


class MenuraiException(Exception):
    """Base exception for all billing service errors."""

    def __init__(
        self,
        message: str,
        code: str = "internal",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        public_details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        # Logged only.
        self.details = details or {}
        # Safe to return to the caller.
        self.public_details = public_details or {}


class InvalidArgumentError(MenuraiException):
    """Raised when caller input is missing or not allowed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="invalid_argument", status_code=400, details=details)


class UnauthenticatedError(MenuraiException):
    """Raised when no caller identity could be established."""

    def __init__(self, message: str = "Not authenticated", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="unauthenticated", status_code=401, details=details)


class NotFoundError(MenuraiException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="not_found", status_code=404, details=details)


class FailedPreconditionError(MenuraiException):
    """Raised when the record is not in a state that allows the operation."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="failed_precondition", status_code=409, details=details)


class GatewayError(MenuraiException):
    """Raised when the payment gateway call fails (network, 4xx, 5xx)."""

    def __init__(
        self,
        message: str,
        gateway_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code="internal", status_code=500, details=details)
        self.gateway_status = gateway_status


class ConfigurationError(MenuraiException):
    """Raised when application configuration is invalid or missing."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="internal", status_code=500, details=details)


class InvariantViolationError(MenuraiException):
    """Raised when a write would leave a subscription record in an illegal shape."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="internal", status_code=500, details=details)


class OrphanedSubscriptionError(MenuraiException):
    """
    Raised when the gateway created a subscription but the local record write failed.
    The caller receives the subscription id so it can retry the abort.
    """

    def __init__(self, subscription_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "Subscription could not be saved. Abort it and try again.",
            code="internal",
            status_code=500,
            details=details,
            public_details={"subscription_id": subscription_id},
        )
        self.subscription_id = subscription_id
