import sys
import structlog
import logging
from typing import Any, cast
from app.shared.core.config import get_settings


def pii_redactor(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Recursively redact PII and secret-bearing fields from logs.
    Webhook secrets, signatures and gateway credentials never reach the sink.
    """
    import re

    email_regex = re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+")
    pii_fields = {
        "password",
        "token",
        "secret",
        "authorization",
        "auth",
        "api_key",
        "apikey",
        "signature",
        "digest",
        "expected",
        "key_secret",
        "webhook_secret",
        "access_token",
        "client_secret",
        "private_key",
    }
    pii_suffixes = ("_token", "_secret", "_password", "_signature", "_digest")
    pii_contains = ("authorization", "secret", "token", "apikey", "api_key")

    def is_sensitive_key(key: Any) -> bool:
        key_norm = str(key).lower().strip().replace("-", "_")
        if key_norm in pii_fields:
            return True
        if key_norm.endswith(pii_suffixes):
            return True
        tokens = [t for t in re.split(r"[^a-z0-9]+", key_norm) if t]
        if any(t in pii_fields for t in tokens):
            return True
        return any(fragment in key_norm for fragment in pii_contains)

    def redact_recursive(data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: ("[REDACTED]" if is_sensitive_key(k) else redact_recursive(v))
                for k, v in data.items()
            }
        elif isinstance(data, list):
            return [redact_recursive(item) for item in data]
        elif isinstance(data, str):
            return email_regex.sub("[EMAIL_REDACTED]", data)
        return data

    redacted = redact_recursive(event_dict)
    if isinstance(redacted, dict):
        return cast(dict[str, Any], redacted)
    return {}


def setup_logging() -> None:
    settings = get_settings()

    # 1. Configure the common processors (Middleware Pipeline for Logs)
    base_processors = [
        structlog.contextvars.merge_contextvars,  # Support async context
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        pii_redactor,  # Security: Redact PII before rendering
    ]

    # 2. Choose the renderer based on environment
    if settings.DEBUG:
        renderer: Any = structlog.dev.ConsoleRenderer()
        processors = base_processors + [renderer]
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        processors = base_processors + [structlog.processors.dict_tracebacks, renderer]
        min_level = logging.INFO

    # 3. Configure the logger or apply the configuration
    structlog.configure(
        processors=cast(Any, processors),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # 4. Intercept the standard logging (e.g. uvicorn's internal log).
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=min_level,
    )


def audit_log(
    event: str,
    user_id: str,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Standardized helper for billing audit events.
    Every subscription state change is emitted once through this helper.
    """
    logger = structlog.get_logger("audit")
    logger.info(
        event,
        user_id=str(user_id),
        metadata=details or {},
    )
