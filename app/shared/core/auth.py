import jwt
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, cast
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
import structlog
from app.shared.core.config import get_settings
from app.shared.core.exceptions import ConfigurationError, UnauthenticatedError

logger = structlog.get_logger()

__all__ = [
    "CurrentUser",
    "create_access_token",
    "decode_jwt",
    "get_current_user",
]

security = HTTPBearer(auto_error=False)


def _hash_email(email: str | None) -> str | None:
    if not email:
        return None
    normalized = email.strip().lower()
    return hashlib.sha256(normalized.encode()).hexdigest()[:12]


def create_access_token(
    data: dict[str, Any], expires_delta: Optional[timedelta] = None
) -> str:
    """
    Generate a new JWT token signed with the application secret.
    """
    settings = get_settings()
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=60)

    if "aud" not in to_encode:
        to_encode["aud"] = settings.BILLING_JWT_AUDIENCE

    to_encode.update({"exp": expire})

    if not settings.BILLING_JWT_SECRET:
        raise ConfigurationError("BILLING_JWT_SECRET is not configured")

    return jwt.encode(to_encode, settings.BILLING_JWT_SECRET, algorithm="HS256")


class CurrentUser(BaseModel):
    """
    Represents the authenticated caller from the JWT.
    """

    id: str
    email: Optional[str] = None


def decode_jwt(token: str) -> dict[str, Any]:
    """
    Decode and verify a bearer token.

    Security:
    - HS256 algorithm must match the identity provider's signing algorithm
    - Rejects expired tokens automatically
    - Rejects tampered tokens (signature mismatch)

    Raises:
        UnauthenticatedError if token is invalid
    """
    settings = get_settings()

    if not settings.BILLING_JWT_SECRET:
        logger.error("jwt_secret_missing_in_decode")
        raise ConfigurationError("Configuration error: Missing JWT secret")

    try:
        payload = jwt.decode(
            token,
            settings.BILLING_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.BILLING_JWT_AUDIENCE,
        )
        return cast(dict[str, Any], payload)

    except jwt.ExpiredSignatureError:
        logger.warning("jwt_expired")
        raise UnauthenticatedError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("jwt_invalid", error=str(e))
        raise UnauthenticatedError("Invalid token")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    JWT-only auth. The `sub` claim is the stable user identifier.
    """
    if credentials is None:
        raise UnauthenticatedError("Not authenticated")

    payload = decode_jwt(credentials.credentials)
    user_id = payload.get("sub")
    email = payload.get("email")

    if not user_id or not isinstance(user_id, str):
        raise UnauthenticatedError("Invalid token payload")

    logger.info("user_authenticated", user_id=user_id, email_hash=_hash_email(email))
    return CurrentUser(id=user_id, email=email)
