"""Security utilities: JWT access and MFA pending tokens."""

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import jwt

from safetrust.core.config import settings


def _require_secret() -> str:
    if not settings.JWT_SECRET:
        raise ValueError("JWT_SECRET must be set")
    return settings.JWT_SECRET


def _encode(user_id: str, token_type: str, ttl: timedelta, **claims: Any) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + ttl,
        "jti": str(uuid4()),
        "type": token_type,
        **claims,
    }
    return jwt.encode(payload, _require_secret(), algorithm=settings.JWT_ALG)


def _decode(token: str, token_type: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, _require_secret(), algorithms=[settings.JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise jwt.InvalidTokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise jwt.InvalidTokenError(f"Invalid token: {e}") from e

    if payload.get("type") != token_type:
        raise jwt.InvalidTokenError(f"Token is not an {token_type} token")
    return payload


def create_access_token(user_id: str, role: str) -> str:
    """Create a JWT access token."""
    return _encode(
        user_id,
        "access",
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        role=role,
    )


def verify_access_token(token: str) -> dict[str, Any]:
    """Verify and decode a JWT access token."""
    return _decode(token, "access")


def create_mfa_token(user_id: str, role: str = "USER") -> str:
    """Create a short-lived MFA pending token, issued after the password step."""
    return _encode(
        user_id,
        "mfa_pending",
        timedelta(minutes=settings.MFA_TOKEN_EXPIRE_MINUTES),
        role=role,
    )


def verify_mfa_token(token: str) -> dict[str, Any]:
    """Verify and decode an MFA pending token."""
    return _decode(token, "mfa_pending")
