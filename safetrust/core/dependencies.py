"""FastAPI dependencies for authentication and service lookup."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from safetrust.core.config import settings
from safetrust.core.security import verify_access_token
from safetrust.services.mfa_service import MFAService

ADMIN_ROLE = "ADMIN"


class Principal(BaseModel):
    """Authenticated caller extracted from the access token."""

    user_id: str
    role: str


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> Principal:
    """Dependency to get the current authenticated caller from a JWT access token."""
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
        )

    # Extract token from "Bearer <token>"
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Invalid authorization scheme")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
        ) from None

    try:
        payload = verify_access_token(token)
        return Principal(user_id=payload["sub"], role=payload["role"])
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {str(e)}",
        ) from e


def require_roles(*allowed_roles: str):
    """Dependency factory to require specific roles."""

    def role_checker(current_user: Principal = Depends(get_current_user)) -> Principal:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {list(allowed_roles)}",
            )
        return current_user

    return role_checker


def get_mfa_service(request: Request) -> MFAService:
    """The MFA service constructed by the application lifespan."""
    service = getattr(request.app.state, "mfa_service", None)
    if service is None:
        raise RuntimeError("MFA service is not initialized")
    return service


def get_client_ip(request: Request) -> str | None:
    """
    Source address recorded on MFA attempts and audit events.

    Forwarded headers are honoured only when the direct peer is listed in
    TRUSTED_PROXIES, so clients cannot choose the address that gets logged.
    """
    peer = request.client.host if request.client else None
    if peer is not None and peer not in settings.TRUSTED_PROXIES:
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return peer
