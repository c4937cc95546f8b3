"""Admin MFA endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from safetrust.core.dependencies import ADMIN_ROLE, Principal, get_mfa_service, require_roles
from safetrust.schemas.mfa import MFADisableResponse, MFAStatus
from safetrust.services.mfa_service import MFAService

router = APIRouter(tags=["Admin MFA"])


class MFAAuditEventResponse(BaseModel):
    """Audit trail entry."""

    action: str
    details: str | None = None
    ip_address: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


@router.get("/users/{user_id}/mfa", response_model=MFAStatus)
async def admin_mfa_status(
    user_id: str,
    admin: Principal = Depends(require_roles(ADMIN_ROLE)),
    mfa: MFAService = Depends(get_mfa_service),
) -> MFAStatus:
    """MFA status of any user."""
    return await mfa.status(user_id)


@router.post(
    "/users/{user_id}/mfa/disable",
    response_model=MFADisableResponse,
    status_code=status.HTTP_200_OK,
)
async def admin_mfa_disable(
    user_id: str,
    admin: Principal = Depends(require_roles(ADMIN_ROLE)),
    mfa: MFAService = Depends(get_mfa_service),
) -> MFADisableResponse:
    """Disable MFA on behalf of a user. Recorded as an admin action."""
    await mfa.disable(user_id, acting_admin_id=admin.user_id)
    return MFADisableResponse(message=f"MFA disabled for user {user_id}")


@router.get("/users/{user_id}/mfa/audit", response_model=list[MFAAuditEventResponse])
async def admin_mfa_audit(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    admin: Principal = Depends(require_roles(ADMIN_ROLE)),
    mfa: MFAService = Depends(get_mfa_service),
) -> list[MFAAuditEventResponse]:
    """Recent MFA audit events for a user."""
    events = await mfa.audit_trail(user_id, limit=limit)
    return [MFAAuditEventResponse.model_validate(event) for event in events]
