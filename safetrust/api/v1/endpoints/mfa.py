"""MFA endpoints."""

from fastapi import APIRouter, Depends, Request, status

from safetrust.core.app_exceptions import raise_app_error, raise_for_verdict
from safetrust.core.dependencies import (
    Principal,
    get_client_ip,
    get_current_user,
    get_mfa_service,
)
from safetrust.core.security import create_access_token, verify_mfa_token
from safetrust.core.security_logging import log_security_event
from safetrust.schemas.mfa import (
    MFABackupCodesResponse,
    MFACodeRequest,
    MFAConfirmResponse,
    MFADisableResponse,
    MFALoginVerifyRequest,
    MFALoginVerifyResponse,
    MFASetupRequest,
    MFASetupResult,
    MFASMSSendRequest,
    MFAStatus,
)
from safetrust.services.mfa_service import MFAService

router = APIRouter(tags=["MFA"])


@router.get(
    "/status",
    response_model=MFAStatus,
    summary="MFA status",
)
async def mfa_status(
    current_user: Principal = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
) -> MFAStatus:
    """Read-only MFA status for the current user."""
    return await mfa.status(current_user.user_id)


@router.post(
    "/totp/setup",
    response_model=MFASetupResult,
    status_code=status.HTTP_200_OK,
    summary="Setup MFA TOTP",
    description="Generate TOTP secret, provisioning URI and backup codes (shown once).",
)
async def mfa_totp_setup(
    request_data: MFASetupRequest,
    request: Request,
    current_user: Principal = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
) -> MFASetupResult:
    """Setup MFA TOTP. Re-enrolling an enabled account needs a current code."""
    current = await mfa.status(current_user.user_id)
    if current.enabled:
        if not request_data.code:
            log_security_event(
                "mfa_setup_started", outcome="deny", reason_code="MFA_ALREADY_ENABLED", user_id=current_user.user_id
            )
            raise_app_error(
                status_code=status.HTTP_409_CONFLICT,
                code="MFA_ALREADY_ENABLED",
                message="MFA is already enabled. Provide a current code to re-enroll.",
            )
        verdict = await mfa.verify(
            current_user.user_id,
            request_data.code,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        raise_for_verdict(verdict, int(mfa.attempt_window.total_seconds()))

    result = await mfa.setup(current_user.user_id, request_data.contact)
    log_security_event("mfa_setup_started", outcome="allow", user_id=current_user.user_id)
    return result


@router.post(
    "/totp/verify",
    response_model=MFAConfirmResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify and enable MFA TOTP",
)
async def mfa_totp_verify(
    request_data: MFACodeRequest,
    current_user: Principal = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
) -> MFAConfirmResponse:
    """Confirm enrollment with the first TOTP code."""
    verdict = await mfa.confirm(current_user.user_id, request_data.code)
    raise_for_verdict(verdict, int(mfa.attempt_window.total_seconds()))
    return MFAConfirmResponse(message=verdict.message)


@router.post(
    "/verify",
    response_model=MFALoginVerifyResponse,
    status_code=status.HTTP_200_OK,
    summary="Complete MFA step-up",
    description="Verify a TOTP or backup code during login and receive an access token.",
)
async def mfa_login_verify(
    request_data: MFALoginVerifyRequest,
    request: Request,
    mfa: MFAService = Depends(get_mfa_service),
) -> MFALoginVerifyResponse:
    """Complete MFA step-up."""
    try:
        payload = verify_mfa_token(request_data.mfa_token)
        user_id = payload["sub"]
    except Exception:
        log_security_event("mfa_failed", outcome="deny", reason_code="UNAUTHORIZED")
        raise_app_error(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="UNAUTHORIZED",
            message="Invalid or expired MFA token",
        )

    verdict = await mfa.verify(
        user_id,
        request_data.code,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    raise_for_verdict(verdict, int(mfa.attempt_window.total_seconds()))

    return MFALoginVerifyResponse(
        message=verdict.message,
        access_token=create_access_token(user_id, payload.get("role", "USER")),
    )


@router.post(
    "/backup-codes/regenerate",
    response_model=MFABackupCodesResponse,
    status_code=status.HTTP_200_OK,
    summary="Regenerate backup codes",
    description="Generate new backup codes (invalidates old ones). Requires a TOTP code.",
)
async def mfa_backup_codes_regenerate(
    request_data: MFACodeRequest,
    request: Request,
    current_user: Principal = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
) -> MFABackupCodesResponse:
    """Regenerate backup codes after re-verifying the caller."""
    verdict = await mfa.verify(
        current_user.user_id,
        request_data.code,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    raise_for_verdict(verdict, int(mfa.attempt_window.total_seconds()))

    backup_codes = await mfa.regenerate_backup_codes(current_user.user_id)
    return MFABackupCodesResponse(backup_codes=backup_codes)


@router.post(
    "/disable",
    response_model=MFADisableResponse,
    status_code=status.HTTP_200_OK,
    summary="Disable MFA",
)
async def mfa_disable(
    request_data: MFACodeRequest,
    request: Request,
    current_user: Principal = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
) -> MFADisableResponse:
    """Self-service disable, confirmed with a TOTP or backup code."""
    verdict = await mfa.verify(
        current_user.user_id,
        request_data.code,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    raise_for_verdict(verdict, int(mfa.attempt_window.total_seconds()))

    await mfa.disable(current_user.user_id)
    return MFADisableResponse()


@router.post(
    "/sms/send",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send an SMS code",
)
async def mfa_sms_send(
    request_data: MFASMSSendRequest,
    current_user: Principal = Depends(get_current_user),
    mfa: MFAService = Depends(get_mfa_service),
) -> dict:
    """Queue an SMS code for delivery. Delivery itself is not awaited."""
    await mfa.send_sms_code(current_user.user_id, request_data.phone_number)
    return {"status": "accepted"}
