"""Exceptions the API turns into the standard error envelope."""

from typing import Any

from fastapi import HTTPException, status

from safetrust.schemas.mfa import MFAVerdict, MFAVerdictStatus


class AppError(HTTPException):
    """HTTP error carrying a stable machine-readable code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | list[Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code
        self.message = message
        self.details = details


class MFANotConfiguredError(LookupError):
    """Raised by MFA management operations for a user without an MFA configuration."""

    def __init__(self, user_id: str):
        super().__init__(f"MFA not configured for user {user_id}")
        self.user_id = user_id


# Verification verdicts are values inside the service; only the API raises them.
VERDICT_ERRORS: dict[MFAVerdictStatus, tuple[int, str]] = {
    MFAVerdictStatus.INVALID_CODE: (status.HTTP_400_BAD_REQUEST, "MFA_INVALID"),
    MFAVerdictStatus.RATE_LIMITED: (status.HTTP_429_TOO_MANY_REQUESTS, "RATE_LIMITED"),
    MFAVerdictStatus.NOT_CONFIGURED: (status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    MFAVerdictStatus.NOT_ENABLED: (status.HTTP_400_BAD_REQUEST, "MFA_NOT_ENABLED"),
}


def raise_app_error(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | list[Any] | None = None,
    headers: dict[str, str] | None = None,
) -> None:
    raise AppError(status_code=status_code, code=code, message=message, details=details, headers=headers)


def raise_for_verdict(verdict: MFAVerdict, retry_after_seconds: int) -> None:
    """Raise the envelope for a failed verdict. Successful verdicts pass through."""
    if verdict.success:
        return
    status_code, code = VERDICT_ERRORS[verdict.status]
    details: dict[str, Any] | None = None
    headers = None
    if verdict.status == MFAVerdictStatus.RATE_LIMITED:
        details = {"retry_after_seconds": retry_after_seconds}
        headers = {"Retry-After": str(retry_after_seconds)}
    elif verdict.remaining_attempts is not None:
        details = {"remaining_attempts": verdict.remaining_attempts}
    raise_app_error(status_code, code, verdict.message, details=details, headers=headers)
