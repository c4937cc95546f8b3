"""MFA schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class MFAVerdictStatus(str, Enum):
    """Domain outcome of a verification call."""

    SUCCESS = "success"
    INVALID_CODE = "invalid_code"
    RATE_LIMITED = "rate_limited"
    NOT_CONFIGURED = "not_configured"
    NOT_ENABLED = "not_enabled"


class MFAVerdict(BaseModel):
    """Structured verification result. Returned, never raised."""

    success: bool
    status: MFAVerdictStatus
    message: str
    remaining_attempts: int | None = None
    backup_code_used: bool = False


class MFASetupResult(BaseModel):
    """Enrollment material. Shown to the user exactly once."""

    secret: str
    provisioning_uri: str
    qr_code_data_url: str
    manual_entry_key: str
    backup_codes: list[str]


class MFAStatus(BaseModel):
    """Read-only MFA status projection."""

    enabled: bool = False
    type: str | None = None
    setup_at: datetime | None = None
    verified_at: datetime | None = None
    has_backup_codes: bool = False


class MFASetupRequest(BaseModel):
    """MFA TOTP setup request."""

    contact: str = Field(min_length=3, max_length=255)  # Account label shown in the authenticator
    # Required to re-enroll while MFA is enabled
    code: str | None = Field(default=None, min_length=6, max_length=16)


class MFACodeRequest(BaseModel):
    """Request carrying a TOTP code."""

    code: str = Field(min_length=6, max_length=16)


class MFALoginVerifyRequest(BaseModel):
    """MFA step-up during login."""

    mfa_token: str
    code: str = Field(min_length=6, max_length=16)  # TOTP code or backup code


class MFALoginVerifyResponse(BaseModel):
    """MFA step-up response."""

    status: str = "ok"
    message: str
    access_token: str
    token_type: str = "bearer"


class MFAConfirmResponse(BaseModel):
    """Enrollment confirmation response."""

    status: str = "ok"
    message: str


class MFABackupCodesResponse(BaseModel):
    """Freshly issued backup codes (returned once)."""

    status: str = "ok"
    backup_codes: list[str]


class MFADisableResponse(BaseModel):
    """MFA disable response."""

    status: str = "ok"
    message: str = "MFA disabled successfully"


class MFASMSSendRequest(BaseModel):
    """Request to deliver an SMS code."""

    phone_number: str = Field(min_length=4, max_length=32)
