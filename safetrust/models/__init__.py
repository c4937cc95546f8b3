"""Database models."""

# Import all models here so metadata.create_all sees them
from safetrust.models.mfa import (
    MFAAttempt,
    MFAAuditAction,
    MFAAuditEvent,
    MFABackupCode,
    MFAConfiguration,
    MFASMSCode,
    MFAType,
)

__all__ = [
    "MFAAttempt",
    "MFAAuditAction",
    "MFAAuditEvent",
    "MFABackupCode",
    "MFAConfiguration",
    "MFASMSCode",
    "MFAType",
]
