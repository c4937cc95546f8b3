"""MFA models: configuration, backup codes, attempts, audit trail, SMS codes."""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from safetrust.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class MFAType(str, PyEnum):
    """Enrollment types."""

    TOTP = "TOTP"


class MFAAuditAction(str, PyEnum):
    """Actions recorded in the MFA audit trail."""

    MFA_ENABLED = "MFA_ENABLED"
    MFA_DISABLED = "MFA_DISABLED"
    MFA_VERIFICATION_FAILED = "MFA_VERIFICATION_FAILED"
    MFA_FAILED = "MFA_FAILED"
    MFA_SUCCESS = "MFA_SUCCESS"
    MFA_RATE_LIMITED = "MFA_RATE_LIMITED"
    BACKUP_CODES_GENERATED = "BACKUP_CODES_GENERATED"
    SMS_CODE_SENT = "SMS_CODE_SENT"


class MFAConfiguration(Base):
    """Per-user MFA configuration."""

    __tablename__ = "mfa_configurations"

    user_id = Column(String(64), primary_key=True)
    type = Column(String(16), nullable=False, default=MFAType.TOTP.value)
    contact = Column(String(255), nullable=True)
    totp_secret = Column(Text, nullable=True)  # Fernet-encrypted
    is_enabled = Column(Boolean, nullable=False, default=False)
    setup_at = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    disabled_at = Column(DateTime(timezone=True), nullable=True)
    disabled_by = Column(String(64), nullable=True)
    backup_codes_generated_at = Column(DateTime(timezone=True), nullable=True)
    backup_codes_count = Column(Integer, nullable=False, default=0)


class MFABackupCode(Base):
    """One hashed, single-use backup code. Consuming a code deletes its row."""

    __tablename__ = "mfa_backup_codes"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(
        String(64),
        ForeignKey("mfa_configurations.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code_hash = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_mfa_backup_codes_user_hash", "user_id", "code_hash"),)


class MFAAttempt(Base):
    """Login-time verification attempt. Never mutated after creation."""

    __tablename__ = "mfa_attempts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False)
    success = Column(Boolean, nullable=False, default=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("ix_mfa_attempts_user_created", "user_id", "success", "created_at"),)


class MFAAuditEvent(Base):
    """Append-only MFA audit trail entry."""

    __tablename__ = "mfa_audit_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    action = Column(String(40), nullable=False)
    entity_type = Column(String(16), nullable=False, default="MFA")
    details = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MFASMSCode(Base):
    """Hashed SMS code delivered out of band."""

    __tablename__ = "mfa_sms_codes"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    phone_number = Column(String(32), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
