"""MFA service: TOTP enrollment, login-time verification, backup codes, audit trail."""

import asyncio
import weakref
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from safetrust.core.app_exceptions import MFANotConfiguredError
from safetrust.core.config import settings
from safetrust.core.logging import get_logger
from safetrust.core.mfa import (
    decrypt_totp_secret,
    encrypt_totp_secret,
    format_manual_entry_key,
    generate_backup_codes,
    generate_qr_code_data_url,
    generate_sms_code,
    generate_totp_provisioning_uri,
    generate_totp_secret,
    get_fernet,
    hash_backup_code,
    hash_sms_code,
    mask_phone_number,
    verify_totp_code,
)
from safetrust.core.security_logging import log_security_event
from safetrust.models.mfa import (
    MFAAttempt,
    MFAAuditAction,
    MFAAuditEvent,
    MFABackupCode,
    MFAConfiguration,
    MFASMSCode,
    MFAType,
)
from safetrust.schemas.mfa import MFASetupResult, MFAStatus, MFAVerdict, MFAVerdictStatus
from safetrust.services.notifications import Notifier

logger = get_logger(__name__)

INVALID_CODE_MESSAGE = "Invalid MFA code"
RATE_LIMITED_MESSAGE = "Too many attempts. Please try again later."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MFAService:
    """
    Credential verification engine.

    Verification paths (``confirm``, ``verify``) report domain outcomes as
    :class:`MFAVerdict` values. Storage and encryption failures propagate.

    Verification for one user is serialized through a per-user lock, so the
    rate-limit count and backup-code consumption of concurrent calls from the
    same process cannot interleave. Backup codes are additionally consumed with
    a conditional delete, which keeps them single-use across processes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier | None = None,
        encryption_key: str | bytes | None = None,
        *,
        issuer: str | None = None,
        valid_window: int | None = None,
        max_attempts: int | None = None,
        attempt_window_seconds: int | None = None,
        backup_code_count: int | None = None,
        backup_code_pepper: str | None = None,
        sms_code_ttl_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._fernet = get_fernet(encryption_key)
        self.issuer = issuer or settings.MFA_TOTP_ISSUER
        self.valid_window = settings.MFA_TOTP_VALID_WINDOW if valid_window is None else valid_window
        self.max_attempts = max_attempts or settings.MFA_MAX_ATTEMPTS
        self.attempt_window = timedelta(
            seconds=attempt_window_seconds or settings.MFA_ATTEMPT_WINDOW_SECONDS
        )
        self.backup_code_count = backup_code_count or settings.MFA_BACKUP_CODES_COUNT
        self.backup_code_pepper = (
            backup_code_pepper if backup_code_pepper is not None else settings.MFA_BACKUP_CODE_PEPPER
        )
        self.sms_code_ttl = timedelta(
            seconds=sms_code_ttl_seconds or settings.MFA_SMS_CODE_TTL_SECONDS
        )
        self._clock = clock or _utcnow
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    async def setup(self, user_id: str, contact: str) -> MFASetupResult:
        """
        Start TOTP enrollment.

        Stores the secret encrypted and the backup codes hashed, leaves MFA
        disabled until ``confirm`` succeeds. The plaintext secret and codes are
        only present in the returned result.
        """
        secret = generate_totp_secret()
        backup_codes = generate_backup_codes(self.backup_code_count)
        now = self._clock()

        async with self._session_factory() as db:
            config = await db.get(MFAConfiguration, user_id)
            if config is None:
                config = MFAConfiguration(user_id=user_id, type=MFAType.TOTP.value)
                db.add(config)

            config.contact = contact
            config.totp_secret = encrypt_totp_secret(self._fernet, secret)
            config.is_enabled = False  # Enabled after verification
            config.setup_at = now
            config.verified_at = None
            config.disabled_at = None
            config.disabled_by = None
            await self._replace_backup_codes(db, config, backup_codes, now)
            await db.commit()

        provisioning_uri = generate_totp_provisioning_uri(secret, contact, issuer=self.issuer)
        logger.info(f"MFA TOTP setup initiated for user {user_id}")

        return MFASetupResult(
            secret=secret,
            provisioning_uri=provisioning_uri,
            qr_code_data_url=generate_qr_code_data_url(provisioning_uri),
            manual_entry_key=format_manual_entry_key(secret),
            backup_codes=backup_codes,
        )

    async def confirm(self, user_id: str, code: str) -> MFAVerdict:
        """Verify the first TOTP code after setup and enable MFA."""
        async with self._user_lock(user_id):
            async with self._session_factory() as db:
                config = await db.get(MFAConfiguration, user_id)
                if config is None or not config.totp_secret:
                    return MFAVerdict(
                        success=False,
                        status=MFAVerdictStatus.NOT_CONFIGURED,
                        message="MFA not configured for this user",
                    )

                now = self._clock()
                secret = decrypt_totp_secret(self._fernet, config.totp_secret)

                if not verify_totp_code(secret, code, window=self.valid_window, for_time=now):
                    self._audit(
                        db,
                        user_id,
                        MFAAuditAction.MFA_VERIFICATION_FAILED,
                        "Invalid TOTP token during setup",
                    )
                    await db.commit()
                    log_security_event(
                        "mfa_setup_verification_failed",
                        outcome="deny",
                        reason_code="MFA_INVALID",
                        user_id=user_id,
                    )
                    return MFAVerdict(
                        success=False,
                        status=MFAVerdictStatus.INVALID_CODE,
                        message="Invalid verification code",
                    )

                config.is_enabled = True
                config.verified_at = now
                self._audit(db, user_id, MFAAuditAction.MFA_ENABLED, "TOTP MFA successfully enabled")
                await db.commit()

        log_security_event("mfa_enabled", outcome="allow", user_id=user_id)
        return MFAVerdict(
            success=True,
            status=MFAVerdictStatus.SUCCESS,
            message="MFA successfully enabled",
        )

    # ------------------------------------------------------------------
    # Login-time verification
    # ------------------------------------------------------------------

    async def verify(
        self,
        user_id: str,
        code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> MFAVerdict:
        """
        Verify a TOTP or backup code during login.

        Order: enabled check, rate limit over failed attempts in the trailing
        window, TOTP, then backup code (consumed on match).
        """
        async with self._user_lock(user_id):
            async with self._session_factory() as db:
                config = await db.get(MFAConfiguration, user_id)
                if config is None or not config.is_enabled:
                    return MFAVerdict(
                        success=False,
                        status=MFAVerdictStatus.NOT_ENABLED,
                        message="MFA not enabled for this user",
                    )

                now = self._clock()
                recent_failures = await self._count_recent_failures(db, user_id, now)

                if recent_failures >= self.max_attempts:
                    self._audit(
                        db,
                        user_id,
                        MFAAuditAction.MFA_RATE_LIMITED,
                        "Too many MFA attempts",
                        ip_address,
                    )
                    await db.commit()
                    log_security_event(
                        "mfa_rate_limited",
                        outcome="deny",
                        reason_code="RATE_LIMITED",
                        user_id=user_id,
                        ip_address=ip_address,
                        recent_failures=recent_failures,
                    )
                    return MFAVerdict(
                        success=False,
                        status=MFAVerdictStatus.RATE_LIMITED,
                        message=RATE_LIMITED_MESSAGE,
                        remaining_attempts=0,
                    )

                method = None
                if config.totp_secret:
                    secret = decrypt_totp_secret(self._fernet, config.totp_secret)
                    if verify_totp_code(secret, code, window=self.valid_window, for_time=now):
                        method = "totp"

                if method is None and await self._consume_backup_code(db, user_id, code):
                    method = "backup_code"

                db.add(
                    MFAAttempt(
                        user_id=user_id,
                        success=method is not None,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        created_at=now,
                    )
                )

                if method is None:
                    self._audit(db, user_id, MFAAuditAction.MFA_FAILED, "Invalid MFA token", ip_address)
                    await db.commit()
                    remaining = max(0, self.max_attempts - recent_failures - 1)
                    log_security_event(
                        "mfa_failed",
                        outcome="deny",
                        reason_code="MFA_INVALID",
                        user_id=user_id,
                        ip_address=ip_address,
                        remaining_attempts=remaining,
                    )
                    return MFAVerdict(
                        success=False,
                        status=MFAVerdictStatus.INVALID_CODE,
                        message=INVALID_CODE_MESSAGE,
                        remaining_attempts=remaining,
                    )

                detail = (
                    "TOTP verification successful"
                    if method == "totp"
                    else "Backup code verification successful"
                )
                self._audit(db, user_id, MFAAuditAction.MFA_SUCCESS, detail, ip_address)
                await db.commit()

        log_security_event(
            "mfa_completed",
            outcome="allow",
            user_id=user_id,
            ip_address=ip_address,
            method=method,
        )
        if method == "backup_code":
            return MFAVerdict(
                success=True,
                status=MFAVerdictStatus.SUCCESS,
                message="MFA verification successful (backup code used)",
                backup_code_used=True,
            )
        return MFAVerdict(
            success=True,
            status=MFAVerdictStatus.SUCCESS,
            message="MFA verification successful",
        )

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def regenerate_backup_codes(self, user_id: str) -> list[str]:
        """Invalidate all existing backup codes and issue a new batch."""
        backup_codes = generate_backup_codes(self.backup_code_count)

        async with self._session_factory() as db:
            config = await db.get(MFAConfiguration, user_id)
            if config is None:
                raise MFANotConfiguredError(user_id)

            await self._replace_backup_codes(db, config, backup_codes, self._clock())
            self._audit(db, user_id, MFAAuditAction.BACKUP_CODES_GENERATED, "New backup codes generated")
            await db.commit()
            contact = config.contact

        logger.info(f"New backup codes generated for user {user_id}")
        self._notify_contact(
            contact,
            "Your MFA backup codes were regenerated",
            "New backup codes were generated for your account. "
            "Codes issued before this change no longer work.",
        )
        return backup_codes

    async def disable(self, user_id: str, acting_admin_id: str | None = None) -> None:
        """Disable MFA, recording whether an administrator did it."""
        async with self._session_factory() as db:
            config = await db.get(MFAConfiguration, user_id)
            if config is None:
                raise MFANotConfiguredError(user_id)

            config.is_enabled = False
            config.disabled_at = self._clock()
            config.disabled_by = acting_admin_id
            details = (
                f"MFA disabled by admin {acting_admin_id}" if acting_admin_id else "MFA disabled by user"
            )
            self._audit(db, user_id, MFAAuditAction.MFA_DISABLED, details)
            await db.commit()
            contact = config.contact

        logger.info(f"MFA disabled for user {user_id}", extra={"admin_user_id": acting_admin_id})
        log_security_event(
            "mfa_disabled",
            outcome="allow",
            user_id=user_id,
            admin_user_id=acting_admin_id,
        )
        self._notify_contact(
            contact,
            "Multi-factor authentication disabled",
            "Multi-factor authentication was disabled for your account"
            + (" by an administrator." if acting_admin_id else "."),
        )

    async def status(self, user_id: str) -> MFAStatus:
        """Read-only status. Never exposes the secret or code hashes."""
        async with self._session_factory() as db:
            config = await db.get(MFAConfiguration, user_id)
            if config is None:
                return MFAStatus()

            return MFAStatus(
                enabled=config.is_enabled,
                type=config.type,
                setup_at=config.setup_at,
                verified_at=config.verified_at,
                has_backup_codes=(config.backup_codes_count or 0) > 0,
            )

    async def send_sms_code(self, user_id: str, phone_number: str) -> None:
        """Issue a short-lived SMS code and hand it to the notifier."""
        code = generate_sms_code()
        now = self._clock()

        async with self._session_factory() as db:
            db.add(
                MFASMSCode(
                    user_id=user_id,
                    code_hash=hash_sms_code(code),
                    phone_number=phone_number,
                    expires_at=now + self.sms_code_ttl,
                    created_at=now,
                )
            )
            self._audit(
                db,
                user_id,
                MFAAuditAction.SMS_CODE_SENT,
                f"SMS code sent to {mask_phone_number(phone_number)}",
            )
            await db.commit()

        if self._notifier is None:
            logger.warning("No notifier configured, SMS code not delivered", extra={"user_id": user_id})
        else:
            self._notifier.notify_sms(phone_number, f"Your SMS verification code is: {code}")
        logger.info(f"MFA SMS code sent to user {user_id}")

    async def audit_trail(self, user_id: str, limit: int = 50) -> list[MFAAuditEvent]:
        """Most recent audit events for a user, newest first."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(MFAAuditEvent)
                .where(MFAAuditEvent.user_id == user_id)
                .order_by(MFAAuditEvent.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def ping(self) -> None:
        """Round-trip the store. Raises if it is unreachable."""
        async with self._session_factory() as db:
            await db.execute(text("SELECT 1"))

    async def close(self) -> None:
        """Wait for outstanding notifications."""
        if self._notifier is not None:
            await self._notifier.drain()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _count_recent_failures(self, db: AsyncSession, user_id: str, now: datetime) -> int:
        window_start = now - self.attempt_window
        result = await db.execute(
            select(func.count())
            .select_from(MFAAttempt)
            .where(
                MFAAttempt.user_id == user_id,
                MFAAttempt.success.is_(False),
                MFAAttempt.created_at >= window_start,
            )
        )
        return int(result.scalar_one())

    async def _consume_backup_code(self, db: AsyncSession, user_id: str, code: str) -> bool:
        if not code:
            return False

        code_hash = hash_backup_code(code, self.backup_code_pepper)
        result = await db.execute(
            select(MFABackupCode.id)
            .where(MFABackupCode.user_id == user_id, MFABackupCode.code_hash == code_hash)
            .limit(1)
        )
        code_id = result.scalar_one_or_none()
        if code_id is None:
            return False

        # Conditional delete: only the caller that removes the row gets the success
        deleted = await db.execute(delete(MFABackupCode).where(MFABackupCode.id == code_id))
        if deleted.rowcount != 1:
            return False

        await db.execute(
            update(MFAConfiguration)
            .where(MFAConfiguration.user_id == user_id)
            .values(backup_codes_count=MFAConfiguration.backup_codes_count - 1)
        )
        return True

    async def _replace_backup_codes(
        self,
        db: AsyncSession,
        config: MFAConfiguration,
        backup_codes: list[str],
        now: datetime,
    ) -> None:
        await db.execute(delete(MFABackupCode).where(MFABackupCode.user_id == config.user_id))
        for position, code in enumerate(backup_codes):
            db.add(
                MFABackupCode(
                    user_id=config.user_id,
                    code_hash=hash_backup_code(code, self.backup_code_pepper),
                    position=position,
                    created_at=now,
                )
            )
        config.backup_codes_count = len(backup_codes)
        config.backup_codes_generated_at = now

    def _audit(
        self,
        db: AsyncSession,
        user_id: str,
        action: MFAAuditAction,
        details: str,
        ip_address: str | None = None,
    ) -> None:
        db.add(
            MFAAuditEvent(
                user_id=user_id,
                action=action.value,
                entity_type="MFA",
                details=details,
                ip_address=ip_address,
                created_at=self._clock(),
            )
        )

    def _notify_contact(self, contact: str | None, subject: str, body: str) -> None:
        if self._notifier is None or not contact:
            return
        self._notifier.notify_email(contact, subject, body)
