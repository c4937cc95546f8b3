"""Tests for the MFA verification engine."""

import asyncio
from datetime import timedelta

import pyotp
import pytest
from sqlalchemy import func, select

from safetrust.core.app_exceptions import MFANotConfiguredError
from safetrust.models.mfa import MFAAttempt, MFAAuditAction, MFAAuditEvent, MFABackupCode, MFAConfiguration, MFASMSCode
from safetrust.schemas.mfa import MFAVerdictStatus

USER_ID = "user-1"
CONTACT = "alice@example.com"
WRONG_CODE = "000000"


async def _enroll(mfa_service, clock, user_id: str = USER_ID):
    """Set up and confirm MFA, returning the setup result."""
    result = await mfa_service.setup(user_id, CONTACT)
    verdict = await mfa_service.confirm(user_id, pyotp.TOTP(result.secret).at(clock.now))
    assert verdict.success
    return result


async def _audit_actions(mfa_db, user_id: str = USER_ID) -> list[str]:
    async with mfa_db.session_factory() as db:
        result = await db.execute(select(MFAAuditEvent.action).where(MFAAuditEvent.user_id == user_id))
        return list(result.scalars().all())


async def _attempt_count(mfa_db, success: bool | None = None) -> int:
    async with mfa_db.session_factory() as db:
        stmt = select(func.count()).select_from(MFAAttempt)
        if success is not None:
            stmt = stmt.where(MFAAttempt.success.is_(success))
        return (await db.execute(stmt)).scalar_one()


# ----------------------------------------------------------------------
# Setup and confirmation
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_setup_returns_secret_and_backup_codes(mfa_service, mfa_db) -> None:
    """Test that setup returns the secret once and stores it encrypted."""
    result = await mfa_service.setup(USER_ID, CONTACT)

    assert result.provisioning_uri.startswith("otpauth://totp/")
    assert result.qr_code_data_url.startswith("data:image/png;base64,")
    assert result.manual_entry_key.replace(" ", "") == result.secret
    assert len(result.backup_codes) == 10

    async with mfa_db.session_factory() as db:
        config = await db.get(MFAConfiguration, USER_ID)
        assert config.is_enabled is False
        assert config.totp_secret != result.secret
        assert result.secret not in config.totp_secret
        hashes = (await db.execute(select(MFABackupCode.code_hash))).scalars().all()
        assert len(hashes) == 10
        assert not set(result.backup_codes) & set(hashes)


@pytest.mark.asyncio
async def test_setup_is_not_audited(mfa_service, mfa_db) -> None:
    await mfa_service.setup(USER_ID, CONTACT)
    assert await _audit_actions(mfa_db) == []


@pytest.mark.asyncio
async def test_confirm_enables_mfa_within_window(mfa_service, mfa_db, clock) -> None:
    """Test that a code one step old still confirms enrollment."""
    result = await mfa_service.setup(USER_ID, CONTACT)
    code = pyotp.TOTP(result.secret).at(clock.now - timedelta(seconds=30))

    verdict = await mfa_service.confirm(USER_ID, code)

    assert verdict.success
    assert verdict.status == MFAVerdictStatus.SUCCESS
    assert verdict.message == "MFA successfully enabled"
    status = await mfa_service.status(USER_ID)
    assert status.enabled is True
    assert status.verified_at is not None
    assert MFAAuditAction.MFA_ENABLED.value in await _audit_actions(mfa_db)


@pytest.mark.asyncio
async def test_confirm_rejects_invalid_code(mfa_service, mfa_db, clock) -> None:
    result = await mfa_service.setup(USER_ID, CONTACT)
    stale = pyotp.TOTP(result.secret).at(clock.now - timedelta(minutes=5))

    verdict = await mfa_service.confirm(USER_ID, stale)

    assert not verdict.success
    assert verdict.status == MFAVerdictStatus.INVALID_CODE
    assert verdict.message == "Invalid verification code"
    assert (await mfa_service.status(USER_ID)).enabled is False
    assert await _audit_actions(mfa_db) == [MFAAuditAction.MFA_VERIFICATION_FAILED.value]


@pytest.mark.asyncio
async def test_confirm_without_setup_is_not_configured(mfa_service) -> None:
    verdict = await mfa_service.confirm("ghost", "123456")

    assert not verdict.success
    assert verdict.status == MFAVerdictStatus.NOT_CONFIGURED


@pytest.mark.asyncio
async def test_setup_again_replaces_secret_and_codes(mfa_service, clock) -> None:
    """Test that re-running setup resets an enabled configuration."""
    first = await _enroll(mfa_service, clock)

    second = await mfa_service.setup(USER_ID, CONTACT)

    assert second.secret != first.secret
    assert (await mfa_service.status(USER_ID)).enabled is False
    # Old backup codes no longer exist
    await mfa_service.confirm(USER_ID, pyotp.TOTP(second.secret).at(clock.now))
    verdict = await mfa_service.verify(USER_ID, first.backup_codes[0])
    assert verdict.status == MFAVerdictStatus.INVALID_CODE


# ----------------------------------------------------------------------
# Login-time verification
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_verify_not_enabled(mfa_service) -> None:
    """Test that verification is refused before MFA is enabled."""
    await mfa_service.setup(USER_ID, CONTACT)

    verdict = await mfa_service.verify(USER_ID, "123456")

    assert verdict.status == MFAVerdictStatus.NOT_ENABLED
    assert verdict.message == "MFA not enabled for this user"


@pytest.mark.asyncio
async def test_verify_unknown_user_not_enabled(mfa_service) -> None:
    verdict = await mfa_service.verify("ghost", "123456")
    assert verdict.status == MFAVerdictStatus.NOT_ENABLED


@pytest.mark.asyncio
async def test_verify_totp_success(mfa_service, mfa_db, clock) -> None:
    result = await _enroll(mfa_service, clock)
    clock.advance(seconds=45)

    verdict = await mfa_service.verify(USER_ID, pyotp.TOTP(result.secret).at(clock.now), ip_address="10.0.0.1")

    assert verdict.success
    assert verdict.message == "MFA verification successful"
    assert verdict.backup_code_used is False
    assert await _attempt_count(mfa_db, success=True) == 1
    assert MFAAuditAction.MFA_SUCCESS.value in await _audit_actions(mfa_db)


@pytest.mark.asyncio
async def test_backup_code_is_single_use(mfa_service, clock) -> None:
    """Test that a backup code works exactly once."""
    result = await _enroll(mfa_service, clock)
    code = result.backup_codes[3]

    first = await mfa_service.verify(USER_ID, code)
    second = await mfa_service.verify(USER_ID, code)

    assert first.success
    assert first.backup_code_used is True
    assert first.message == "MFA verification successful (backup code used)"
    assert not second.success
    assert second.status == MFAVerdictStatus.INVALID_CODE


@pytest.mark.asyncio
async def test_backup_code_accepts_formatting(mfa_service, clock) -> None:
    result = await _enroll(mfa_service, clock)
    code = result.backup_codes[0].lower()

    verdict = await mfa_service.verify(USER_ID, f"{code[:4]}-{code[4:]}")

    assert verdict.success
    assert verdict.backup_code_used


@pytest.mark.asyncio
async def test_backup_code_consumption_updates_count(mfa_service, mfa_db, clock) -> None:
    result = await _enroll(mfa_service, clock)

    await mfa_service.verify(USER_ID, result.backup_codes[0])

    async with mfa_db.session_factory() as db:
        config = await db.get(MFAConfiguration, USER_ID)
        assert config.backup_codes_count == 9
        remaining = (await db.execute(select(func.count()).select_from(MFABackupCode))).scalar_one()
        assert remaining == 9


@pytest.mark.asyncio
async def test_concurrent_backup_code_use_succeeds_once(mfa_service, clock) -> None:
    """Test that the same backup code submitted concurrently is accepted once."""
    result = await _enroll(mfa_service, clock)
    code = result.backup_codes[5]

    verdicts = await asyncio.gather(*(mfa_service.verify(USER_ID, code) for _ in range(5)))

    assert sum(1 for v in verdicts if v.success) == 1


@pytest.mark.asyncio
async def test_failed_verification_reports_remaining_attempts(mfa_service, mfa_db, clock) -> None:
    await _enroll(mfa_service, clock)

    remaining = []
    for _ in range(5):
        verdict = await mfa_service.verify(USER_ID, WRONG_CODE)
        assert verdict.status == MFAVerdictStatus.INVALID_CODE
        assert verdict.message == "Invalid MFA code"
        remaining.append(verdict.remaining_attempts)

    assert remaining == [4, 3, 2, 1, 0]
    assert await _attempt_count(mfa_db, success=False) == 5


@pytest.mark.asyncio
async def test_sixth_attempt_is_rate_limited(mfa_service, mfa_db, clock) -> None:
    """Test that after five failures even a valid code is refused."""
    result = await _enroll(mfa_service, clock)
    for _ in range(5):
        await mfa_service.verify(USER_ID, WRONG_CODE)

    verdict = await mfa_service.verify(USER_ID, pyotp.TOTP(result.secret).at(clock.now))

    assert verdict.status == MFAVerdictStatus.RATE_LIMITED
    assert verdict.message == "Too many attempts. Please try again later."
    assert verdict.remaining_attempts == 0
    # The refused call does not record another attempt
    assert await _attempt_count(mfa_db) == 5
    assert MFAAuditAction.MFA_RATE_LIMITED.value in await _audit_actions(mfa_db)


@pytest.mark.asyncio
async def test_rate_limited_call_does_not_consume_backup_code(mfa_service, clock) -> None:
    result = await _enroll(mfa_service, clock)
    for _ in range(5):
        await mfa_service.verify(USER_ID, WRONG_CODE)

    limited = await mfa_service.verify(USER_ID, result.backup_codes[0])
    clock.advance(seconds=901)
    later = await mfa_service.verify(USER_ID, result.backup_codes[0])

    assert limited.status == MFAVerdictStatus.RATE_LIMITED
    assert later.success


@pytest.mark.asyncio
async def test_failures_expire_after_window(mfa_service, clock) -> None:
    """Test that attempts older than fifteen minutes no longer count."""
    result = await _enroll(mfa_service, clock)
    for _ in range(5):
        await mfa_service.verify(USER_ID, WRONG_CODE)

    clock.advance(seconds=901)
    verdict = await mfa_service.verify(USER_ID, pyotp.TOTP(result.secret).at(clock.now))

    assert verdict.success


@pytest.mark.asyncio
async def test_success_does_not_reset_failure_window(mfa_service, clock) -> None:
    result = await _enroll(mfa_service, clock)
    totp = pyotp.TOTP(result.secret)
    for _ in range(4):
        await mfa_service.verify(USER_ID, WRONG_CODE)

    assert (await mfa_service.verify(USER_ID, totp.at(clock.now))).success

    last = await mfa_service.verify(USER_ID, WRONG_CODE)
    assert last.remaining_attempts == 0
    assert (await mfa_service.verify(USER_ID, totp.at(clock.now))).status == MFAVerdictStatus.RATE_LIMITED


@pytest.mark.asyncio
async def test_rate_limit_is_per_user(mfa_service, clock) -> None:
    await _enroll(mfa_service, clock, user_id="user-a")
    other = await _enroll(mfa_service, clock, user_id="user-b")
    for _ in range(5):
        await mfa_service.verify("user-a", WRONG_CODE)

    verdict = await mfa_service.verify("user-b", pyotp.TOTP(other.secret).at(clock.now))

    assert verdict.success


# ----------------------------------------------------------------------
# Management
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_regenerate_invalidates_old_codes(mfa_service, mfa_db, clock, email_provider, notifier) -> None:
    result = await _enroll(mfa_service, clock)

    new_codes = await mfa_service.regenerate_backup_codes(USER_ID)
    await notifier.drain()

    assert len(new_codes) == 10
    assert not set(new_codes) & set(result.backup_codes)
    assert (await mfa_service.verify(USER_ID, result.backup_codes[0])).status == MFAVerdictStatus.INVALID_CODE
    assert (await mfa_service.verify(USER_ID, new_codes[0])).success
    assert MFAAuditAction.BACKUP_CODES_GENERATED.value in await _audit_actions(mfa_db)
    assert email_provider.sent[-1]["to"] == CONTACT


@pytest.mark.asyncio
async def test_regenerate_without_configuration_raises(mfa_service) -> None:
    with pytest.raises(MFANotConfiguredError):
        await mfa_service.regenerate_backup_codes("ghost")


@pytest.mark.asyncio
async def test_disable_by_admin_is_audited(mfa_service, mfa_db, clock, email_provider, notifier) -> None:
    """Test that an admin disable records the acting admin."""
    await _enroll(mfa_service, clock)

    await mfa_service.disable(USER_ID, acting_admin_id="admin-7")
    await notifier.drain()

    status = await mfa_service.status(USER_ID)
    assert status.enabled is False
    async with mfa_db.session_factory() as db:
        config = await db.get(MFAConfiguration, USER_ID)
        assert config.disabled_by == "admin-7"
        event = (
            await db.execute(
                select(MFAAuditEvent).where(MFAAuditEvent.action == MFAAuditAction.MFA_DISABLED.value)
            )
        ).scalar_one()
        assert event.details == "MFA disabled by admin admin-7"
    assert "administrator" in email_provider.sent[-1]["body_text"]
    assert (await mfa_service.verify(USER_ID, "123456")).status == MFAVerdictStatus.NOT_ENABLED


@pytest.mark.asyncio
async def test_disable_by_user(mfa_service, mfa_db, clock) -> None:
    await _enroll(mfa_service, clock)

    await mfa_service.disable(USER_ID)

    trail = await mfa_service.audit_trail(USER_ID)
    assert any(e.details == "MFA disabled by user" for e in trail)


@pytest.mark.asyncio
async def test_disable_without_configuration_raises(mfa_service) -> None:
    with pytest.raises(MFANotConfiguredError):
        await mfa_service.disable("ghost")


@pytest.mark.asyncio
async def test_status_without_configuration(mfa_service) -> None:
    status = await mfa_service.status("ghost")

    assert status.enabled is False
    assert status.has_backup_codes is False


@pytest.mark.asyncio
async def test_status_never_exposes_secret(mfa_service, clock) -> None:
    result = await _enroll(mfa_service, clock)

    payload = (await mfa_service.status(USER_ID)).model_dump_json()

    assert result.secret not in payload
    assert (await mfa_service.status(USER_ID)).has_backup_codes is True


@pytest.mark.asyncio
async def test_send_sms_code(mfa_service, mfa_db, sms_provider, notifier) -> None:
    """Test that an SMS code is stored hashed and delivered out of band."""
    await mfa_service.send_sms_code(USER_ID, "+15551234567")
    await notifier.drain()

    assert len(sms_provider.sent) == 1
    message = sms_provider.sent[0]
    assert message["to"] == "+15551234567"
    code = message["body"].rsplit(" ", 1)[-1]
    assert len(code) == 6

    async with mfa_db.session_factory() as db:
        row = (await db.execute(select(MFASMSCode))).scalar_one()
        assert row.code_hash != code
        event = (await db.execute(select(MFAAuditEvent))).scalar_one()
        assert event.action == MFAAuditAction.SMS_CODE_SENT.value
        assert event.details == "SMS code sent to ***4567"


@pytest.mark.asyncio
async def test_audit_trail_newest_first(mfa_service, clock) -> None:
    await _enroll(mfa_service, clock)
    clock.advance(seconds=10)
    await mfa_service.verify(USER_ID, WRONG_CODE)

    trail = await mfa_service.audit_trail(USER_ID)

    assert [e.action for e in trail] == [
        MFAAuditAction.MFA_FAILED.value,
        MFAAuditAction.MFA_ENABLED.value,
    ]
