"""MFA utilities: TOTP secrets, backup codes and SMS codes."""

import base64
import hashlib
import io
import secrets
from datetime import datetime

import pyotp
import qrcode
from cryptography.fernet import Fernet

from safetrust.core.config import settings
from safetrust.core.logging import get_logger

logger = get_logger(__name__)

TOTP_DIGITS = 6


def get_fernet(key: str | bytes | None = None) -> Fernet:
    """Build the Fernet cipher used for TOTP secrets at rest."""
    if key is None:
        key = settings.MFA_ENCRYPTION_KEY
    if not key:
        raise ValueError("MFA_ENCRYPTION_KEY must be set")
    if isinstance(key, str):
        key = key.encode()
    return Fernet(key)


def encrypt_totp_secret(fernet: Fernet, secret: str) -> str:
    """Encrypt TOTP secret. Every call uses a fresh IV."""
    return fernet.encrypt(secret.encode()).decode()


def decrypt_totp_secret(fernet: Fernet, encrypted_secret: str) -> str:
    """Decrypt TOTP secret."""
    return fernet.decrypt(encrypted_secret.encode()).decode()


def generate_totp_secret(length: int | None = None) -> str:
    """Generate a new base32 TOTP secret."""
    if length is None:
        length = settings.MFA_TOTP_SECRET_LENGTH
    return pyotp.random_base32(length=max(length, 32))


def generate_totp_provisioning_uri(secret: str, contact: str, issuer: str | None = None) -> str:
    """Generate the otpauth:// URI for authenticator apps."""
    totp = pyotp.TOTP(secret)
    return totp.provisioning_uri(
        name=contact,
        issuer_name=issuer or settings.MFA_TOTP_ISSUER,
    )


def generate_qr_code_data_url(provisioning_uri: str) -> str:
    """
    Render a provisioning URI as a PNG QR code.

    Returns:
        data: URL ready for <img src="...">
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(provisioning_uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{encoded}"


def format_manual_entry_key(secret: str) -> str:
    """Group a base32 secret in blocks of four for manual typing."""
    return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))


def normalize_code(code: str) -> str:
    """Strip whitespace and dashes users add while typing codes."""
    return code.replace(" ", "").replace("-", "").strip().upper()


def verify_totp_code(
    secret: str,
    code: str,
    window: int | None = None,
    for_time: datetime | None = None,
) -> bool:
    """Verify a TOTP code with clock drift tolerance of ±window time steps."""
    if not code or not secret:
        return False

    code = normalize_code(code)
    if not code.isdigit() or len(code) != TOTP_DIGITS:
        return False

    if window is None:
        window = settings.MFA_TOTP_VALID_WINDOW

    try:
        totp = pyotp.TOTP(secret)
        if for_time is None:
            return totp.verify(code, valid_window=window)
        return totp.verify(code, for_time=for_time, valid_window=window)
    except Exception as e:
        logger.warning(f"TOTP verification error: {e}")
        return False


def generate_backup_codes(count: int | None = None) -> list[str]:
    """Generate single-use backup codes (8 upper-case hex characters each)."""
    if count is None:
        count = settings.MFA_BACKUP_CODES_COUNT
    return [secrets.token_hex(4).upper() for _ in range(count)]


def hash_backup_code(code: str, pepper: str | None = None) -> str:
    """Hash a backup code for storage."""
    if pepper is None:
        pepper = settings.MFA_BACKUP_CODE_PEPPER

    normalized = normalize_code(code)
    combined = f"{pepper}:{normalized}" if pepper else normalized
    return hashlib.sha256(combined.encode()).hexdigest()


def generate_sms_code() -> str:
    """Generate a 6-digit SMS verification code."""
    return f"{secrets.randbelow(900000) + 100000}"


def hash_sms_code(code: str) -> str:
    """Hash an SMS code for storage."""
    return hashlib.sha256(code.encode()).hexdigest()


def mask_phone_number(phone_number: str) -> str:
    """Keep only the last four digits of a phone number."""
    return f"***{phone_number[-4:]}"
