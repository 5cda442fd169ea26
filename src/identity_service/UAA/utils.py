# src/identity_service/UAA/utils.py
import secrets
from datetime import datetime, timezone
from typing import Optional

import structlog
from email_validator import EmailNotValidError, validate_email as _check_email
from passlib.context import CryptContext

from .exceptions import EntropyUnavailable

logger = structlog.get_logger(__name__)

BCRYPT_ROUNDS = 12
OTP_LENGTH = 6
OTP_MAX_LENGTH = 16

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
# bcrypt only reads this many bytes of a password
PASSWORD_MAX_BYTES = 72


def build_password_context(rounds: int = BCRYPT_ROUNDS) -> CryptContext:
    return CryptContext(
        schemes=["bcrypt"],
        deprecated="auto",
        bcrypt__rounds=rounds,
        bcrypt__truncate_error=True,
    )


pwd_context = build_password_context()


def utcnow() -> datetime:
    """Naive UTC wall clock, the format timestamps are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def from_timestamp(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


# --- Password utilities ---
def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > PASSWORD_MAX_BYTES


def hash_password(password: str, context: Optional[CryptContext] = None) -> str:
    return (context or pwd_context).hash(password)


def verify_password(plain: str, hashed: str, context: Optional[CryptContext] = None) -> bool:
    # hashing refuses anything longer, so a longer candidate can never match
    if plain is not None and password_too_long(plain):
        return False
    # malformed stored hashes collapse into a plain mismatch
    try:
        return (context or pwd_context).verify(plain, hashed)
    except (ValueError, TypeError) as e:
        logger.warning("password_verify_failed", error_type=type(e).__name__)
        return False


def dummy_verify(context: Optional[CryptContext] = None) -> None:
    """Spend the same time as a real verification when there is no hash to check."""
    (context or pwd_context).dummy_verify()


# --- OTP ---
def generate_numeric_otp(length: int = OTP_LENGTH) -> str:
    """Return ``length`` decimal digits, each drawn uniformly from the OS CSPRNG."""
    if length <= 0 or length > OTP_MAX_LENGTH:
        raise ValueError(f"otp length must be between 1 and {OTP_MAX_LENGTH}")
    try:
        return "".join(str(secrets.randbelow(10)) for _ in range(length))
    except OSError as e:
        logger.error("otp_entropy_unavailable", error=str(e))
        raise EntropyUnavailable("random source unavailable") from e


# --- Field helpers ---
def validate_email(email: str) -> bool:
    if not email:
        return False
    try:
        _check_email(email, check_deliverability=False, globally_deliverable=False)
    except EmailNotValidError:
        return False
    return True
