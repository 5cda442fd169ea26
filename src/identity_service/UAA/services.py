# src/identity_service/UAA/services.py
import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from passlib.context import CryptContext
from passlib.exc import PasswordValueError
from sqlalchemy.ext.asyncio import async_sessionmaker

from . import utils
from .exceptions import (
    ConfigInvalid,
    InvalidCredentials,
    InvalidPassword,
    TokenExpired,
    TokenInvalid,
    UserNotFound,
    UserValidationError,
)
from .models import User
from .repository import PROFILE_FIELDS, unit_of_work
from .schemas import IssuedToken, TokenClaims, UserCreate, UserUpdate
from .tokens import mint_token, parse_token

logger = structlog.get_logger(__name__)

DEFAULT_OTP_LENGTH = 6
DEFAULT_OTP_VALIDITY_MINUTES = 15


def normalize_username(username: str) -> str:
    """Return the username exactly as it will be stored and matched at login."""
    username = (username or "").strip()
    if not utils.USERNAME_MIN_LENGTH <= len(username) <= utils.USERNAME_MAX_LENGTH:
        raise UserValidationError(
            "username",
            f"username must be {utils.USERNAME_MIN_LENGTH}-{utils.USERNAME_MAX_LENGTH} characters",
        )
    return username


def validate_password(password: str) -> str:
    if utils.password_too_long(password):
        raise UserValidationError(
            "password", f"password must be at most {utils.PASSWORD_MAX_BYTES} bytes"
        )
    return password


def _validate_email(email: str) -> str:
    email = (email or "").strip()
    if not utils.validate_email(email):
        raise UserValidationError("email", "email address is not valid")
    return email


class IdentityService:
    """
    Register/login/password/OTP flows over the user store.

    One instance is built at startup and shared by all requests; nothing on it
    changes after ``__init__``. Every operation opens its own unit of work.

    ``reset_password`` performs no proof-of-identity check of its own: callers
    must gate it behind an independent verification such as ``verify_otp``.
    """

    def __init__(
        self,
        sessions: async_sessionmaker,
        secret_key: str,
        token_ttl: timedelta,
        *,
        token_leeway: int = 0,
        otp_length: int = DEFAULT_OTP_LENGTH,
        otp_validity_minutes: int = DEFAULT_OTP_VALIDITY_MINUTES,
        pwd_context: Optional[CryptContext] = None,
        otp_generator: Callable[[int], str] = utils.generate_numeric_otp,
        clock: Callable[[], datetime] = utils.utcnow,
    ):
        if sessions is None:
            raise ConfigInvalid("a store session factory is required")
        if not secret_key:
            raise ConfigInvalid("a non-empty signing secret is required")
        if token_ttl is None or token_ttl <= timedelta(0):
            raise ConfigInvalid("token validity must be a positive duration")
        if token_leeway < 0:
            raise ConfigInvalid("token leeway cannot be negative")

        self._sessions = sessions
        self._secret_key = secret_key
        self._token_ttl = token_ttl
        self._token_leeway = token_leeway
        self._otp_length = otp_length
        self._otp_validity_minutes = otp_validity_minutes
        self._pwd_context = pwd_context or utils.pwd_context
        self._generate_otp = otp_generator
        self._clock = clock

    # bcrypt is CPU bound; keep it off the event loop
    async def _hash(self, password: str) -> str:
        validate_password(password)
        try:
            return await asyncio.to_thread(utils.hash_password, password, self._pwd_context)
        except PasswordValueError as e:
            raise UserValidationError("password", str(e)) from e

    async def _verify(self, password: str, hashed: str) -> bool:
        return await asyncio.to_thread(utils.verify_password, password, hashed, self._pwd_context)

    @property
    def token_ttl(self) -> timedelta:
        return self._token_ttl

    # --- registration ---
    async def register(self, user_in: UserCreate) -> int:
        username = normalize_username(user_in.username)
        email = _validate_email(user_in.email)
        hashed = await self._hash(user_in.password)
        now = self._clock()
        user = User(
            username=username,
            email=email,
            hashed_password=hashed,
            first_name=user_in.first_name,
            last_name=user_in.last_name,
            is_active=True,
            is_superuser=False,
            date_joined=now,
            password_changed=now,
        )
        # the unique constraints decide races between concurrent registrations
        async with unit_of_work(self._sessions) as repo:
            user_id = await repo.insert_user(user)
        logger.info("user_registered", user_id=user_id, username=username)
        return user_id

    # --- authentication ---
    async def authenticate(self, handle: str, password: str) -> User:
        async with unit_of_work(self._sessions) as repo:
            try:
                user = await repo.find_by_login(handle)
            except UserNotFound:
                await asyncio.to_thread(utils.dummy_verify, self._pwd_context)
                logger.info("auth_failed", reason="unknown_or_inactive")
                raise InvalidCredentials() from None

            if not await self._verify(password, user.hashed_password):
                logger.info("auth_failed", reason="wrong_password", user_id=user.id)
                raise InvalidCredentials()

            now = self._clock()
            await repo.update_last_login(user.id, now)
            user.last_login = now
        logger.info("auth_success", user_id=user.id)
        return user

    async def login(self, handle: str, password: str) -> Tuple[User, IssuedToken]:
        user = await self.authenticate(handle, password)
        issued = self.issue_token(user)
        logger.info("token_issued", user_id=user.id, expires_at=issued.expires_at.isoformat())
        return user, issued

    # --- tokens ---
    def issue_token(self, user: User) -> IssuedToken:
        now = self._clock()
        token = mint_token(
            {"sub": user.id, "username": user.username, "is_superuser": bool(user.is_superuser)},
            self._secret_key,
            self._token_ttl,
            now=now,
        )
        expires_at = utils.from_timestamp(utils.to_timestamp(now) + int(self._token_ttl.total_seconds()))
        return IssuedToken(token=token, expires_at=expires_at)

    def verify_token(self, token: str) -> TokenClaims:
        try:
            return parse_token(token, self._secret_key, now=self._clock(), leeway=self._token_leeway)
        except TokenExpired:
            logger.debug("token_expired")
            raise
        except TokenInvalid as e:
            logger.info("token_rejected", kind=type(e).__name__)
            raise

    # --- users ---
    async def get_user(self, user_id: int) -> User:
        async with unit_of_work(self._sessions) as repo:
            return await repo.find_by_id(user_id)

    async def update_user(self, user_id: int, changes: UserUpdate) -> User:
        values: Dict[str, Any] = {
            k: v for k, v in changes.model_dump(exclude_unset=True).items() if k in PROFILE_FIELDS
        }
        for flag in ("is_active", "is_superuser"):
            if flag in values and values[flag] is None:
                del values[flag]
        if "username" in values:
            values["username"] = normalize_username(values["username"])
        if "email" in values:
            values["email"] = _validate_email(values["email"])

        async with unit_of_work(self._sessions) as repo:
            user = await repo.update_profile(user_id, values)
        logger.info("user_updated", user_id=user_id, fields=sorted(values))
        return user

    # --- OTP ---
    async def generate_otp(
        self,
        user_id: int,
        length: Optional[int] = None,
        validity_minutes: Optional[int] = None,
    ) -> str:
        """
        Issue a fresh OTP for ``user_id`` and return it.

        Prior codes for the user are deleted in the same transaction, which
        also holds a row lock on the user, so at most one live code exists.
        Delivering the code is the caller's job.
        """
        length = self._otp_length if length is None else length
        validity_minutes = self._otp_validity_minutes if validity_minutes is None else validity_minutes
        if length <= 0:
            length = DEFAULT_OTP_LENGTH
        if validity_minutes <= 0:
            validity_minutes = DEFAULT_OTP_VALIDITY_MINUTES
        if length > utils.OTP_MAX_LENGTH:
            raise UserValidationError("otp_length", f"otp length must be at most {utils.OTP_MAX_LENGTH} digits")

        async with unit_of_work(self._sessions) as repo:
            # locks the user row; concurrent issuances for the same user serialize here
            await repo.find_by_id(user_id, for_update=True)
            code = self._generate_otp(length)
            expires_at = self._clock() + timedelta(minutes=validity_minutes)
            await repo.delete_otps_for_user(user_id)
            await repo.insert_otp(user_id, code, expires_at)
        logger.info("otp_created", user_id=user_id, validity_minutes=validity_minutes)
        return code

    async def verify_otp(self, user_id: int, code: str) -> bool:
        async with unit_of_work(self._sessions) as repo:
            otp_id = await repo.find_live_otp(user_id, code, self._clock())
            if otp_id is None:
                logger.info("otp_rejected", user_id=user_id)
                return False
            verified = await repo.mark_otp_verified(otp_id)
        if verified:
            logger.info("otp_verified", user_id=user_id)
        else:
            logger.info("otp_replayed", user_id=user_id)
        return verified

    # --- passwords ---
    async def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        async with unit_of_work(self._sessions) as repo:
            user = await repo.find_by_id(user_id)
            if not await self._verify(current_password, user.hashed_password):
                logger.info("password_change_rejected", user_id=user_id)
                raise InvalidPassword()
            hashed = await self._hash(new_password)
            await repo.update_password(user_id, hashed, self._clock())
        logger.info("password_changed", user_id=user_id)

    async def reset_password(self, user_id: int, new_password: str) -> None:
        hashed = await self._hash(new_password)
        async with unit_of_work(self._sessions) as repo:
            await repo.update_password(user_id, hashed, self._clock())
        logger.info("password_reset", user_id=user_id)
