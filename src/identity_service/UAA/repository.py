# src/identity_service/UAA/repository.py
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

import structlog
from sqlalchemy import delete, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .exceptions import Conflict, StoreFailure, UserNotFound
from .models import OTP, User

logger = structlog.get_logger(__name__)

PROFILE_FIELDS = ("username", "email", "first_name", "last_name", "is_active", "is_superuser")


class UserRepository:
    """
    Typed access to the ``users`` and ``otp`` tables.

    Methods only flush; the surrounding ``unit_of_work`` owns commit/rollback,
    so a sequence of calls made through one repository is atomic.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- users ---
    async def insert_user(self, user: User) -> int:
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.info("insert_user_conflict", username=user.username)
            raise Conflict() from e
        return user.id

    async def find_by_login(self, handle: str) -> User:
        q = select(User).where(
            or_(User.username == handle, User.email == handle),
            User.is_active == True,  # noqa: E712
        )
        res = await self.session.exec(q)
        user = res.first()
        if user is None:
            raise UserNotFound()
        return user

    async def find_by_id(self, user_id: int, for_update: bool = False) -> User:
        q = select(User).where(User.id == user_id)
        if for_update:
            q = q.with_for_update()
        res = await self.session.exec(q)
        user = res.first()
        if user is None:
            raise UserNotFound(user_id)
        return user

    async def user_exists(self, user_id: int) -> bool:
        q = select(User.id).where(User.id == user_id)
        res = await self.session.exec(q)
        return res.first() is not None

    async def update_last_login(self, user_id: int, at: datetime) -> None:
        await self.session.exec(
            update(User)
            .where(User.id == user_id)
            .values({User.last_login: at})
            .execution_options(synchronize_session=False)
        )

    async def update_password(self, user_id: int, hashed_password: str, at: datetime) -> None:
        # hash and timestamp change together in one statement
        res = await self.session.exec(
            update(User)
            .where(User.id == user_id)
            .values({User.hashed_password: hashed_password, User.password_changed: at})
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise UserNotFound(user_id)

    async def update_profile(self, user_id: int, changes: Dict[str, Any]) -> User:
        values = {k: v for k, v in changes.items() if k in PROFILE_FIELDS}
        if values:
            try:
                res = await self.session.exec(
                    update(User)
                    .where(User.id == user_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            except IntegrityError as e:
                logger.info("update_profile_conflict", user_id=user_id)
                raise Conflict() from e
            if res.rowcount == 0:
                raise UserNotFound(user_id)
        user = await self.find_by_id(user_id)
        await self.session.refresh(user)
        return user

    # --- otp ---
    async def delete_otps_for_user(self, user_id: int) -> None:
        await self.session.exec(
            delete(OTP).where(OTP.user_id == user_id).execution_options(synchronize_session=False)
        )

    async def insert_otp(self, user_id: int, value: str, expires_at: datetime) -> int:
        record = OTP(user_id=user_id, otp=value, expires_at=expires_at)
        self.session.add(record)
        await self.session.flush()
        return record.id

    async def find_live_otp(self, user_id: int, value: str, now: datetime) -> Optional[int]:
        q = select(OTP.id).where(
            OTP.user_id == user_id,
            OTP.otp == value,
            OTP.expires_at > now,
            OTP.verified == False,  # noqa: E712
        )
        res = await self.session.exec(q)
        return res.first()

    async def mark_otp_verified(self, otp_id: int) -> bool:
        """Flip ``verified``; False when another caller already consumed the row."""
        res = await self.session.exec(
            update(OTP)
            .where(OTP.id == otp_id, OTP.verified == False)  # noqa: E712
            .values(verified=True)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1


@asynccontextmanager
async def unit_of_work(sessions: async_sessionmaker) -> AsyncIterator[UserRepository]:
    """Open a session and transaction; store errors surface as ``StoreFailure``."""
    try:
        async with sessions() as session:
            async with session.begin():
                yield UserRepository(session)
    except SQLAlchemyError as e:
        logger.error("store_operation_failed", error_type=type(e).__name__)
        raise StoreFailure("store operation failed") from e
