# src/identity_service/infrastructure/database.py
import structlog
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from ..UAA.exceptions import StoreFailure
from ..UAA import models  # noqa: F401  registers the users/otp tables

logger = structlog.get_logger(__name__)


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(database_url, echo=echo)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create the ``users`` and ``otp`` tables if they do not exist yet."""
    try:
        async with engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)
    except SQLAlchemyError as e:
        logger.exception("init_db_failed", error_type=type(e).__name__)
        raise StoreFailure("could not initialise the database schema") from e
    logger.info("db_schema_ready", tables=sorted(SQLModel.metadata.tables))
