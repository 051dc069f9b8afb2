from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import DateTime, text
from sqlalchemy.types import TypeDecorator
from sqlalchemy.exc import SQLAlchemyError
import sqlalchemy.exc
from datetime import datetime, timezone
from uuid import uuid4
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager
import structlog

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend.

    SQLite has no timezone support, so values are stored there as naive UTC
    and re-tagged on the way out. Stored strings then compare in time order.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseManager:
    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine = None
        self._async_session = None
        self.logger = structlog.get_logger("crm.database.manager")

    def initialize(self, database_url: str = None, **kwargs):
        """
        Initialize the database engine and session factory.

        :param database_url: Optional database URL to override the one in constructor
        :param kwargs: Additional engine configuration parameters
        """
        db_url = database_url or self.database_url
        if not db_url:
            raise RuntimeError("No database URL configured")
        self.database_url = db_url = str(db_url)

        engine_kwargs = {
            "pool_pre_ping": True,
            "echo": kwargs.get("echo", False),
        }
        # SQLite engines use their own pool class without size options
        if not db_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=kwargs.get("pool_size", 20),
                max_overflow=kwargs.get("max_overflow", 30),
                pool_timeout=kwargs.get("pool_timeout", 30),
                pool_recycle=kwargs.get("pool_recycle", 3600),
            )

        self._engine = create_async_engine(db_url, **engine_kwargs)
        self._async_session = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=True,
        )

        self.logger.info("Database initialized", dialect=self._engine.dialect.name)
        return self

    @property
    def engine(self):
        if self._engine is None:
            self.initialize()
        return self._engine

    @property
    def async_session(self):
        if self._async_session is None:
            self.initialize()
        return self._async_session

    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """FastAPI dependency: one session per request, committed on success."""
        session_id = str(uuid4())[:8]
        session_logger = self.logger.bind(session_id=session_id)

        async with self.async_session() as session:
            try:
                yield session

                @retry(
                    stop=stop_after_attempt(3),
                    wait=wait_exponential(multiplier=1, min=1, max=4),
                    retry=retry_if_exception_type((sqlalchemy.exc.OperationalError,)),
                    reraise=True
                )
                async def do_commit():
                    await session.commit()

                await do_commit()

            except Exception as e:
                session_logger.debug("Rolling back request session", error_type=type(e).__name__)
                await session.rollback()
                raise

    async def create_all(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logger.info("Database tables verified/created")

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            self.logger.error("Database ping failed", error=str(e))
            return False

    async def close(self):
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._async_session = None
        self.logger.info("Database connection closed")


@asynccontextmanager
async def atomic_session_operation(session: AsyncSession):
    """
    Run a unit of work in one transaction: commit on success, roll back and
    re-raise on any failure so partial writes never become visible.
    """
    transaction_id = str(uuid4())[:8]
    operation_logger = structlog.get_logger("crm.database.atomic_operation").bind(transaction_id=transaction_id)

    try:
        if not session.in_transaction():
            await session.begin()

        yield session

        await session.commit()
        operation_logger.debug("Transaction committed")

    except SQLAlchemyError as e:
        operation_logger.error(
            "SQLAlchemy error - rolling back",
            error=str(e),
            error_type=type(e).__name__,
        )
        await session.rollback()
        raise

    except Exception as e:
        operation_logger.debug("Rolling back transaction", error_type=type(e).__name__)
        await session.rollback()
        raise


# Configured by the app factory through initialize()
db_manager = DatabaseManager(database_url=None)
