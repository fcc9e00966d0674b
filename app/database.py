import functools
import json
import logging
from decimal import Decimal
from datetime import datetime, date
from typing import AsyncGenerator
from uuid import UUID
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from psycopg.types.json import set_json_dumps

from app.config import settings
from app.core.exceptions import ConcurrencyConflict, PersistenceFailure


logger = logging.getLogger(__name__)


# Custom JSON encoder that handles Decimal, datetime, UUID, etc.
class CustomJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime, UUID and other types."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        return super().default(obj)


def custom_json_dumps(obj):
    """Custom JSON dumps function for psycopg and SQLAlchemy JSON columns."""
    return json.dumps(obj, cls=CustomJSONEncoder)


# Configure psycopg to use our custom JSON encoder globally
set_json_dumps(custom_json_dumps)


# SQLite doesn't support pool settings, check database type
is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Convert database URL for proper driver
database_url = settings.DATABASE_URL
if database_url.startswith("postgresql+asyncpg://"):
    # Switch to psycopg for async PostgreSQL
    database_url = database_url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
elif database_url.startswith("postgresql://"):
    database_url = database_url.replace("postgresql://", "postgresql+psycopg://")

# Create async engine with appropriate settings
if is_sqlite:
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        json_serializer=custom_json_dumps,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        json_serializer=custom_json_dumps,
        pool_pre_ping=True,  # Check connection health before use
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={
            "connect_timeout": 30,  # Connection timeout in seconds
        },
    )

# Create async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session():
    """Context manager for getting database session (for background jobs)."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def commit_or_raise(session: AsyncSession) -> None:
    """
    Commit the session, translating database failures into engine errors.

    A unique-constraint collision (order or invoice number) becomes a
    retryable ConcurrencyConflict; any other failure a PersistenceFailure.
    The session is rolled back in both cases.
    """
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Commit conflict: {e.orig}")
        raise ConcurrencyConflict("Concurrent update conflict, please retry") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Commit failed: {e}")
        raise PersistenceFailure("Could not save changes, please retry") from e


def persistence_errors(operation: str):
    """
    Decorator for service methods that own `self.db`.

    A SQLAlchemyError raised anywhere in the method (queries, conditional
    UPDATEs, flushes) rolls the session back and surfaces as a retryable
    PersistenceFailure. Engine errors pass through untouched.

    Usage:
        @persistence_errors("record payment")
        async def record_payment(self, ...):
            ...
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Could not {operation}: {e}")
                raise PersistenceFailure(
                    f"Could not {operation}, please retry",
                    {"operation": operation},
                ) from e
        return wrapper
    return decorator


def import_models() -> None:
    """Import all model modules so they register with Base.metadata."""
    from app.models import (  # noqa: F401
        audit_log,
        billing,
        customer,
        inventory,
        product,
        quote,
        setting,
    )


async def init_db() -> None:
    """Initialize database tables."""
    import_models()

    logger.info(f"Registered {len(Base.metadata.tables)} tables")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
