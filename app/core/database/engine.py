"""
Database engine configuration and session management.

Current: SQLite (async with aiosqlite)
Future: PostgreSQL (switch to asyncpg)

Every mutating request runs in the single session yielded by ``get_db``;
state changes and their audit rows are committed together or not at all.
"""
from collections.abc import AsyncGenerator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core import config
from app.core.exceptions import StorageError
from app.utils import get_logger


log = get_logger(__name__)


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine; SQLite gets NullPool to avoid sharing connections across tasks."""
    if url.startswith("sqlite"):
        return create_async_engine(url, poolclass=NullPool, echo=False, future=True)
    return create_async_engine(url, echo=False, future=True)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine(config.SQLALCHEMY_DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Usage in FastAPI routes:
        @router.get("/roles")
        async def list_roles(db: AsyncSession = Depends(get_db)):
            result = await db.execute(select(Role))
            return result.scalars().all()
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def commit_or_fail(db: AsyncSession) -> None:
    """
    Commit the current unit of work, surfacing datastore failures as StorageError.

    The session is rolled back before raising so nothing from the failed unit
    (state change or audit row) is left pending.
    """
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        log.error("Commit failed: %s", exc)
        raise StorageError("Storage failure, no changes were applied") from exc


async def init_db(bind: AsyncEngine | None = None):
    """
    Initialize database tables.
    Call this on application startup to create all tables.
    """
    from app.core.database.base import Base

    # Import all models to ensure they're registered with SQLAlchemy
    from app.features.users.models import User  # noqa: F401
    from app.features.permissions.models import (  # noqa: F401
        Permission, Role, UserRole, UserPermission
    )
    from app.features.audit.models import AuditLog  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
