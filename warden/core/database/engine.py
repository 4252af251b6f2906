"""
Database engine configuration and session management.

Request handlers use the async engine (aiosqlite by default). warden's
own routes never write, so `get_db` is the dependency host applications
mount on their write routes:

    @router.patch("/widgets/{widget_id}")
    async def update_widget(..., db: AsyncSession = Depends(get_db)):
        ...
        authorizer.notify("widget.updated", widget_audience, widget, db)

Notifications routed on that session are released by its commit. The
audit sink writes through a separate synchronous engine so that every
authorization check is persisted as it happens, independent of the
request transaction.
"""
from collections.abc import AsyncGenerator
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from warden.core import config

engine = create_async_engine(
    config.SQLALCHEMY_DATABASE_URL,
    # NullPool for SQLite to avoid connection pool issues
    poolclass=NullPool if config.SQLALCHEMY_DATABASE_URL.startswith("sqlite") else None,
    echo=False,
    future=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

audit_engine = create_engine(config.AUDIT_DATABASE_URL, future=True)

AuditSessionLocal = sessionmaker(audit_engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    The session commits when the handler returns and rolls back on error,
    which is also what releases or discards routed notifications.
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


def init_audit_db():
    """Create the audit tables on the audit engine."""
    from warden.core.database.base import Base
    from warden.features.gate.models import AuditLog  # noqa: F401

    Base.metadata.create_all(audit_engine)
