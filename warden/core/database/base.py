"""
SQLAlchemy declarative base and common model utilities.

All SQLAlchemy models should inherit from Base.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Usage:
        from warden.core.database.base import Base

        class AuditLog(Base):
            __tablename__ = "audit_logs"

            id: Mapped[int] = mapped_column(primary_key=True)
    """
    pass


class TimestampMixin:
    """Mixin adding a server-side created_at timestamp."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
