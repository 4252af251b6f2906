"""
Persistent audit trail of authorization decisions.
"""
from datetime import datetime
from sqlalchemy import String, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from warden.core.database.base import Base, TimestampMixin


class AuditLog(Base, TimestampMixin):
    """
    One row per capability check, allowed or denied.

    Tracks who attempted what, on which record, and the outcome.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Actor (None for anonymous callers)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Outcome
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(20), nullable=True)
    role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, actor={self.actor_id}, action={self.action}, "
            f"resource={self.resource_type}:{self.resource_id}, decision={self.decision})>"
        )
