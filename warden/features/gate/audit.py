"""
Audit records and the sinks that receive them.

The gate hands every record to its sink synchronously. Sinks must not
buffer or drop records; a failing sink fails the check.
"""
from datetime import datetime
from threading import Lock
from typing import Callable, List, Literal, Optional, Protocol
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from warden.features.gate.models import AuditLog
from warden.utils import get_logger


log = get_logger(__name__)


class AuditRecord(BaseModel):
    actor: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    decision: Literal["allow", "deny"]
    timestamp: datetime
    reason: Optional[str] = None
    role: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class AuditSink(Protocol):
    def emit(self, record: AuditRecord) -> None:
        ...


class LoggingAuditSink:
    """Writes each record to the application log."""

    def emit(self, record: AuditRecord) -> None:
        log.info(
            f"Audit: actor={record.actor} action={record.action} "
            f"resource={record.resource_type}:{record.resource_id} decision={record.decision} "
            f"reason={record.reason}"
        )


class MemoryAuditSink:
    """Keeps records in memory. Intended for tests."""

    def __init__(self):
        self._lock = Lock()
        self.records: List[AuditRecord] = []

    def emit(self, record: AuditRecord) -> None:
        with self._lock:
            self.records.append(record)


class DatabaseAuditSink:
    """
    Persists each record as an AuditLog row, committing immediately.

    Uses its own session so a rollback of the request transaction does not
    erase the trail of denied attempts.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from warden.core.database.engine import AuditSessionLocal, init_audit_db
            init_audit_db()
            session_factory = AuditSessionLocal
        self.session_factory = session_factory

    def emit(self, record: AuditRecord) -> None:
        with self.session_factory() as session:
            session.add(AuditLog(
                actor_id=record.actor,
                action=record.action,
                resource_type=record.resource_type,
                resource_id=record.resource_id,
                decision=record.decision,
                reason=record.reason,
                role=record.role,
                occurred_at=record.timestamp,
            ))
            session.commit()
