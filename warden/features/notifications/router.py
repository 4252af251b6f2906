"""
Notification routing bound to the caller's database transaction.

route() resolves targets and bindings immediately, so an undeclared key
or resolver fails the request before anything is written. The deliveries
are staged on the innermost open transaction of the SQLAlchemy session:

- releasing a savepoint hands its deliveries to the enclosing transaction
- rolling back a savepoint drops the deliveries staged inside it
- committing the root transaction passes everything to the queue
- a root rollback, or closing the session without committing, drops the rest
"""
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

from warden.core.errors import ConfigurationError
from warden.features.notifications.queue import Deliver, DeliveryQueue
from warden.features.notifications.schemas import BindingTable, Delivery, group_targets, split_key
from warden.utils import get_logger


log = get_logger(__name__)

PENDING_KEY = "warden.pending_notifications"

TargetsResolver = Callable[[Any, str], Iterable[Tuple[str, Any]]]

Staged = List[Tuple[DeliveryQueue, List[Delivery]]]


def _sync_session(session: Union[Session, AsyncSession]) -> Session:
    return getattr(session, "sync_session", session)


def _pending(session: Session) -> Dict[SessionTransaction, Staged]:
    return session.info.setdefault(PENDING_KEY, {})


def _current_transaction(session: Session) -> SessionTransaction:
    transaction = session.get_nested_transaction() or session.get_transaction()
    if transaction is None:
        transaction = session.begin()
    return transaction


def _batches(staged: Staged) -> Staged:
    """One batch per queue, so a transaction's notifications keep their order."""
    batches: Staged = []
    for queue, deliveries in staged:
        for staged_queue, batch in batches:
            if staged_queue is queue:
                batch.extend(deliveries)
                break
        else:
            batches.append((queue, list(deliveries)))
    return batches


@event.listens_for(Session, "after_commit")
def _release_pending(session: Session) -> None:
    # Fires for savepoint releases too, while the savepoint is still current
    pending = session.info.get(PENDING_KEY)
    if not pending:
        return
    transaction = session.get_nested_transaction() or session.get_transaction()
    staged = pending.pop(transaction, None)
    if not staged:
        return
    if transaction.nested:
        pending.setdefault(transaction.parent, []).extend(staged)
        return
    for queue, batch in _batches(staged):
        queue.enqueue(batch)


@event.listens_for(Session, "after_transaction_end")
def _discard_pending(session: Session, transaction: SessionTransaction) -> None:
    # Committed entries were already released, anything left was rolled back
    pending = session.info.get(PENDING_KEY)
    if not pending:
        return
    discarded = pending.pop(transaction, None)
    if discarded:
        count = sum(len(deliveries) for _, deliveries in discarded)
        scope = "Savepoint" if transaction.nested else "Transaction"
        log.info(f"{scope} ended without commit, discarding {count} notifications")
    if not pending:
        session.info.pop(PENDING_KEY, None)


class NotificationRouter:
    def __init__(
        self,
        bindings: BindingTable,
        queue: Optional[DeliveryQueue] = None,
        deliver: Optional[Deliver] = None,
        routes: Iterable[Tuple[str, TargetsResolver]] = (),
    ):
        self.bindings = bindings
        self.queue = queue
        self.deliver = deliver
        # (key, resolver) pairs the application routes, checked before any request
        for key, resolver in routes:
            bindings.check_resolver(key, resolver)

    def resolve(self, key: str, resolver: TargetsResolver, record: Any) -> List[Delivery]:
        """Targets from `resolver(record, key)`, grouped and bound to template paths."""
        split_key(key)
        declared = self.bindings.check_resolver(key, resolver)
        deliveries: List[Delivery] = []
        for group, group_members in group_targets(resolver(record, key)).items():
            if group not in declared:
                raise ConfigurationError(f"Resolver for {key!r} yielded group {group!r} missing from its @targets")
            binding = self.bindings.binding(key, group)
            deliveries.extend(Delivery(target, binding.template_path, record) for target in group_members)
        return deliveries

    def route(
        self,
        key: str,
        resolver: TargetsResolver,
        record: Any,
        session: Union[Session, AsyncSession],
    ) -> List[Delivery]:
        """Stage deliveries on `session`; they reach the queue when it commits."""
        if self.queue is None:
            raise ConfigurationError("NotificationRouter.route requires a delivery queue")
        deliveries = self.resolve(key, resolver, record)
        if not deliveries:
            return deliveries

        sync = _sync_session(session)
        transaction = _current_transaction(sync)
        _pending(sync).setdefault(transaction, []).append((self.queue, deliveries))
        log.debug(f"Staged {len(deliveries)} notifications for {key}")
        return deliveries

    def deliver_now(self, key: str, resolver: TargetsResolver, record: Any) -> List[Delivery]:
        """Resolve exactly as route() does and deliver synchronously, bypassing the queue."""
        if self.deliver is None:
            raise ConfigurationError("NotificationRouter.deliver_now requires a deliver callable")
        deliveries = self.resolve(key, resolver, record)
        for delivery in deliveries:
            self.deliver(*delivery)
        return deliveries
