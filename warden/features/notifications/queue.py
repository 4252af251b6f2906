"""
Delivery queues.

A queue receives the deliveries of one committed transaction as a batch.
Batches are delivered in order; ordering across batches is unspecified.
"""
from __future__ import annotations

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from threading import RLock
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Sequence, Set
from tenacity import Retrying, stop_after_attempt, wait_incrementing

from warden.core import config
from warden.features.notifications.schemas import Delivery
from warden.utils import get_logger


log = get_logger(__name__)

Deliver = Callable[[Any, str, Any], Any]


class DeliveryQueue(Protocol):
    """Implementors must be thread-safe for enqueue."""

    def enqueue(self, batch: Sequence[Delivery]) -> None:
        ...


class RecordingQueue:
    """Records batches without delivering them. Intended for tests."""

    def __init__(self):
        self._lock = RLock()
        self.batches: List[List[Delivery]] = []

    def enqueue(self, batch: Sequence[Delivery]) -> None:
        with self._lock:
            self.batches.append(list(batch))

    @property
    def deliveries(self) -> List[Delivery]:
        with self._lock:
            return [delivery for batch in self.batches for delivery in batch]


def _log_retry(retry_state, delivery: Delivery) -> None:
    log.warning(
        f"Delivery of {delivery.template_path} to {delivery.target!r} failed "
        f"(attempt #{retry_state.attempt_number}) with {retry_state.outcome.exception()!r}, "
        f"retrying in {retry_state.next_action.sleep} seconds"
    )


class ThreadPoolDeliveryQueue:
    """
    Delivers batches on a worker pool, off the request thread.

    Each batch runs as one job so deliveries keep their enqueue order.
    A failed delivery is retried up to `max_attempts` times with linear
    backoff, then logged and kept in `failed` (the most recent
    `failed_history` only).
    """

    def __init__(
        self,
        deliver: Deliver,
        max_workers: int = config.NOTIFICATION_WORKERS,
        max_attempts: int = config.NOTIFICATION_MAX_ATTEMPTS,
        backoff: float = config.NOTIFICATION_RETRY_BACKOFF,
        failed_history: int = config.NOTIFICATION_FAILED_HISTORY,
    ):
        self.deliver = deliver
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="warden-notify")
        self._lock = RLock()
        # Unfinished batches only; each future removes itself when done
        self._futures: Set[Future] = set()
        self.failed: Deque[Delivery] = deque(maxlen=failed_history)
        self.failed_total = 0

    def enqueue(self, batch: Sequence[Delivery]) -> None:
        with self._lock:
            future = self._executor.submit(self._run_batch, tuple(batch))
            self._futures.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def _run_batch(self, batch) -> None:
        for delivery in batch:
            self._run_delivery(delivery)

    def _run_delivery(self, delivery: Delivery) -> None:
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_incrementing(start=self.backoff, increment=self.backoff),
                reraise=True,
                before_sleep=lambda retry_state: _log_retry(retry_state, delivery),
            ):
                with attempt:
                    self.deliver(*delivery)
        except Exception:
            log.error(
                f"Giving up on {delivery.template_path} to {delivery.target!r} "
                f"after {self.max_attempts} attempts",
                exc_info=True,
            )
            with self._lock:
                self.failed.append(delivery)
                self.failed_total += 1

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._futures)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {"type": "thread-pool", "pending_batches": len(self._futures), "failed": self.failed_total}

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop accepting work; with `wait`, block until queued batches finish."""
        if wait and timeout is not None:
            with self._lock:
                futures = list(self._futures)
            for future in futures:
                future.result(timeout=timeout)
        self._executor.shutdown(wait=wait)
