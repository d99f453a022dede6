"""
Notification Delivery Queue.

Items are rows in `notification_queue_items`; the drain worker is a daemon
thread that polls for ready items and hands them to a bounded thread pool.

Claiming is a conditional UPDATE on `status`, so an item is processed by at
most one worker even if two drain loops overlap (e.g. during a stop/start).
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from sqlalchemy import and_, delete, func, or_, select, update

from ..database.session import get_db_session
from ..models.notification import NOTIFICATION_STATUSES, PRIORITY_RANK, NotificationQueueItem
from ..scheduler.errors import InvalidOperationError, NotificationNotFoundError
from ..utils.timeutils import utcnow
from .delivery import NotificationDispatcher
from .payload import NotificationPayload

logger = logging.getLogger(__name__)

PayloadLike = Union[NotificationPayload, Mapping[str, Any]]


def retry_delay_seconds(attempts: int, base: float = 1.0, maximum: float = 60.0) -> float:
    """Backoff before the next attempt: base * 2^(attempts-1), capped at `maximum`."""
    exponent = max(int(attempts) - 1, 0)
    # Cap the exponent; 2**64 seconds is already far past any sane maximum.
    return min(base * (2 ** min(exponent, 64)), maximum)


class NotificationQueue:
    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        *,
        poll_seconds: float = 1.0,
        max_concurrency: int = 3,
        default_max_attempts: int = 3,
        base_retry_delay: float = 1.0,
        max_retry_delay: float = 60.0,
        sent_retention: timedelta = timedelta(hours=24),
        dead_retention: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.dispatcher = dispatcher
        self.poll_seconds = poll_seconds
        self.max_concurrency = max_concurrency
        self.default_max_attempts = default_max_attempts
        self.base_retry_delay = base_retry_delay
        self.max_retry_delay = max_retry_delay
        self.sent_retention = sent_retention
        self.dead_retention = dead_retention
        self._clock = clock

        self._state_lock = threading.Lock()
        self._running = False
        self._stop_event: Optional[threading.Event] = None
        self._worker: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._inflight: set[str] = set()
        self._inflight_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, dispatcher: Optional[NotificationDispatcher] = None) -> "NotificationQueue":
        return cls(
            dispatcher or NotificationDispatcher.from_settings(settings),
            poll_seconds=settings.notification_queue_poll_seconds,
            max_concurrency=settings.notification_queue_max_concurrency,
            default_max_attempts=settings.notification_default_max_attempts,
            base_retry_delay=settings.notification_base_retry_delay_seconds,
            max_retry_delay=settings.notification_max_retry_delay_seconds,
            sent_retention=timedelta(hours=settings.notification_sent_retention_hours),
            dead_retention=timedelta(days=settings.notification_dead_retention_days),
        )

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def _build_item(self, payload: PayloadLike, now: datetime) -> NotificationQueueItem:
        if not isinstance(payload, NotificationPayload):
            payload = NotificationPayload.model_validate(payload)
        item = NotificationQueueItem(
            type=payload.type,
            channel=payload.channel,
            recipient_email=payload.recipient.email,
            recipient_name=payload.recipient.name,
            recipient_id=payload.recipient.id,
            subject=payload.subject,
            body_html=payload.body_html,
            body_text=payload.body_text,
            priority=payload.priority,
            priority_rank=PRIORITY_RANK[payload.priority],
            status="pending",
            attempts=0,
            max_attempts=payload.max_attempts or self.default_max_attempts,
            created_at=now,
            updated_at=now,
        )
        item.set_metadata(payload.metadata)
        return item

    def enqueue(self, payload: PayloadLike) -> str:
        now = self._clock()
        item = self._build_item(payload, now)
        with get_db_session() as session:
            session.add(item)
            session.flush()
            item_id = item.id
        logger.info("Queued %s notification %s (%s, priority=%s)", item.channel, item_id, item.type, item.priority)
        return item_id

    def enqueue_batch(self, payloads: Iterable[PayloadLike]) -> list[str]:
        """Validate every payload first, then insert them all in one transaction."""
        now = self._clock()
        items = [self._build_item(payload, now) for payload in payloads]
        if not items:
            return []
        with get_db_session() as session:
            session.add_all(items)
            session.flush()
            ids = [item.id for item in items]
        logger.info("Queued %s notifications", len(ids))
        return ids

    def get(self, notification_id: str) -> NotificationQueueItem:
        with get_db_session() as session:
            item = session.get(NotificationQueueItem, notification_id)
            if item is None:
                raise NotificationNotFoundError(notification_id)
            return item

    def cancel(self, notification_id: str) -> dict:
        with get_db_session() as session:
            result = session.execute(
                delete(NotificationQueueItem)
                .where(NotificationQueueItem.id == notification_id, NotificationQueueItem.status == "pending")
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return {"message": f"Notification {notification_id} cancelled"}

            item = session.get(NotificationQueueItem, notification_id)
            if item is None:
                raise NotificationNotFoundError(notification_id)
            raise InvalidOperationError(
                f"Only pending notifications can be cancelled (notification {notification_id} is {item.status})"
            )

    def stats(self) -> dict:
        with get_db_session() as session:
            rows = session.execute(
                select(NotificationQueueItem.status, func.count()).group_by(NotificationQueueItem.status)
            ).all()
        counts = {status: 0 for status in NOTIFICATION_STATUSES}
        for status, count in rows:
            if status in counts:
                counts[status] = count
        return {"is_running": self.is_running, **counts}

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------

    def start(self) -> dict:
        with self._state_lock:
            if self._running:
                return {"message": "Notification queue is already running"}

            stop_event = threading.Event()
            executor = ThreadPoolExecutor(max_workers=self.max_concurrency, thread_name_prefix="notification-delivery")
            worker = threading.Thread(
                target=self._run_loop,
                args=(stop_event, executor),
                name="notification-drain",
                daemon=True,
            )
            self._stop_event = stop_event
            self._executor = executor
            self._worker = worker
            self._running = True
            worker.start()

        logger.info(
            "Notification queue started (poll=%ss, concurrency=%s)", self.poll_seconds, self.max_concurrency
        )
        return {"message": "Notification queue started"}

    def stop(self) -> dict:
        """
        Stop claiming new items. Returns immediately; items already handed to
        the delivery pool run to completion.
        """
        with self._state_lock:
            if not self._running:
                return {"message": "Notification queue is already stopped"}
            self._running = False
            if self._stop_event is not None:
                self._stop_event.set()
            if self._executor is not None:
                self._executor.shutdown(wait=False)
            self._stop_event = None
            self._executor = None
            self._worker = None

        logger.info("Notification queue stopped")
        return {"message": "Notification queue stopped"}

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Wait until no delivery is in flight (tests and graceful shutdown)."""
        deadline = time.monotonic() + timeout
        while True:
            with self._inflight_lock:
                if not self._inflight:
                    return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.02)

    def _run_loop(self, stop_event: threading.Event, executor: ThreadPoolExecutor) -> None:
        while not stop_event.is_set():
            try:
                self._drain_cycle(stop_event, executor)
            except Exception as exc:
                logger.exception("Notification drain cycle failed: %s", exc)
            stop_event.wait(self.poll_seconds)

    def _drain_cycle(self, stop_event: threading.Event, executor: ThreadPoolExecutor) -> int:
        with self._inflight_lock:
            slots = self.max_concurrency - len(self._inflight)
        if slots <= 0:
            return 0

        submitted = 0
        for item_id in self.claim_ready(slots):
            if stop_event.is_set():
                # Claimed but never handed over; put it back for the next worker.
                self._release_claim(item_id)
                continue
            with self._inflight_lock:
                self._inflight.add(item_id)
            try:
                executor.submit(self._process_tracked, item_id)
                submitted += 1
            except RuntimeError:
                # Executor shut down between the check and the submit.
                with self._inflight_lock:
                    self._inflight.discard(item_id)
                self._release_claim(item_id)
        return submitted

    def _process_tracked(self, item_id: str) -> None:
        try:
            self.process(item_id)
        except Exception as exc:
            logger.exception("Recording the outcome of notification %s failed: %s", item_id, exc)
            try:
                self._release_unfinished(item_id, str(exc) or exc.__class__.__name__)
            except Exception as release_exc:
                logger.exception(
                    "Notification %s stays in processing until recovery: %s", item_id, release_exc
                )
        finally:
            with self._inflight_lock:
                self._inflight.discard(item_id)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def claim_ready(self, limit: int) -> list[str]:
        """
        Move up to `limit` ready items to `processing`, highest priority then
        oldest first. Each claim increments `attempts`.
        """
        now = self._clock()
        ready = or_(
            NotificationQueueItem.status == "pending",
            and_(
                NotificationQueueItem.status == "failed",
                or_(NotificationQueueItem.next_retry_at.is_(None), NotificationQueueItem.next_retry_at <= now),
            ),
        )
        claimed: list[str] = []
        with get_db_session() as session:
            candidates = session.execute(
                select(NotificationQueueItem.id)
                .where(ready)
                .order_by(NotificationQueueItem.priority_rank, NotificationQueueItem.created_at)
                .limit(limit)
            ).scalars().all()

            for item_id in candidates:
                result = session.execute(
                    update(NotificationQueueItem)
                    .where(NotificationQueueItem.id == item_id, ready)
                    .values(
                        status="processing",
                        attempts=NotificationQueueItem.attempts + 1,
                        last_attempt_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(item_id)
        return claimed

    def _release_claim(self, item_id: str) -> None:
        now = self._clock()
        with get_db_session() as session:
            session.execute(
                update(NotificationQueueItem)
                .where(NotificationQueueItem.id == item_id, NotificationQueueItem.status == "processing")
                .values(status="failed", attempts=NotificationQueueItem.attempts - 1, next_retry_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )

    def process(self, item_id: str) -> str:
        """
        Deliver one claimed item and record the outcome. Returns the new status.
        Delivery exceptions are recorded on the item, never raised.
        """
        with get_db_session() as session:
            item = session.get(NotificationQueueItem, item_id)
        if item is None or item.status != "processing":
            return item.status if item is not None else "missing"

        try:
            self.dispatcher.deliver(item)
        except Exception as exc:
            return self._record_failure(item, str(exc) or exc.__class__.__name__)

        now = self._clock()
        with get_db_session() as session:
            session.execute(
                update(NotificationQueueItem)
                .where(NotificationQueueItem.id == item_id, NotificationQueueItem.status == "processing")
                .values(status="sent", sent_at=now, last_error=None, next_retry_at=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        logger.info("Notification %s sent via %s", item_id, item.channel)
        return "sent"

    def _record_failure(self, item: NotificationQueueItem, error: str) -> str:
        now = self._clock()
        if item.attempts >= item.max_attempts:
            status, next_retry_at = "dead", None
            logger.error(
                "Notification %s moved to dead letter after %s attempt(s): %s", item.id, item.attempts, error
            )
        else:
            delay = retry_delay_seconds(item.attempts, self.base_retry_delay, self.max_retry_delay)
            status, next_retry_at = "failed", now + timedelta(seconds=delay)
            logger.warning(
                "Notification %s attempt %s/%s failed, retrying in %.1fs: %s",
                item.id,
                item.attempts,
                item.max_attempts,
                delay,
                error,
            )

        with get_db_session() as session:
            session.execute(
                update(NotificationQueueItem)
                .where(NotificationQueueItem.id == item.id, NotificationQueueItem.status == "processing")
                .values(status=status, last_error=error, next_retry_at=next_retry_at, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        return status

    def process_ready(self, limit: Optional[int] = None) -> dict[str, str]:
        """Claim and deliver ready items on the calling thread. Returns {id: status}."""
        outcomes: dict[str, str] = {}
        for item_id in self.claim_ready(limit or self.max_concurrency):
            outcomes[item_id] = self.process(item_id)
        return outcomes

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def recover(self) -> int:
        """
        Release items a crashed process left in `processing`: back to `failed`
        (immediately retryable) or `dead` if no attempts remain.
        """
        now = self._clock()
        with get_db_session() as session:
            stuck = session.execute(
                select(NotificationQueueItem).where(NotificationQueueItem.status == "processing")
            ).scalars().all()
            for item in stuck:
                self._release_to_retry(item, item.last_error or "Interrupted while processing", now)
            count = len(stuck)

        if count:
            logger.warning("Recovered %s notification(s) left in processing", count)
        return count

    def _release_unfinished(self, item_id: str, error: str) -> None:
        now = self._clock()
        with get_db_session() as session:
            item = session.get(NotificationQueueItem, item_id)
            if item is None or item.status != "processing":
                return
            self._release_to_retry(item, error, now)

    @staticmethod
    def _release_to_retry(item: NotificationQueueItem, error: str, now: datetime) -> None:
        item.last_error = error
        item.updated_at = now
        if item.attempts >= item.max_attempts:
            item.status = "dead"
            item.next_retry_at = None
        else:
            item.status = "failed"
            item.next_retry_at = now

    def cleanup(
        self,
        sent_older_than: Optional[timedelta] = None,
        dead_older_than: Optional[timedelta] = None,
    ) -> dict:
        now = self._clock()
        sent_cutoff = now - (sent_older_than if sent_older_than is not None else self.sent_retention)
        dead_cutoff = now - (dead_older_than if dead_older_than is not None else self.dead_retention)

        with get_db_session() as session:
            sent = session.execute(
                delete(NotificationQueueItem)
                .where(NotificationQueueItem.status == "sent", NotificationQueueItem.sent_at < sent_cutoff)
                .execution_options(synchronize_session=False)
            ).rowcount
            dead = session.execute(
                delete(NotificationQueueItem)
                .where(NotificationQueueItem.status == "dead", NotificationQueueItem.updated_at < dead_cutoff)
                .execution_options(synchronize_session=False)
            ).rowcount

        if sent or dead:
            logger.info("Notification cleanup removed %s sent and %s dead item(s)", sent, dead)
        return {"sent_removed": sent or 0, "dead_removed": dead or 0}
