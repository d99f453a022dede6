"""Notification Dead-Letter Store: a view over queue items in status `dead`."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select, update

from ..database.session import get_db_session
from ..models.notification import NotificationQueueItem
from ..scheduler.errors import NotificationNotFoundError
from ..utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class NotificationDeadLetterStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def list(self) -> list[NotificationQueueItem]:
        with get_db_session() as session:
            rows = session.execute(
                select(NotificationQueueItem)
                .where(NotificationQueueItem.status == "dead")
                .order_by(NotificationQueueItem.updated_at.desc())
            ).scalars().all()
            return list(rows)

    def retry_one(self, notification_id: str) -> dict:
        """
        Put a dead notification back to `pending` with a fresh attempt budget.

        Raises NotificationNotFoundError for unknown ids and for items that are
        not dead.
        """
        now = self._clock()
        with get_db_session() as session:
            result = session.execute(
                update(NotificationQueueItem)
                .where(NotificationQueueItem.id == notification_id, NotificationQueueItem.status == "dead")
                .values(status="pending", attempts=0, last_error=None, next_retry_at=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotificationNotFoundError(notification_id)

        logger.info("Dead-letter notification %s requeued", notification_id)
        return {"message": f"Notification {notification_id} requeued"}

    def retry_all(self) -> dict:
        with get_db_session() as session:
            dead_ids = session.execute(
                select(NotificationQueueItem.id).where(NotificationQueueItem.status == "dead")
            ).scalars().all()

        if not dead_ids:
            return {"message": "No dead-letter notifications to retry"}

        requeued = 0
        for notification_id in dead_ids:
            try:
                self.retry_one(notification_id)
                requeued += 1
            except NotificationNotFoundError:
                # Retried or purged concurrently.
                continue
            except Exception as exc:
                logger.error("Failed requeueing notification %s: %s", notification_id, exc)

        return {"message": f"Requeued {requeued} of {len(dead_ids)} dead-letter notification(s)"}
