"""
Notification queue endpoints.

Queue control and dead-letter operations for the dashboard, plus the enqueue
endpoints other ERP services use to submit notifications.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, status
from sqlalchemy import select

from ...models.notification import NotificationQueueItem
from ...notifications.payload import NotificationPayload
from ..dependencies.database import DbSession
from ..dependencies.services import NotificationDeadLetters, Queue
from ..schemas import (
    EnqueueBatchRequest,
    EnqueueBatchResponse,
    EnqueueResponse,
    ErrorResponse,
    MessageResponse,
    NotificationDeadLetterResponse,
    NotificationItemResponse,
    QueueStatsResponse,
)

router = APIRouter(prefix="/system/notifications", tags=["Notifications"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Notification not found"}}


@router.get("/queue/stats", summary="Queue statistics", response_model=QueueStatsResponse)
def queue_stats(queue: Queue) -> QueueStatsResponse:
    return QueueStatsResponse.model_validate(queue.stats())


@router.post("/queue/start", summary="Start the drain worker", response_model=MessageResponse)
def start_queue(queue: Queue) -> MessageResponse:
    return MessageResponse(**queue.start())


@router.post(
    "/queue/stop",
    summary="Stop the drain worker",
    description="Stops claiming new items immediately; deliveries already in flight complete.",
    response_model=MessageResponse,
)
def stop_queue(queue: Queue) -> MessageResponse:
    return MessageResponse(**queue.stop())


@router.post(
    "/queue",
    summary="Enqueue a notification",
    status_code=status.HTTP_201_CREATED,
    response_model=EnqueueResponse,
)
def enqueue_notification(payload: NotificationPayload, queue: Queue) -> EnqueueResponse:
    return EnqueueResponse(id=queue.enqueue(payload))


@router.post(
    "/queue/batch",
    summary="Enqueue several notifications",
    description="All notifications are validated first and stored in one transaction.",
    status_code=status.HTTP_201_CREATED,
    response_model=EnqueueBatchResponse,
)
def enqueue_batch(payload: EnqueueBatchRequest, queue: Queue) -> EnqueueBatchResponse:
    ids = queue.enqueue_batch(payload.notifications)
    return EnqueueBatchResponse(ids=ids, count=len(ids))


@router.get(
    "/queue/{notification_id}",
    summary="Notification status",
    response_model=NotificationItemResponse,
    responses=_NOT_FOUND,
)
def get_notification(notification_id: str, queue: Queue) -> NotificationItemResponse:
    return NotificationItemResponse.model_validate(queue.get(notification_id).to_dict())


@router.delete(
    "/queue/{notification_id}",
    summary="Cancel a pending notification",
    response_model=MessageResponse,
    responses={**_NOT_FOUND, 400: {"model": ErrorResponse, "description": "Notification is not pending"}},
)
def cancel_notification(notification_id: str, queue: Queue) -> MessageResponse:
    return MessageResponse(**queue.cancel(notification_id))


@router.get(
    "/dead-letter",
    summary="Notifications in the dead letter",
    response_model=List[NotificationDeadLetterResponse],
)
async def list_dead_letter(db: DbSession) -> List[NotificationDeadLetterResponse]:
    result = await db.execute(
        select(NotificationQueueItem)
        .where(NotificationQueueItem.status == "dead")
        .order_by(NotificationQueueItem.updated_at.desc())
    )
    return [NotificationDeadLetterResponse.model_validate(item.to_dict()) for item in result.scalars().all()]


@router.post(
    "/dead-letter/retry-all",
    summary="Retry every dead-letter notification",
    response_model=MessageResponse,
)
def retry_all_dead_letter(dead_letters: NotificationDeadLetters) -> MessageResponse:
    return MessageResponse(**dead_letters.retry_all())


@router.post(
    "/dead-letter/{notification_id}/retry",
    summary="Retry a dead-letter notification",
    response_model=MessageResponse,
    responses=_NOT_FOUND,
)
def retry_dead_letter(notification_id: str, dead_letters: NotificationDeadLetters) -> MessageResponse:
    return MessageResponse(**dead_letters.retry_one(notification_id))
