"""
Service Dependencies.

The scheduler service, notification queue and notification dead-letter store
are created once in the app lifespan and kept on `app.state`.
"""

from typing import Annotated

from fastapi import Depends, Request

from ...notifications.dead_letter import NotificationDeadLetterStore
from ...notifications.queue import NotificationQueue
from ...scheduler.service import SchedulerService


def get_scheduler_service(request: Request) -> SchedulerService:
    return request.app.state.scheduler_service


def get_notification_queue(request: Request) -> NotificationQueue:
    return request.app.state.notification_queue


def get_notification_dead_letters(request: Request) -> NotificationDeadLetterStore:
    return request.app.state.notification_dead_letters


Scheduler = Annotated[SchedulerService, Depends(get_scheduler_service)]
Queue = Annotated[NotificationQueue, Depends(get_notification_queue)]
NotificationDeadLetters = Annotated[NotificationDeadLetterStore, Depends(get_notification_dead_letters)]
