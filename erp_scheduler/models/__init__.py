from .base import Base
from .job_execution import JobExecution
from .notification import NotificationQueueItem
from .scheduled_job import ScheduledJob
from .scheduler_dead_letter import SchedulerDeadLetter

__all__ = [
    "Base",
    "JobExecution",
    "NotificationQueueItem",
    "ScheduledJob",
    "SchedulerDeadLetter",
]
