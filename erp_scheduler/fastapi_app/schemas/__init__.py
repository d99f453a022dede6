"""
Pydantic Schemas Package.

Organized by domain:
- common: error envelope, control messages, health
- scheduler: jobs, executions, job dead letter
- notifications: queue stats, items, notification dead letter
"""

from .common import (
    CamelModel,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
)

from .scheduler import (
    DeadLetterRetryRequest,
    JobExecutionResponse,
    RunJobResponse,
    ScheduledJobResponse,
    SchedulerDeadLetterResponse,
    SchedulerStatusResponse,
    ToggleJobRequest,
)

from .notifications import (
    EnqueueBatchRequest,
    EnqueueBatchResponse,
    EnqueueResponse,
    NotificationDeadLetterResponse,
    NotificationItemResponse,
    QueueStatsResponse,
    RecipientResponse,
)


__all__ = [
    # Common
    "CamelModel",
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
    "MessageResponse",
    # Scheduler
    "DeadLetterRetryRequest",
    "JobExecutionResponse",
    "RunJobResponse",
    "ScheduledJobResponse",
    "SchedulerDeadLetterResponse",
    "SchedulerStatusResponse",
    "ToggleJobRequest",
    # Notifications
    "EnqueueBatchRequest",
    "EnqueueBatchResponse",
    "EnqueueResponse",
    "NotificationDeadLetterResponse",
    "NotificationItemResponse",
    "QueueStatsResponse",
    "RecipientResponse",
]
