"""
Notification Queue Schemas.
"""

from typing import Any, List, Optional

from pydantic import Field

from ...notifications.payload import NotificationPayload
from .common import CamelModel


class QueueStatsResponse(CamelModel):
    is_running: bool
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    dead: int = 0


class RecipientResponse(CamelModel):
    email: Optional[str] = None
    name: Optional[str] = None
    id: Optional[int] = None


class NotificationItemResponse(CamelModel):
    id: str
    type: str
    channel: str
    recipient: RecipientResponse
    subject: str
    priority: str
    status: str
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    next_retry_at: Optional[str] = None
    last_attempt_at: Optional[str] = None
    sent_at: Optional[str] = None
    created_at: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationDeadLetterResponse(CamelModel):
    id: str
    subject: str
    recipient: RecipientResponse
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    type: str
    created_at: str


class EnqueueResponse(CamelModel):
    id: str
    status: str = "pending"


class EnqueueBatchRequest(CamelModel):
    notifications: List[NotificationPayload] = Field(..., min_length=1, max_length=500)


class EnqueueBatchResponse(CamelModel):
    ids: List[str]
    count: int
