import json
import uuid

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from .base import Base
from ..utils.timeutils import iso_utc, utcnow


NOTIFICATION_STATUSES = ("pending", "processing", "sent", "failed", "dead")
PRIORITY_RANK = {"high": 0, "normal": 1, "low": 2}


class NotificationQueueItem(Base):
    """
    Outbound notification tracked by the delivery queue.

    Every item is in exactly one status:
      pending -> processing -> sent | failed
      failed  -> processing (automatic retry after backoff) -> sent | dead
      dead    -> pending (operator retry only)
    """
    __tablename__ = 'notification_queue_items'
    __table_args__ = (
        Index('ix_notification_queue_ready', 'status', 'priority_rank', 'created_at'),
    )

    id = Column(String(40), primary_key=True, default=lambda: f"notif_{uuid.uuid4().hex}")

    type = Column(String(50), nullable=False, default="general")  # weekly_report, document_expiry, ...
    channel = Column(String(20), nullable=False, default="email")  # email, slack

    recipient_email = Column(String(255), nullable=True)
    recipient_name = Column(String(255), nullable=True)
    recipient_id = Column(Integer, nullable=True)

    subject = Column(String(500), nullable=False)
    body_html = Column(Text, nullable=True)
    body_text = Column(Text, nullable=True)
    notification_metadata = Column(Text, nullable=True)

    priority = Column(String(10), nullable=False, default="normal")
    # Denormalized so the drain query can ORDER BY priority in SQL.
    priority_rank = Column(Integer, nullable=False, default=1)

    status = Column(String(20), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)
    last_attempt_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f'<NotificationQueueItem {self.id} {self.status} {self.attempts}/{self.max_attempts}>'

    def get_metadata(self) -> dict:
        if self.notification_metadata:
            try:
                return json.loads(self.notification_metadata)
            except json.JSONDecodeError:
                return {}
        return {}

    def set_metadata(self, metadata_dict) -> None:
        if metadata_dict:
            self.notification_metadata = json.dumps(metadata_dict, ensure_ascii=False, default=str)
        else:
            self.notification_metadata = None

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'channel': self.channel,
            'recipient': {
                'email': self.recipient_email,
                'name': self.recipient_name,
                'id': self.recipient_id,
            },
            'subject': self.subject,
            'priority': self.priority,
            'status': self.status,
            'attempts': self.attempts,
            'max_attempts': self.max_attempts,
            'last_error': self.last_error,
            'next_retry_at': iso_utc(self.next_retry_at),
            'last_attempt_at': iso_utc(self.last_attempt_at),
            'sent_at': iso_utc(self.sent_at),
            'created_at': iso_utc(self.created_at),
            'metadata': self.get_metadata(),
        }
