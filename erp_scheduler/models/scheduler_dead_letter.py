import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text

from .base import Base
from ..utils.timeutils import iso_utc, utcnow


class SchedulerDeadLetter(Base):
    """
    A job that exhausted its consecutive-failure budget.

    At most one entry per job. The job itself is disabled while the entry exists;
    the entry is removed by an operator retry or a clear-all.
    """
    __tablename__ = 'scheduler_dead_letters'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(String(100), nullable=False, unique=True)
    job_name = Column(String(255), nullable=False)
    failed_at = Column(DateTime, nullable=False, default=utcnow)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    error = Column(Text, nullable=True)
    last_retry_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f'<SchedulerDeadLetter {self.job_id} {self.retry_count}/{self.max_retries}>'

    def to_dict(self):
        return {
            'id': self.id,
            'job_id': self.job_id,
            'job_name': self.job_name,
            'failed_at': iso_utc(self.failed_at),
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'error': self.error or "",
            'last_retry_at': iso_utc(self.last_retry_at),
        }
