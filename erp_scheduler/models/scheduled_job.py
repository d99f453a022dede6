from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from .base import Base
from ..utils.timeutils import iso_utc, utcnow


class ScheduledJob(Base):
    """
    A registered, cron-scheduled unit of work.

    Rows are seeded from static job definitions at startup and are never deleted;
    operators disable them instead. `running_execution_id` is the per-job advisory
    lock: it is set with a conditional UPDATE when a run starts and cleared when
    the run closes, so a job never overlaps with itself.
    """
    __tablename__ = 'scheduled_jobs'

    id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)
    name_ar = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=True)
    cron_expression = Column(String(100), nullable=False)
    timezone = Column(String(64), nullable=False, default="Asia/Riyadh")

    is_active = Column(Boolean, default=True, nullable=False)
    last_run = Column(DateTime, nullable=True)
    next_run = Column(DateTime, nullable=True)
    last_status = Column(String(20), nullable=True)  # success, failed
    last_error = Column(Text, nullable=True)

    run_count = Column(Integer, default=0, nullable=False)
    fail_count = Column(Integer, default=0, nullable=False)
    consecutive_failures = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    running_execution_id = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_running(self) -> bool:
        return self.running_execution_id is not None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'name_ar': self.name_ar,
            'description': self.description,
            'cron_expression': self.cron_expression,
            'timezone': self.timezone,
            'is_active': bool(self.is_active),
            'is_running': self.is_running,
            'last_run': iso_utc(self.last_run),
            'next_run': iso_utc(self.next_run),
            'last_status': self.last_status,
            'last_error': self.last_error,
            'run_count': self.run_count or 0,
            'fail_count': self.fail_count or 0,
            'consecutive_failures': self.consecutive_failures or 0,
            'max_retries': self.max_retries,
        }

    def __repr__(self):
        return f'<ScheduledJob {self.id} active={self.is_active}>'


