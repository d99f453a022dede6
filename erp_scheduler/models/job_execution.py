import json
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Float, String, Text

from .base import Base
from ..utils.timeutils import iso_utc, utcnow


class JobExecution(Base):
    """
    JobExecution model for tracking job execution history.

    Records every firing of a scheduled job, scheduled or manual. Append-only:
    a row is created as "running" and closed exactly once as "success" or "failed".
    """
    __tablename__ = 'job_executions'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Reference only; executions outlive job renames.
    job_id = Column(String(100), nullable=False, index=True)
    job_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="running")  # running, success, failed
    trigger_type = Column(String(20), nullable=False)  # scheduled, manual
    start_time = Column(DateTime, nullable=False, default=utcnow, index=True)
    end_time = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    error = Column(Text, nullable=True)
    result = Column(Text, nullable=True)

    def __repr__(self):
        return f'<JobExecution {self.id} - Job:{self.job_id} - Status:{self.status}>'

    def get_result(self) -> Any:
        if not self.result:
            return None
        try:
            return json.loads(self.result)
        except json.JSONDecodeError:
            return self.result

    def to_dict(self):
        return {
            'id': self.id,
            'job_id': self.job_id,
            'job_name': self.job_name,
            'status': self.status,
            'trigger_type': self.trigger_type,
            'start_time': iso_utc(self.start_time),
            'end_time': iso_utc(self.end_time),
            'duration_seconds': self.duration_seconds,
            'error': self.error,
            'result': self.get_result(),
        }

    def mark_completed(self, status: str, error: Optional[str] = None, result: Any = None,
                       completed_at: Optional[datetime] = None) -> None:
        """
        Close the execution and calculate duration.

        Args:
            status: Final status (success or failed)
            error: Error message if failed
            result: JSON-serializable handler result
            completed_at: Override for the end time (naive UTC)
        """
        self.end_time = completed_at or utcnow()
        self.status = status
        self.error = error
        if result is not None:
            try:
                self.result = json.dumps(result, ensure_ascii=False, default=str)
            except (TypeError, ValueError):
                self.result = json.dumps(str(result), ensure_ascii=False)

        if self.start_time and self.end_time:
            self.duration_seconds = max((self.end_time - self.start_time).total_seconds(), 0.0)
