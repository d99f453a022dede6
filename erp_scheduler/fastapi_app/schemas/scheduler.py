"""
Scheduler Schemas.

Response models for the scheduled job runner. Timestamps are already
ISO-8601 UTC strings (`...Z`) produced by the models' `to_dict()`.
"""

from typing import Any, Optional

from pydantic import Field

from .common import CamelModel


class SchedulerStatusResponse(CamelModel):
    running: bool
    is_leader: bool
    timezone: str
    tick_seconds: float
    job_count: int
    active_job_count: int
    running_job_count: int = 0


class ScheduledJobResponse(CamelModel):
    id: str
    name: str
    name_ar: str
    description: Optional[str] = None
    cron_expression: str
    timezone: str
    is_active: bool
    is_running: bool = False
    last_run: Optional[str] = None
    next_run: Optional[str] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    run_count: int = 0
    fail_count: int = 0
    consecutive_failures: int = 0
    max_retries: int


class JobExecutionResponse(CamelModel):
    id: str
    job_id: str
    job_name: str
    status: str
    trigger_type: str
    start_time: str
    end_time: Optional[str] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None
    result: Any = None


class SchedulerDeadLetterResponse(CamelModel):
    id: str
    job_id: str
    job_name: str
    failed_at: str
    retry_count: int
    max_retries: int
    error: str = ""
    last_retry_at: Optional[str] = None


class ToggleJobRequest(CamelModel):
    is_active: bool


class DeadLetterRetryRequest(CamelModel):
    max_retries: Optional[int] = Field(default=None, ge=1, le=100, description="New retry budget for the job")


class RunJobResponse(CamelModel):
    success: bool
    error: Optional[str] = None
    result: Any = None
    execution_id: Optional[str] = None
