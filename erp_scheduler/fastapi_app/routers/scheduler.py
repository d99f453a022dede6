"""
Scheduler endpoints.

Status, job list and history are read through the async session; control
operations (start/stop, toggle, manual run, dead-letter retry/clear) go
through the SchedulerService and run in FastAPI's threadpool.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Query
from sqlalchemy import select

from ...models.job_execution import JobExecution
from ...models.scheduled_job import ScheduledJob
from ...models.scheduler_dead_letter import SchedulerDeadLetter
from ..dependencies.database import DbSession
from ..dependencies.services import Scheduler
from ..schemas import (
    DeadLetterRetryRequest,
    ErrorResponse,
    JobExecutionResponse,
    MessageResponse,
    RunJobResponse,
    ScheduledJobResponse,
    SchedulerDeadLetterResponse,
    SchedulerStatusResponse,
    ToggleJobRequest,
)

router = APIRouter(prefix="/system/scheduler", tags=["Scheduler"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Job not found"}}


@router.get(
    "/status",
    summary="Scheduler status",
    description="Whether the tick loop runs in this process, plus job counts.",
    response_model=SchedulerStatusResponse,
)
def scheduler_status(service: Scheduler) -> SchedulerStatusResponse:
    return SchedulerStatusResponse.model_validate(service.status())


@router.get(
    "/jobs",
    summary="List scheduled jobs",
    response_model=List[ScheduledJobResponse],
)
async def list_jobs(db: DbSession) -> List[ScheduledJobResponse]:
    result = await db.execute(select(ScheduledJob).order_by(ScheduledJob.id))
    return [ScheduledJobResponse.model_validate(job.to_dict()) for job in result.scalars().all()]


@router.get(
    "/executions",
    summary="Recent job executions",
    description="Execution history, newest first.",
    response_model=List[JobExecutionResponse],
)
async def list_executions(
    db: DbSession,
    limit: int = Query(20, ge=1, le=200, description="Maximum number of executions to return"),
    job_id: Optional[str] = Query(None, alias="jobId", description="Only executions of this job"),
) -> List[JobExecutionResponse]:
    query = select(JobExecution).order_by(JobExecution.start_time.desc())
    if job_id:
        query = query.where(JobExecution.job_id == job_id)
    result = await db.execute(query.limit(limit))
    return [JobExecutionResponse.model_validate(e.to_dict()) for e in result.scalars().all()]


@router.post("/start", summary="Start the scheduler", response_model=MessageResponse,
             responses={409: {"model": ErrorResponse, "description": "Another process holds the scheduler lock"}})
def start_scheduler(service: Scheduler) -> MessageResponse:
    return MessageResponse(**service.start())


@router.post("/stop", summary="Stop the scheduler", response_model=MessageResponse)
def stop_scheduler(service: Scheduler) -> MessageResponse:
    return MessageResponse(**service.stop())


@router.post(
    "/jobs/{job_id}/toggle",
    summary="Enable or disable a job",
    response_model=MessageResponse,
    responses=_NOT_FOUND,
)
def toggle_job(job_id: str, payload: ToggleJobRequest, service: Scheduler) -> MessageResponse:
    return MessageResponse(**service.registry.toggle(job_id, payload.is_active))


@router.post(
    "/jobs/{job_id}/run",
    summary="Run a job now",
    description="Runs the job synchronously and returns its outcome. A job that is already running is not fired.",
    response_model=RunJobResponse,
    response_model_exclude_none=True,
    responses=_NOT_FOUND,
)
def run_job(job_id: str, service: Scheduler) -> RunJobResponse:
    return RunJobResponse.model_validate(service.engine.run_manually(job_id))


@router.get(
    "/dead-letter",
    summary="Jobs in the dead letter",
    response_model=List[SchedulerDeadLetterResponse],
)
async def list_dead_letter(db: DbSession) -> List[SchedulerDeadLetterResponse]:
    result = await db.execute(select(SchedulerDeadLetter).order_by(SchedulerDeadLetter.failed_at.desc()))
    return [SchedulerDeadLetterResponse.model_validate(e.to_dict()) for e in result.scalars().all()]


@router.post(
    "/dead-letter/{job_id}/retry",
    summary="Retry a dead-lettered job",
    description="Re-enables the job and removes its dead-letter entry. Optionally raises its retry budget.",
    response_model=MessageResponse,
    responses={**_NOT_FOUND, 400: {"model": ErrorResponse, "description": "Invalid retry budget"}},
)
def retry_dead_letter(
    job_id: str,
    service: Scheduler,
    payload: Optional[DeadLetterRetryRequest] = Body(default=None),
) -> MessageResponse:
    max_retries = payload.max_retries if payload is not None else None
    return MessageResponse(**service.dead_letters.retry(job_id, max_retries=max_retries))


@router.delete("/dead-letter", summary="Clear the job dead letter", response_model=MessageResponse)
def clear_dead_letter(service: Scheduler) -> MessageResponse:
    return MessageResponse(**service.dead_letters.clear())
