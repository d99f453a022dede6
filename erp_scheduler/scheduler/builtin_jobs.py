"""
Built-in job definitions.

The ERP-domain jobs (revenue checks, reports, reminders) run inside the ERP
application; here each is a webhook call to its internal job endpoint. A JSON
response may carry a `notifications` list, which is pushed onto the
notification queue through the job context.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import httpx

from .registry import JobContext, JobDefinition, JobRegistry

logger = logging.getLogger(__name__)

ERP_JOBS = (
    JobDefinition(
        id="daily_revenue_check",
        name="Daily Revenue Check",
        name_ar="فحص الإيرادات اليومية",
        description="فحص الفروع التي لم تسجل إيراداتها وإرسال تذكيرات",
        cron_expression="0 10 * * *",
    ),
    JobDefinition(
        id="weekly_report",
        name="Weekly Report",
        name_ar="التقرير الأسبوعي",
        description="إرسال التقارير الأسبوعية للمشرفين",
        cron_expression="0 8 * * 0",
    ),
    JobDefinition(
        id="monthly_reminders",
        name="Monthly Reminders",
        name_ar="تذكيرات الجرد والرواتب",
        description="فحص وإرسال تذكيرات الجرد والرواتب في الأيام المحددة",
        cron_expression="0 9 * * *",
    ),
    JobDefinition(
        id="document_expiry_check",
        name="Document Expiry Check",
        name_ar="فحص الوثائق المنتهية",
        description="فحص وإرسال إشعارات انتهاء الإقامة والشهادة الصحية وعقد العمل",
        cron_expression="0 8 * * *",
    ),
    JobDefinition(
        id="performance_alerts",
        name="Performance Alerts",
        name_ar="تنبيهات تراجع الأداء",
        description="إرسال تنبيهات للمشرفين عند تراجع أداء الموظفين بنسبة 30% أو أكثر",
        cron_expression="30 7 * * *",
    ),
)

QUEUE_CLEANUP_JOB = JobDefinition(
    id="notification_queue_cleanup",
    name="Notification Queue Cleanup",
    name_ar="تنظيف قائمة الإشعارات",
    description="حذف الإشعارات المرسلة القديمة والإشعارات الميتة المنتهية",
    cron_expression="0 3 * * *",
)


class ErpJobClient:
    """Calls `POST {base_url}/api/internal/jobs/{job_id}` on the ERP application."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.BaseTransport] = None) -> "ErpJobClient":
        return cls(
            settings.erp_base_url,
            token=settings.erp_internal_token,
            timeout=settings.erp_request_timeout_seconds,
            transport=transport,
        )

    def run_job(self, context: JobContext) -> dict:
        path = f"/api/internal/jobs/{context.job_id}"
        payload = {
            "jobId": context.job_id,
            "executionId": context.execution_id,
            "triggerType": context.trigger_type,
        }
        logger.info("Calling ERP job endpoint: %s", path)

        try:
            response = self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise RuntimeError(f"ERP request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise RuntimeError(f"ERP job endpoint returned {response.status_code}: {response.text[:500]}")

        data: Any = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = {"output": response.text[:1000]}
        return data if isinstance(data, dict) else {"output": data}

    def close(self) -> None:
        self._client.close()


def make_erp_handler(client: ErpJobClient) -> Callable[[JobContext], dict]:
    def handler(context: JobContext) -> dict:
        data = client.run_job(context)
        notifications = data.pop("notifications", None) or []

        queued = 0
        if notifications and context.enqueue_notification is None:
            logger.warning(
                "Job %s returned %s notification(s) but no queue is attached", context.job_id, len(notifications)
            )
        elif notifications:
            for notification in notifications:
                try:
                    context.enqueue_notification(notification)
                    queued += 1
                except ValueError as exc:
                    # pydantic.ValidationError is a ValueError.
                    logger.warning("Job %s returned an invalid notification: %s", context.job_id, exc)

        data["notificationsQueued"] = queued
        return data

    return handler


def register_builtin_jobs(
    registry: JobRegistry,
    *,
    erp_client: ErpJobClient,
    cleanup_queue: Optional[Callable[[], dict]] = None,
) -> None:
    erp_handler = make_erp_handler(erp_client)
    for definition in ERP_JOBS:
        registry.register(definition, erp_handler)

    if cleanup_queue is not None:
        registry.register(QUEUE_CLEANUP_JOB, lambda context: cleanup_queue())
