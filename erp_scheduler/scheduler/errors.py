"""
Scheduler and notification queue exceptions.

Control-plane operations raise these; the API layer maps them onto HTTP status
codes. Execution failures (a job handler raising, an email bouncing) are never
raised through this hierarchy: they are recorded on the execution/queue item.
"""


class SchedulerError(Exception):
    """Base exception for all scheduler and queue errors."""

    error_type = "scheduler_error"


class NotFoundError(SchedulerError):
    error_type = "not_found"


class JobNotFoundError(NotFoundError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class DeadLetterNotFoundError(NotFoundError):
    """Raised when a job has no dead-letter entry."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"No dead-letter entry for job: {job_id}")


class NotificationNotFoundError(NotFoundError):
    """Raised when a queued or dead-lettered notification does not exist."""

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


class InvalidOperationError(SchedulerError):
    """
    Raised when a request is well-formed but not allowed in the current state.

    Examples:
    - Lowering a job's retry budget below its recorded failures on retry
    - Cancelling a notification that is no longer pending
    - Activating a job whose cron expression is invalid
    """

    error_type = "validation_error"


class SchedulerNotLeaderError(SchedulerError):
    """Raised when another process holds the scheduler leadership lock."""

    error_type = "conflict"

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        super().__init__(f"Scheduler lock is held by another process ({lock_path}).")


class DeliveryError(Exception):
    """
    Raised by a notification channel that could not deliver a message.

    Not part of the SchedulerError hierarchy: the queue catches it and records
    the message on the item's `last_error`.
    """
