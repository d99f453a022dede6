"""
FastAPI Routers Package.

Contains API route handlers organized by domain:
- scheduler: scheduled jobs, executions, job dead letter
- notifications: notification queue and its dead letter
"""

from .scheduler import router as scheduler_router
from .notifications import router as notifications_router

__all__ = [
    "scheduler_router",
    "notifications_router",
]
