"""
Common Pydantic Schemas.

Shared request/response models used across multiple endpoints.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base for dashboard-facing models.

    Serialized with camelCase keys; accepts either snake_case (from `to_dict()`)
    or camelCase on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Error Responses
# ============================================================================

class ErrorDetail(BaseModel):
    """Detailed error information."""
    type: str = Field(description="Error type identifier")
    message: str = Field(description="Human-readable error message")
    details: Optional[str] = Field(None, description="Additional error details")


class ErrorResponse(BaseModel):
    """Standard error response wrapper."""
    success: bool = False
    error: ErrorDetail


# ============================================================================
# Success Responses
# ============================================================================

class MessageResponse(BaseModel):
    """Result of a control operation."""
    message: str


class HealthResponse(CamelModel):
    """Health check response."""
    status: str = "healthy"
    service: str
    version: str
    timestamp: datetime
    api: str = "v2"
    scheduler_running: bool = False
    notification_queue_running: bool = False
