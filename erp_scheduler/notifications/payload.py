"""Inbound notification payload (API requests and ERP job responses)."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class Recipient(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: Optional[str] = None
    name: Optional[str] = None
    id: Optional[int] = None


class NotificationPayload(BaseModel):
    """
    A notification to enqueue.

    Accepts camelCase (`bodyHtml`, `maxAttempts`) as sent by the ERP application
    and snake_case from Python callers.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str = Field(default="general", min_length=1, max_length=50)
    channel: Literal["email", "slack"] = "email"
    recipient: Recipient = Field(default_factory=Recipient)
    subject: str = Field(..., min_length=1, max_length=500)
    body_html: Optional[str] = None
    body_text: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    priority: Literal["high", "normal", "low"] = "normal"
    max_attempts: Optional[int] = Field(default=None, ge=1, le=20)

    @model_validator(mode="after")
    def _email_needs_recipient(self) -> "NotificationPayload":
        if self.channel == "email" and not (self.recipient.email or "").strip():
            raise ValueError("recipient.email is required for the email channel")
        if not (self.body_html or self.body_text):
            raise ValueError("bodyHtml or bodyText is required")
        return self
