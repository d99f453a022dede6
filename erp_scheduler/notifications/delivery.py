"""
Notification delivery channels.

A channel is a callable taking a NotificationQueueItem and returning None on
success; any exception is a delivery failure the queue records and retries.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Callable, Optional

import httpx

from ..models.notification import NotificationQueueItem
from ..scheduler.errors import DeliveryError
from ..utils.email import SmtpConfig, send_email
from ..utils.slack import send_slack_message

logger = logging.getLogger(__name__)

Channel = Callable[[NotificationQueueItem], None]

_TAG_RE = re.compile(r"<[^>]+>")


def html_to_text(body_html: Optional[str]) -> str:
    if not body_html:
        return ""
    text = re.sub(r"<br\s*/?>|</p>|</div>|</li>", "\n", body_html, flags=re.IGNORECASE)
    text = _TAG_RE.sub("", text)
    lines = [line.strip() for line in html.unescape(text).splitlines()]
    return "\n".join(line for line in lines if line)


class EmailChannel:
    def __init__(self, config: SmtpConfig, send=send_email):
        self.config = config
        self._send = send

    def __call__(self, item: NotificationQueueItem) -> None:
        self._send(
            self.config,
            to_email=item.recipient_email,
            to_name=item.recipient_name,
            subject=item.subject,
            text_body=item.body_text or html_to_text(item.body_html),
            html_body=item.body_html,
        )


class SlackChannel:
    def __init__(self, webhook_url: str, channel: Optional[str] = None, client: Optional[httpx.Client] = None):
        self.webhook_url = webhook_url
        self.channel = channel
        self.client = client

    def __call__(self, item: NotificationQueueItem) -> None:
        body = item.body_text or html_to_text(item.body_html)
        text = f"*{item.subject}*\n{body}" if body else f"*{item.subject}*"
        send_slack_message(self.webhook_url, text, self.channel, client=self.client)


class NotificationDispatcher:
    """Routes an item to the channel named by `item.channel`."""

    def __init__(self, channels: dict[str, Channel]):
        self.channels = dict(channels)

    @classmethod
    def from_settings(cls, settings) -> "NotificationDispatcher":
        return cls(
            {
                "email": EmailChannel(SmtpConfig.from_settings(settings)),
                "slack": SlackChannel(settings.slack_webhook_url, settings.slack_channel or None),
            }
        )

    def deliver(self, item: NotificationQueueItem) -> None:
        channel = self.channels.get(item.channel)
        if channel is None:
            raise DeliveryError(f"Unsupported notification channel: {item.channel}")
        channel(item)
