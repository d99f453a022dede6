import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from ..scheduler.errors import DeliveryError

logger = logging.getLogger(__name__)


def _is_valid_webhook_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
        if parsed.scheme != 'https':
            return False
        if not parsed.netloc:
            return False
        return True
    except Exception:
        return False


def send_slack_message(
    webhook_url: str,
    text: str,
    channel: Optional[str] = None,
    *,
    client: Optional[httpx.Client] = None,
    timeout: float = 10.0,
) -> None:
    """
    Send a Slack message via incoming webhook.

    Raises DeliveryError unless Slack accepts the payload (HTTP 2xx).
    """
    if not webhook_url:
        raise DeliveryError("Slack webhook URL not configured")
    if not _is_valid_webhook_url(webhook_url):
        raise DeliveryError("Slack webhook URL must be an https URL")

    payload: dict = {'text': text}
    if channel:
        payload['channel'] = channel

    try:
        if client is not None:
            resp = client.post(webhook_url, json=payload, timeout=timeout)
        else:
            with httpx.Client(timeout=timeout) as owned:
                resp = owned.post(webhook_url, json=payload)
    except httpx.HTTPError as e:
        logger.warning("Slack webhook request failed: %s", e)
        raise DeliveryError(f"Slack request failed: {e}") from e

    if not 200 <= resp.status_code < 300:
        logger.warning("Slack webhook failed: %s %s", resp.status_code, resp.text[:200])
        raise DeliveryError(f"Slack webhook returned {resp.status_code}: {resp.text[:200]}")
