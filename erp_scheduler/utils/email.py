"""
SMTP email delivery.

Used by the notification queue's email channel. Unlike a fire-and-forget
helper, `send_email` raises DeliveryError on any problem so the queue can
record the failure and schedule a retry.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Callable, Optional

from ..scheduler.errors import DeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = True
    sender: str = ""
    enabled: bool = True
    timeout: float = 15.0

    @classmethod
    def from_settings(cls, settings) -> "SmtpConfig":
        return cls(
            host=(settings.mail_server or "").strip(),
            port=settings.mail_port,
            username=(settings.mail_username or "").strip(),
            password=settings.mail_password or "",
            use_tls=settings.mail_use_tls,
            sender=(settings.mail_default_sender or settings.mail_username or "").strip(),
            enabled=settings.mail_enabled,
        )


def build_message(
    *,
    sender: str,
    to_email: str,
    subject: str,
    text_body: Optional[str],
    html_body: Optional[str],
    to_name: Optional[str] = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = formataddr((to_name, to_email)) if to_name else to_email
    msg.set_content(text_body or "")
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    return msg


def send_email(
    config: SmtpConfig,
    *,
    to_email: str,
    subject: str,
    text_body: Optional[str] = None,
    html_body: Optional[str] = None,
    to_name: Optional[str] = None,
    smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
) -> None:
    if not config.enabled:
        raise DeliveryError("Email delivery is disabled (MAIL_ENABLED=false)")
    if not config.host:
        raise DeliveryError("SMTP host not configured")
    if not config.sender:
        raise DeliveryError("MAIL_DEFAULT_SENDER not configured")
    if not to_email:
        raise DeliveryError("Recipient email is required")

    msg = build_message(
        sender=config.sender,
        to_email=to_email,
        subject=subject,
        text_body=text_body,
        html_body=html_body,
        to_name=to_name,
    )

    try:
        with smtp_factory(config.host, config.port, timeout=config.timeout) as server:
            server.ehlo()
            if config.use_tls:
                # STARTTLS by default.
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            if config.username:
                server.login(config.username, config.password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Email send to %s failed: %s", to_email, exc)
        raise DeliveryError(f"SMTP error: {exc}") from exc
