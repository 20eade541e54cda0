"""E-mail channel for subscriber notifications.

Messages are built as immutable payloads and handed to a channel. The SMTP
channel delivers them; the logging channel is used when no SMTP host is
configured and only records what would have been sent.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class EmailPayload(BaseModel):
    """An e-mail notification ready for delivery."""

    model_config = ConfigDict(frozen=True)

    recipient: str
    subject: str
    body_text: str
    body_html: str = ""


class EmailChannel(ABC):
    """Outbound e-mail transport."""

    @abstractmethod
    async def send(self, payload: EmailPayload) -> None:
        """Deliver one message. Raises on delivery failure."""


class LoggingEmailChannel(EmailChannel):
    """Channel used when SMTP is not configured: logs instead of sending."""

    async def send(self, payload: EmailPayload) -> None:
        logger.info(
            f"[Email Not Sent - No Config] To: {payload.recipient}, "
            f"Subject: {payload.subject}"
        )


class SmtpEmailChannel(EmailChannel):
    """Delivers messages through an SMTP relay.

    smtplib is blocking, so each send runs in a worker thread.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        sender_email: str = "noreply@release-registry.example.com",
        sender_name: str = "Release Registry",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = formataddr((sender_name, sender_email))
        self.timeout = timeout

    def _build(self, payload: EmailPayload) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = payload.recipient
        message["Subject"] = payload.subject
        message.set_content(payload.body_text)
        if payload.body_html:
            message.add_alternative(payload.body_html, subtype="html")
        return message

    def _deliver(self, payload: EmailPayload) -> None:
        message = self._build(payload)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, payload: EmailPayload) -> None:
        await asyncio.to_thread(self._deliver, payload)
        logger.info(f"Email sent to {payload.recipient}: {payload.subject}")


def _html_page(title: str, rows: list[tuple[str, str]], paragraphs: list[str]) -> str:
    info = "".join(
        f"<p><strong>{html.escape(label)}:</strong> {html.escape(value)}</p>"
        for label, value in rows
    )
    body = "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs)
    return (
        "<!DOCTYPE html><html><body>"
        f"<h1>{html.escape(title)}</h1>"
        f"<div>{info}</div>{body}"
        "<p style=\"font-size:12px;color:#666\">Release Registry</p>"
        "</body></html>"
    )


def new_version_email(
    recipient: str, package_id: str, version: str, package_name: str, base_url: str
) -> EmailPayload:
    link = f"{base_url.rstrip('/')}/packages/{package_id}/{version}"
    text = (
        "New Package Version Available\n\n"
        f"Package: {package_id}\nVersion: {version}\nName: {package_name}\n\n"
        f"A new version has been published. Visit {link} to view details.\n\n"
        "You're receiving this email because you're subscribed to updates for this package."
    )
    return EmailPayload(
        recipient=recipient,
        subject=f"New Version: {package_name} {version}",
        body_text=text,
        body_html=_html_page(
            "New Package Version Available",
            [("Package", package_id), ("Version", version), ("Name", package_name)],
            [f"View the release at {link}."],
        ),
    )


def version_discontinued_email(recipient: str, package_id: str, version: str) -> EmailPayload:
    text = (
        "Package Version Discontinued\n\n"
        f"Package: {package_id}\nVersion: {version}\nStatus: DISCONTINUED\n\n"
        "This version is no longer available for download.\n"
        "Please update to a newer version if available."
    )
    return EmailPayload(
        recipient=recipient,
        subject=f"Version Discontinued: {package_id} {version}",
        body_text=text,
        body_html=_html_page(
            "Package Version Discontinued",
            [("Package", package_id), ("Version", version), ("Status", "DISCONTINUED")],
            ["This version is no longer available for download."],
        ),
    )


def package_discontinued_email(recipient: str, package_id: str) -> EmailPayload:
    text = (
        "Package Discontinued\n\n"
        f"Package: {package_id}\nStatus: DISCONTINUED\n\n"
        "This package has been permanently discontinued. All versions are no longer available.\n"
        "Please consider migrating to an alternative package."
    )
    return EmailPayload(
        recipient=recipient,
        subject=f"Package Discontinued: {package_id}",
        body_text=text,
        body_html=_html_page(
            "Package Discontinued",
            [("Package", package_id), ("Status", "DISCONTINUED")],
            ["All versions are no longer available for download."],
        ),
    )
