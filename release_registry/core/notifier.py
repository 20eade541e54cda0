"""
Subscriber Notifier.

Fan-out of release lifecycle events to package subscribers. Delivery is
best-effort: every recipient is attempted independently, and no failure is
ever raised back to the operation that triggered the notification.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import structlog

from ..db.index import MetadataIndex
from ..notifications.email import (
    EmailChannel,
    EmailPayload,
    new_version_email,
    package_discontinued_email,
    version_discontinued_email,
)

logger = structlog.get_logger()


class NotificationEvent(str, Enum):
    NEW_VERSION = "new_version"
    VERSION_DISCONTINUED = "version_discontinued"
    PACKAGE_DISCONTINUED = "package_discontinued"


@dataclass
class NotificationReport:
    """Outcome of one fan-out."""

    event: NotificationEvent
    package_id: str
    version: Optional[str] = None
    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


class SubscriberNotifier:
    """Dispatches one message per subscriber for a package event."""

    def __init__(
        self,
        index: MetadataIndex,
        channel: EmailChannel,
        base_url: str = "http://localhost:8000",
        timeout_seconds: float = 10.0,
    ):
        self.index = index
        self.channel = channel
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds

    def _payload(
        self,
        event: NotificationEvent,
        recipient: str,
        package_id: str,
        version: Optional[str],
        package_name: Optional[str],
    ) -> EmailPayload:
        if event == NotificationEvent.NEW_VERSION:
            return new_version_email(
                recipient, package_id, version or "", package_name or package_id, self.base_url
            )
        if event == NotificationEvent.VERSION_DISCONTINUED:
            return version_discontinued_email(recipient, package_id, version or "")
        return package_discontinued_email(recipient, package_id)

    async def _deliver(self, payload: EmailPayload) -> None:
        await asyncio.wait_for(self.channel.send(payload), timeout=self.timeout_seconds)

    async def notify(
        self,
        package_id: str,
        event: NotificationEvent,
        version: Optional[str] = None,
        package_name: Optional[str] = None,
        recipients: Optional[Sequence[str]] = None,
    ) -> NotificationReport:
        """Notify subscribers of ``package_id`` about ``event``.

        Args:
            recipients: Explicit recipient list. Used when the subscription
                rows are about to be (or have been) deleted; otherwise the
                subscribers are looked up in the metadata index.
        """
        report = NotificationReport(event=event, package_id=package_id, version=version)

        if recipients is None:
            try:
                recipients = await asyncio.wait_for(
                    self.index.subscriber_emails(package_id),
                    timeout=self.timeout_seconds,
                )
            except Exception as e:
                logger.warning(
                    "subscriber_lookup_failed",
                    package_id=package_id,
                    notification_event=event.value,
                    error=repr(e),
                )
                return report

        if not recipients:
            logger.info("no_subscribers", package_id=package_id, notification_event=event.value)
            return report

        payloads = [
            self._payload(event, r, package_id, version, package_name) for r in recipients
        ]
        results = await asyncio.gather(
            *(self._deliver(p) for p in payloads), return_exceptions=True
        )
        for payload, result in zip(payloads, results):
            if isinstance(result, BaseException):
                report.failed.append(payload.recipient)
                logger.warning(
                    "notification_failed",
                    recipient=payload.recipient,
                    package_id=package_id,
                    notification_event=event.value,
                    error=repr(result),
                )
            else:
                report.delivered.append(payload.recipient)

        logger.info(
            "subscribers_notified",
            package_id=package_id,
            version=version,
            notification_event=event.value,
            delivered=len(report.delivered),
            failed=len(report.failed),
        )
        return report
