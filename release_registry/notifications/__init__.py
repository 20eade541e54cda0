"""Outbound notification channels."""

from .email import (
    EmailChannel,
    EmailPayload,
    LoggingEmailChannel,
    SmtpEmailChannel,
    new_version_email,
    package_discontinued_email,
    version_discontinued_email,
)

__all__ = [
    "EmailChannel",
    "EmailPayload",
    "LoggingEmailChannel",
    "SmtpEmailChannel",
    "new_version_email",
    "package_discontinued_email",
    "version_discontinued_email",
]
