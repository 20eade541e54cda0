"""Release ledger: record types, backends and the release client."""

from .client import ReleaseLedgerClient
from .errors import LedgerError, ReleaseExistsError, ReleaseNotFoundError
from .models import Release, ReleaseStatus
from .service import (
    HttpLedgerService,
    InMemoryLedgerService,
    LedgerService,
    create_ledger_service,
)

__all__ = [
    "HttpLedgerService",
    "InMemoryLedgerService",
    "LedgerError",
    "LedgerService",
    "Release",
    "ReleaseExistsError",
    "ReleaseLedgerClient",
    "ReleaseNotFoundError",
    "ReleaseStatus",
    "create_ledger_service",
]
