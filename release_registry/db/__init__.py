"""Database package for the release metadata index."""

from .audit_models import AuditLogModel
from .audit_service import AuditService
from .base import Base, get_db, get_engine, get_session_local, init_database
from .index import MetadataIndex, PackageRecord
from .models import (
    CommentModel,
    DownloadLogModel,
    PackageModel,
    PackageVersionModel,
    SubscriptionModel,
)
from .services import (
    CommentService,
    DownloadLogService,
    PackageService,
    PackageVersionService,
    SubscriptionService,
)

__all__ = [
    "AuditLogModel",
    "AuditService",
    "Base",
    "CommentModel",
    "CommentService",
    "DownloadLogModel",
    "DownloadLogService",
    "MetadataIndex",
    "PackageModel",
    "PackageRecord",
    "PackageService",
    "PackageVersionModel",
    "PackageVersionService",
    "SubscriptionModel",
    "SubscriptionService",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
]
