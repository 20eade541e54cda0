"""Request and result schemas."""

from .release import (
    OwnerClaim,
    PackageDiscontinueReport,
    PublishResult,
    ReleaseDetail,
    ValidationResult,
    VersionOutcome,
    download_ref,
)
from .requests import CommentCreate, CommentUpdate

__all__ = [
    "CommentCreate",
    "CommentUpdate",
    "OwnerClaim",
    "PackageDiscontinueReport",
    "PublishResult",
    "ReleaseDetail",
    "ValidationResult",
    "VersionOutcome",
    "download_ref",
]
