"""
Release operation schemas.

Result objects returned by the Registrar and serialized by the API.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..ledger.models import ReleaseStatus


def download_ref(package_id: str, version: str) -> str:
    """Relative download path for a release."""
    return f"/packages/{package_id}/{version}/download-file"


class OwnerClaim(BaseModel):
    """Who is asking to publish, as asserted by the authentication layer."""

    model_config = ConfigDict(frozen=True)

    owner_id: str = Field(min_length=1, max_length=128)
    elevated: bool = False


class PublishResult(BaseModel):
    """Outcome of a successful publish."""

    package_id: str
    version: str
    hash: str
    size: int
    download_ref: str
    publisher: str
    package_name: str


class ValidationResult(BaseModel):
    """Outcome of an integrity check.

    ``valid`` is False for a hash mismatch, a discontinued release, or an
    unknown key. ``expected_hash`` is None only when no release is recorded.
    """

    valid: bool
    expected_hash: Optional[str]
    actual_hash: str
    status: Optional[ReleaseStatus] = None

    @property
    def message(self) -> str:
        if self.valid:
            return "File integrity verified"
        if self.expected_hash is None:
            return "No release is recorded for this version"
        if self.expected_hash != self.actual_hash:
            return "File does not match the recorded hash"
        return "Release is not active"


class ReleaseDetail(BaseModel):
    """Ledger record enriched with index and storage facts."""

    package_id: str
    version: str
    content_hash: str
    status: ReleaseStatus
    publisher: str
    download_count: int
    file_available: bool
    download_ref: Optional[str]


class VersionOutcome(BaseModel):
    """What happened to one version during a package discontinuation."""

    version: str
    status: Optional[ReleaseStatus] = None
    artifact_deleted: bool = False
    errors: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class PackageDiscontinueReport(BaseModel):
    """Per-version outcomes of discontinuing a whole package.

    ``subscribers_notified`` counts the subscribers a notice was queued for;
    delivery happens in the background.
    """

    package_id: str
    versions: List[VersionOutcome] = Field(default_factory=list)
    metadata_removed: bool = False
    subscribers_notified: int = 0

    @property
    def complete(self) -> bool:
        return self.metadata_removed and all(v.ok for v in self.versions)
