"""
Ledger record types.

A Release is written once per (package_id, version) and afterwards only its
status may change, and only from ACTIVE to DISCONTINUED.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from ..core.keys import ledger_key


class ReleaseStatus(str, Enum):
    """Lifecycle status recorded on the ledger."""

    ACTIVE = "ACTIVE"
    DISCONTINUED = "DISCONTINUED"


class Release(BaseModel):
    """Immutable ledger record binding a package version to its content hash.

    Serialized with the ledger's camelCase field names (``packageId``,
    ``fileHash``) so records round-trip through the gateway unchanged.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    package_id: str = Field(alias="packageId")
    version: str
    content_hash: str = Field(alias="fileHash")
    status: ReleaseStatus = ReleaseStatus.ACTIVE
    publisher: str

    @property
    def key(self) -> str:
        return ledger_key(self.package_id, self.version)

    @property
    def is_active(self) -> bool:
        return self.status == ReleaseStatus.ACTIVE

    def discontinued(self) -> "Release":
        """Return a copy with status DISCONTINUED."""
        return self.model_copy(update={"status": ReleaseStatus.DISCONTINUED})

    def to_ledger(self) -> Dict[str, Any]:
        """Serialize using ledger field names."""
        return self.model_dump(by_alias=True, mode="json")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using API field names."""
        return {
            "package_id": self.package_id,
            "version": self.version,
            "content_hash": self.content_hash,
            "status": self.status.value,
            "publisher": self.publisher,
        }
