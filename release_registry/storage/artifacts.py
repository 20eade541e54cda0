"""
Artifact storage for release binaries.

One blob per (package_id, version), addressed by the same key the ledger uses.
A publish writes its bytes to a staging slot private to that call and only
promotes them to the published key once the ledger has accepted the release,
so a losing publisher never overwrites or deletes bytes it did not write.

    file:// support (local filesystem)
    memory:// support (process-local, used for development and tests)

Design principle: treat storage as a URI, not a boolean.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple
from urllib.parse import urlparse

from ..core.hasher import digest

logger = logging.getLogger(__name__)

ARTIFACT_FILENAME = "package.tar.gz"
STAGING_PREFIX = ".staged-"


class ArtifactStoreError(Exception):
    """Raised when the artifact store cannot complete an I/O operation."""


class ArtifactNotFoundError(ArtifactStoreError):
    """Raised when no artifact is stored at the requested key."""

    def __init__(self, package_id: str, version: str):
        self.package_id = package_id
        self.version = version
        super().__init__(f"Package file not found: {package_id}@{version}")


@dataclass(frozen=True)
class StoredArtifact:
    """Result of writing an artifact."""

    package_id: str
    version: str
    hash: str
    size: int
    location: str


@dataclass(frozen=True)
class StagedArtifact:
    """Bytes written for one publish call but not yet visible under the key."""

    package_id: str
    version: str
    hash: str
    size: int
    token: str


class ArtifactStore(ABC):
    """Abstract base class for artifact storage."""

    @abstractmethod
    async def put(self, package_id: str, version: str, content: bytes) -> StoredArtifact:
        """Hash and write ``content`` under (package_id, version).

        Overwriting with identical bytes is harmless, so retries are safe.
        """

    @abstractmethod
    async def stage(self, package_id: str, version: str, content: bytes) -> StagedArtifact:
        """Hash and write ``content`` to a slot owned by this call only.

        Readers of (package_id, version) never see staged bytes.
        """

    @abstractmethod
    async def promote(self, staged: StagedArtifact) -> StoredArtifact:
        """Move staged bytes under their key, replacing whatever was there."""

    @abstractmethod
    async def discard(self, staged: StagedArtifact) -> None:
        """Drop staged bytes. The published artifact is never touched."""

    @abstractmethod
    async def get(self, package_id: str, version: str) -> bytes:
        """Read the artifact. Raises ArtifactNotFoundError if absent."""

    @abstractmethod
    async def exists(self, package_id: str, version: str) -> bool:
        """Check whether an artifact is stored at the key."""

    @abstractmethod
    async def delete_version(self, package_id: str, version: str) -> None:
        """Remove one version. Absence is not an error."""

    @abstractmethod
    async def delete_package(self, package_id: str) -> None:
        """Remove every version of a package. Absence is not an error."""

    @abstractmethod
    async def list_versions(self, package_id: str) -> List[str]:
        """List versions that currently have stored bytes."""

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        """Return ``{"total_artifacts": n, "total_bytes": n}``."""

    @abstractmethod
    def get_uri(self) -> str:
        """Get the URI of the storage root."""


class FileArtifactStore(ArtifactStore):
    """Local filesystem artifact store (file:// URIs).

    Structure:
        <root>/
        └── {package_id}/
            └── {version}/
                ├── package.tar.gz
                └── .staged-*        (in-flight publishes)

    Staged bytes live in the version directory and are renamed into place,
    so a reader never observes a partially written artifact.
    Blocking filesystem calls run in a worker thread.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _version_dir(self, package_id: str, version: str) -> Path:
        return self._contained(self.base_path / package_id / version)

    def _package_dir(self, package_id: str) -> Path:
        return self._contained(self.base_path / package_id)

    def _file_path(self, package_id: str, version: str) -> Path:
        return self._version_dir(package_id, version) / ARTIFACT_FILENAME

    def _staged_path(self, staged: StagedArtifact) -> Path:
        if not staged.token.startswith(STAGING_PREFIX) or "/" in staged.token:
            raise ArtifactStoreError(f"Not a staging token: {staged.token}")
        return self._version_dir(staged.package_id, staged.version) / staged.token

    def _contained(self, path: Path) -> Path:
        resolved = path.resolve()
        if resolved == self.base_path or self.base_path not in resolved.parents:
            raise ArtifactStoreError(f"Path escapes storage root: {path}")
        return resolved

    def _stage(self, package_id: str, version: str, content: bytes) -> StagedArtifact:
        version_dir = self._version_dir(package_id, version)
        try:
            version_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=version_dir, prefix=STAGING_PREFIX)
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(content)
                    fh.flush()
                    os.fsync(fh.fileno())
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ArtifactStoreError(
                f"Failed to save file for {package_id}@{version}: {e}"
            ) from e

        return StagedArtifact(
            package_id=package_id,
            version=version,
            hash=digest(content),
            size=len(content),
            token=Path(tmp_name).name,
        )

    def _promote(self, staged: StagedArtifact) -> StoredArtifact:
        source = self._staged_path(staged)
        target = source.parent / ARTIFACT_FILENAME
        try:
            os.replace(source, target)
        except OSError as e:
            raise ArtifactStoreError(
                f"Failed to promote {staged.token} for {staged.package_id}@{staged.version}: {e}"
            ) from e

        logger.info(
            f"Saved package {staged.package_id}@{staged.version} "
            f"({staged.size} bytes, hash: {staged.hash[:16]}...)"
        )
        return StoredArtifact(
            package_id=staged.package_id,
            version=staged.version,
            hash=staged.hash,
            size=staged.size,
            location=f"file://{target}",
        )

    def _discard(self, staged: StagedArtifact) -> None:
        path = self._staged_path(staged)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise ArtifactStoreError(f"Failed to discard {path}: {e}") from e

    def _write(self, package_id: str, version: str, content: bytes) -> StoredArtifact:
        return self._promote(self._stage(package_id, version, content))

    def _read(self, package_id: str, version: str) -> bytes:
        path = self._file_path(package_id, version)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFoundError(package_id, version)
        except OSError as e:
            raise ArtifactStoreError(f"Failed to read file: {e}") from e

    def _remove_tree(self, path: Path) -> None:
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise ArtifactStoreError(f"Failed to delete {path}: {e}") from e

    def _list_versions(self, package_id: str) -> List[str]:
        package_dir = self._package_dir(package_id)
        if not package_dir.is_dir():
            return []
        return sorted(
            child.name
            for child in package_dir.iterdir()
            if (child / ARTIFACT_FILENAME).is_file()
        )

    def _stats(self) -> Dict[str, int]:
        total_artifacts = 0
        total_bytes = 0
        for artifact in self.base_path.glob(f"*/*/{ARTIFACT_FILENAME}"):
            total_artifacts += 1
            total_bytes += artifact.stat().st_size
        return {"total_artifacts": total_artifacts, "total_bytes": total_bytes}

    async def put(self, package_id: str, version: str, content: bytes) -> StoredArtifact:
        return await asyncio.to_thread(self._write, package_id, version, content)

    async def stage(self, package_id: str, version: str, content: bytes) -> StagedArtifact:
        return await asyncio.to_thread(self._stage, package_id, version, content)

    async def promote(self, staged: StagedArtifact) -> StoredArtifact:
        return await asyncio.to_thread(self._promote, staged)

    async def discard(self, staged: StagedArtifact) -> None:
        await asyncio.to_thread(self._discard, staged)

    async def get(self, package_id: str, version: str) -> bytes:
        return await asyncio.to_thread(self._read, package_id, version)

    async def exists(self, package_id: str, version: str) -> bool:
        return await asyncio.to_thread(self._file_path(package_id, version).is_file)

    async def delete_version(self, package_id: str, version: str) -> None:
        await asyncio.to_thread(self._remove_tree, self._version_dir(package_id, version))
        logger.info(f"Deleted package {package_id}@{version}")

    async def delete_package(self, package_id: str) -> None:
        await asyncio.to_thread(self._remove_tree, self._package_dir(package_id))
        logger.info(f"Deleted all versions of package {package_id}")

    async def list_versions(self, package_id: str) -> List[str]:
        return await asyncio.to_thread(self._list_versions, package_id)

    async def stats(self) -> Dict[str, int]:
        return await asyncio.to_thread(self._stats)

    def get_uri(self) -> str:
        return f"file://{self.base_path}"


class InMemoryArtifactStore(ArtifactStore):
    """Process-local artifact store (memory:// URIs)."""

    def __init__(self) -> None:
        self._blobs: Dict[Tuple[str, str], bytes] = {}
        self._staged: Dict[str, bytes] = {}

    @staticmethod
    def _stored(package_id: str, version: str, content: bytes) -> StoredArtifact:
        return StoredArtifact(
            package_id=package_id,
            version=version,
            hash=digest(content),
            size=len(content),
            location=f"memory://{package_id}/{version}",
        )

    async def put(self, package_id: str, version: str, content: bytes) -> StoredArtifact:
        self._blobs[(package_id, version)] = bytes(content)
        return self._stored(package_id, version, content)

    async def stage(self, package_id: str, version: str, content: bytes) -> StagedArtifact:
        token = f"{STAGING_PREFIX}{uuid.uuid4().hex}"
        self._staged[token] = bytes(content)
        return StagedArtifact(
            package_id=package_id,
            version=version,
            hash=digest(content),
            size=len(content),
            token=token,
        )

    async def promote(self, staged: StagedArtifact) -> StoredArtifact:
        try:
            content = self._staged.pop(staged.token)
        except KeyError:
            raise ArtifactStoreError(f"Nothing staged under {staged.token}")
        self._blobs[(staged.package_id, staged.version)] = content
        return self._stored(staged.package_id, staged.version, content)

    async def discard(self, staged: StagedArtifact) -> None:
        self._staged.pop(staged.token, None)

    async def get(self, package_id: str, version: str) -> bytes:
        try:
            return self._blobs[(package_id, version)]
        except KeyError:
            raise ArtifactNotFoundError(package_id, version)

    async def exists(self, package_id: str, version: str) -> bool:
        return (package_id, version) in self._blobs

    async def delete_version(self, package_id: str, version: str) -> None:
        self._blobs.pop((package_id, version), None)

    async def delete_package(self, package_id: str) -> None:
        for key in [k for k in self._blobs if k[0] == package_id]:
            del self._blobs[key]

    async def list_versions(self, package_id: str) -> List[str]:
        return sorted(v for (p, v) in self._blobs if p == package_id)

    async def stats(self) -> Dict[str, int]:
        return {
            "total_artifacts": len(self._blobs),
            "total_bytes": sum(len(b) for b in self._blobs.values()),
        }

    def get_uri(self) -> str:
        return "memory://"


def create_artifact_store(uri: str) -> ArtifactStore:
    """Factory function to create the appropriate ArtifactStore from a URI.

    Args:
        uri: Storage root URI (e.g., "file:///var/lib/registry" or "memory://")

    Returns:
        ArtifactStore instance for the given URI scheme

    Raises:
        ValueError: If the URI scheme is not supported
    """
    parsed = urlparse(uri)

    if parsed.scheme == "file":
        # file://./relative and file:///absolute are both accepted
        return FileArtifactStore(Path(parsed.netloc + parsed.path))

    elif parsed.scheme == "memory":
        return InMemoryArtifactStore()

    else:
        raise ValueError(
            f"Unsupported storage scheme: {parsed.scheme}. "
            f"Supported: file://, memory://"
        )
