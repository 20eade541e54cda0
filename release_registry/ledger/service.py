"""
Ledger service backends.

The ledger platform itself is an external collaborator. It exposes four
transaction endpoints keyed by ``packageId:version`` and is assumed to be
linearizable per key, append-only, and identity-stamped.

    memory://            InMemoryLedgerService (development and tests)
    http://, https://    HttpLedgerService (ledger gateway REST API)
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

import httpx

from ..core.keys import ledger_key
from .errors import LedgerError, ReleaseExistsError, ReleaseNotFoundError
from .models import Release, ReleaseStatus

logger = logging.getLogger(__name__)


class LedgerService(ABC):
    """Transaction interface of the external release ledger."""

    @abstractmethod
    async def publish(self, package_id: str, version: str, file_hash: str) -> Release:
        """Submit a PublishRelease transaction.

        Raises:
            ReleaseExistsError: a record already exists at the key
        """

    @abstractmethod
    async def get(self, package_id: str, version: str) -> Release:
        """Evaluate GetRelease.

        Raises:
            ReleaseNotFoundError: no record at the key
        """

    @abstractmethod
    async def validate(self, package_id: str, version: str, file_hash: str) -> bool:
        """Evaluate ValidateRelease. Never raises for a missing key."""

    @abstractmethod
    async def discontinue(self, package_id: str, version: str) -> Release:
        """Submit DiscontinueRelease.

        Raises:
            ReleaseNotFoundError: no record at the key
        """

    async def close(self) -> None:
        """Release any held connections."""


@dataclass
class LedgerTransaction:
    """One committed write in the in-memory ledger's history."""

    tx_type: str
    key: str
    record: Dict[str, Any]
    submitted_by: str
    committed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryLedgerService(LedgerService):
    """Process-local ledger with single-writer-per-key semantics.

    Each key has its own lock, so the existence check and the write of a
    publish happen atomically with respect to other writers of the same key.
    Every committed write is appended to ``history``; nothing is ever removed.
    """

    def __init__(self, identity: str = "Org1MSP"):
        self.identity = identity
        self._state: Dict[str, Release] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.history: List[LedgerTransaction] = []

    _key = staticmethod(ledger_key)

    def _lock_for(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    def _commit(self, tx_type: str, release: Release) -> None:
        self._state[release.key] = release
        self.history.append(
            LedgerTransaction(
                tx_type=tx_type,
                key=release.key,
                record=release.to_ledger(),
                submitted_by=self.identity,
            )
        )

    async def publish(self, package_id: str, version: str, file_hash: str) -> Release:
        key = self._key(package_id, version)
        async with self._lock_for(key):
            if key in self._state:
                raise ReleaseExistsError(package_id, version)
            release = Release(
                package_id=package_id,
                version=version,
                content_hash=file_hash,
                status=ReleaseStatus.ACTIVE,
                publisher=self.identity,
            )
            self._commit("PublishRelease", release)
        logger.info(f"Release published: {key}")
        return release

    async def get(self, package_id: str, version: str) -> Release:
        try:
            return self._state[self._key(package_id, version)]
        except KeyError:
            raise ReleaseNotFoundError(package_id, version)

    async def validate(self, package_id: str, version: str, file_hash: str) -> bool:
        release = self._state.get(self._key(package_id, version))
        if release is None:
            return False
        if release.content_hash != file_hash:
            return False
        return release.is_active

    async def discontinue(self, package_id: str, version: str) -> Release:
        key = self._key(package_id, version)
        async with self._lock_for(key):
            release = self._state.get(key)
            if release is None:
                raise ReleaseNotFoundError(package_id, version)
            if release.is_active:
                release = release.discontinued()
                self._commit("DiscontinueRelease", release)
        logger.info(f"Release discontinued: {key}")
        return release


class HttpLedgerService(LedgerService):
    """Client for the ledger gateway REST API.

    Endpoints:
        POST /api/releases                                  publish
        GET  /api/releases/{packageId}/{version}            get
        POST /api/releases/validate                         validate
        PUT  /api/releases/{packageId}/{version}/discontinue
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    @staticmethod
    def _release_path(package_id: str, version: str) -> str:
        return f"/api/releases/{quote(package_id, safe='')}/{quote(version, safe='')}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Ledger gateway timed out: {method} {path}")
            raise LedgerError(str(e) or "timed out", code="LEDGER_TIMEOUT") from e
        except httpx.RequestError as e:
            logger.error(f"Ledger gateway request failed: {method} {path}: {e}")
            raise LedgerError(str(e), code="LEDGER_UNREACHABLE") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
            message = body.get("message") or body.get("error") or response.text
        except ValueError:
            message = response.text
        raise LedgerError(
            f"Ledger gateway returned {response.status_code}: {message}",
            code="LEDGER_REJECTED",
        )

    async def publish(self, package_id: str, version: str, file_hash: str) -> Release:
        response = await self._request(
            "POST",
            "/api/releases",
            json={"packageId": package_id, "version": version, "fileHash": file_hash},
        )
        if response.status_code == 409:
            raise ReleaseExistsError(package_id, version)
        self._raise_for_status(response)
        logger.info(f"Published release {package_id}@{version} to ledger")
        return await self.get(package_id, version)

    async def get(self, package_id: str, version: str) -> Release:
        response = await self._request("GET", self._release_path(package_id, version))
        if response.status_code == 404:
            raise ReleaseNotFoundError(package_id, version)
        self._raise_for_status(response)
        return Release.model_validate(response.json())

    async def validate(self, package_id: str, version: str, file_hash: str) -> bool:
        response = await self._request(
            "POST",
            "/api/releases/validate",
            json={"packageId": package_id, "version": version, "fileHash": file_hash},
        )
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        return bool(response.json().get("isValid", False))

    async def discontinue(self, package_id: str, version: str) -> Release:
        response = await self._request(
            "PUT", self._release_path(package_id, version) + "/discontinue"
        )
        if response.status_code == 404:
            raise ReleaseNotFoundError(package_id, version)
        self._raise_for_status(response)
        logger.info(f"Discontinued release {package_id}@{version}")
        return await self.get(package_id, version)


def create_ledger_service(
    url: str,
    identity: str = "Org1MSP",
    api_key: Optional[str] = None,
    timeout: float = 15.0,
) -> LedgerService:
    """Factory function to create the ledger backend for a URL.

    Raises:
        ValueError: If the URL scheme is not supported
    """
    parsed = urlparse(url)

    if parsed.scheme == "memory":
        return InMemoryLedgerService(identity=identity)

    elif parsed.scheme in ("http", "https"):
        return HttpLedgerService(url, api_key=api_key, timeout=timeout)

    else:
        raise ValueError(
            f"Unsupported ledger scheme: {parsed.scheme}. "
            f"Supported: memory://, http://, https://"
        )
