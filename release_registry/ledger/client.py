"""
Release Ledger Client.

Thin adapter over a LedgerService for the "release" entity. Each method maps
to one ledger transaction; failures are surfaced as raw ledger exceptions.
"""
from __future__ import annotations

import logging

from .errors import ReleaseExistsError, ReleaseNotFoundError
from .models import Release
from .service import LedgerService

logger = logging.getLogger(__name__)


class ReleaseLedgerClient:
    """Issues ordered release transactions against the ledger.

    Usage:
        client = ReleaseLedgerClient(InMemoryLedgerService())
        release = await client.publish("com.acme.lib", "1.0.0", file_hash)
    """

    def __init__(self, service: LedgerService):
        self.service = service

    async def exists(self, package_id: str, version: str) -> bool:
        """Check whether a release is recorded at the key."""
        try:
            await self.service.get(package_id, version)
        except ReleaseNotFoundError:
            return False
        return True

    async def publish(self, package_id: str, version: str, file_hash: str) -> Release:
        """Record a new ACTIVE release.

        The existence read is a fast-fail only. Two concurrent publishers can
        both pass it; the ledger's own per-key ordering rejects the loser.

        Raises:
            ReleaseExistsError: a release is already recorded at the key
        """
        if await self.exists(package_id, version):
            logger.info(f"Publish pre-check rejected {package_id}:{version}")
            raise ReleaseExistsError(package_id, version)
        return await self.service.publish(package_id, version, file_hash)

    async def get(self, package_id: str, version: str) -> Release:
        """Fetch the release record.

        Raises:
            ReleaseNotFoundError: no release at the key
        """
        return await self.service.get(package_id, version)

    async def validate(self, package_id: str, version: str, candidate_hash: str) -> bool:
        """True only if the release exists, is ACTIVE, and the hash matches.

        A False result is a normal outcome, not an error.
        """
        return await self.service.validate(package_id, version, candidate_hash)

    async def discontinue(self, package_id: str, version: str) -> Release:
        """Flip the release to DISCONTINUED. Idempotent.

        Raises:
            ReleaseNotFoundError: no release at the key
        """
        return await self.service.discontinue(package_id, version)

    async def close(self) -> None:
        await self.service.close()
