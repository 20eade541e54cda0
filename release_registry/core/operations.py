"""
Two-phase publish operation.

A publish touches two stores with no transaction spanning them. The order is
fixed here rather than left to call sequence:

    stage()     write the artifact bytes to a slot private to this operation
    commit()    record the release on the ledger with the staged hash, then
                promote the staged bytes under (package_id, version)
    rollback()  undo stage(): discard this operation's staged bytes

Only the publisher the ledger accepts ever writes the published key, so two
concurrent first publishers cannot overwrite or delete each other's bytes.

If the process dies between stage and commit, the worst state is staged
bytes with no ledger record, which is detectable and safe to clean up. If it
dies between the ledger write and the promotion, the staged bytes match the
recorded hash and can be promoted by hand. A ledger hash that no stored
bytes match is never produced.

Rollback contract:
    - allowed only after stage() and before the ledger accepted the release
    - must run when the ledger write fails for any reason, including a
      timeout, because a timed-out ledger write has an unknown outcome and
      the safe assumption is that no record was created
    - idempotent; failures are logged and never mask the commit error
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional, Tuple

import structlog

from ..ledger.client import ReleaseLedgerClient
from ..ledger.models import Release
from ..storage.artifacts import ArtifactStore, StagedArtifact, StoredArtifact

logger = structlog.get_logger()


class PublishPhase(str, Enum):
    PENDING = "pending"
    STAGED = "staged"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class PublishOperation:
    """One artifact-then-ledger publish of a single (package_id, version)."""

    def __init__(
        self,
        store: ArtifactStore,
        ledger: ReleaseLedgerClient,
        package_id: str,
        version: str,
        content: bytes,
        artifact_timeout: Optional[float] = None,
        ledger_timeout: Optional[float] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.package_id = package_id
        self.version = version
        self.content = content
        self.artifact_timeout = artifact_timeout
        self.ledger_timeout = ledger_timeout

        self.phase = PublishPhase.PENDING
        self.staged: Optional[StagedArtifact] = None
        self.artifact: Optional[StoredArtifact] = None
        self.release: Optional[Release] = None

    async def stage(self) -> StagedArtifact:
        """Write the artifact to staging. Raw store errors and timeouts propagate."""
        if self.phase != PublishPhase.PENDING:
            raise RuntimeError(f"Cannot stage a publish in phase {self.phase.value}")

        self.staged = await asyncio.wait_for(
            self.store.stage(self.package_id, self.version, self.content),
            timeout=self.artifact_timeout,
        )
        self.phase = PublishPhase.STAGED
        return self.staged

    async def commit(self) -> Release:
        """Publish the staged hash to the ledger, then promote the staged bytes.

        Raw ledger and store errors propagate. A promotion failure leaves the
        staged bytes in place: the ledger already holds their hash.
        """
        if self.phase != PublishPhase.STAGED or self.staged is None:
            raise RuntimeError(f"Cannot commit a publish in phase {self.phase.value}")

        self.release = await asyncio.wait_for(
            self.ledger.publish(self.package_id, self.version, self.staged.hash),
            timeout=self.ledger_timeout,
        )
        try:
            self.artifact = await asyncio.wait_for(
                self.store.promote(self.staged), timeout=self.artifact_timeout
            )
        except BaseException as e:
            logger.error(
                "artifact_promote_failed",
                package_id=self.package_id,
                version=self.version,
                staged=self.staged.token,
                error=repr(e),
            )
            raise
        self.phase = PublishPhase.COMMITTED
        return self.release

    async def rollback(self) -> None:
        """Discard this operation's staged bytes."""
        if self.phase != PublishPhase.STAGED or self.staged is None or self.release is not None:
            return
        try:
            await asyncio.wait_for(self.store.discard(self.staged), timeout=self.artifact_timeout)
        except Exception as e:
            logger.error(
                "publish_rollback_failed",
                package_id=self.package_id,
                version=self.version,
                error=repr(e),
            )
            return
        self.phase = PublishPhase.ROLLED_BACK
        logger.info("publish_rolled_back", package_id=self.package_id, version=self.version)

    async def run(self) -> Tuple[StoredArtifact, Release]:
        """stage() then commit(), rolling back if the ledger write fails."""
        await self.stage()
        try:
            release = await self.commit()
        except BaseException:
            await self.rollback()
            raise
        return self.artifact, release
