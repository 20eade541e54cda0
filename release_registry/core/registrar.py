"""
Release Registrar.

Coordinates the artifact store, the release ledger and the metadata index
into single logical publish, validate, download and discontinue operations.

Per (package_id, version) the ledger status is the state machine:

    [absent] --publish--> ACTIVE --discontinue--> DISCONTINUED

The Registrar holds no locks. The ledger's per-key ordering decides
concurrent publishes; cross-store consistency comes from operation order plus
compensating rollback. Subscriber notifications run as background tasks that
close() waits for. This is also the only layer that turns raw storage and
ledger failures into RegistryError subclasses.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Set, TypeVar

import structlog

from ..db.index import MetadataIndex
from ..ledger.client import ReleaseLedgerClient
from ..ledger.errors import LedgerError, ReleaseExistsError, ReleaseNotFoundError
from ..ledger.models import Release, ReleaseStatus
from ..schemas.release import (
    OwnerClaim,
    PackageDiscontinueReport,
    PublishResult,
    ReleaseDetail,
    ValidationResult,
    VersionOutcome,
    download_ref,
)
from ..storage.artifacts import ArtifactNotFoundError, ArtifactStore, ArtifactStoreError
from .errors import AlreadyExists, Forbidden, NotFound, Transient, Unavailable
from .hasher import digest, matches
from .keys import validate_package_id, validate_release_key
from .notifier import NotificationEvent, SubscriberNotifier
from .operations import PublishOperation

logger = structlog.get_logger()

T = TypeVar("T")


class ReleaseRegistrar:
    """Orchestrates release operations across the three stores."""

    def __init__(
        self,
        store: ArtifactStore,
        ledger: ReleaseLedgerClient,
        index: MetadataIndex,
        notifier: Optional[SubscriberNotifier] = None,
        artifact_timeout: float = 30.0,
        ledger_timeout: float = 15.0,
        index_timeout: float = 10.0,
        max_attempts: int = 2,
    ):
        self.store = store
        self.ledger = ledger
        self.index = index
        self.notifier = notifier
        self.artifact_timeout = artifact_timeout
        self.ledger_timeout = ledger_timeout
        self.index_timeout = index_timeout
        self.max_attempts = max(1, max_attempts)
        self._notifications: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # External call helpers
    # ------------------------------------------------------------------

    async def _ledger(self, call: Awaitable[T], package_id: str, version: Optional[str]) -> T:
        """Run a ledger call under its timeout; NotFound and Exists pass through raw."""
        try:
            return await asyncio.wait_for(call, timeout=self.ledger_timeout)
        except asyncio.TimeoutError:
            raise Transient("Ledger call timed out", package_id, version)
        except (ReleaseNotFoundError, ReleaseExistsError):
            raise
        except LedgerError as e:
            raise Transient(f"Ledger unavailable: {e.message}", package_id, version) from e

    async def _index(self, call: Awaitable[T], package_id: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.index_timeout)
        except asyncio.TimeoutError:
            raise Transient("Metadata index timed out", package_id)
        except Exception as e:
            raise Transient(f"Metadata index unavailable: {e}", package_id) from e

    async def _best_effort(
        self,
        what: str,
        call: Awaitable[Any],
        timeout: Optional[float] = None,
        **context: Any,
    ) -> bool:
        """Await a side effect that must never fail the surrounding operation.

        ``timeout`` defaults to the index timeout.
        """
        try:
            await asyncio.wait_for(
                call, timeout=self.index_timeout if timeout is None else timeout
            )
            return True
        except Exception as e:
            logger.warning(f"{what}_failed", error=repr(e), **context)
            return False

    def _notify(
        self,
        package_id: str,
        event: NotificationEvent,
        version: Optional[str] = None,
        package_name: Optional[str] = None,
        recipients: Optional[List[str]] = None,
    ) -> bool:
        """Schedule the subscriber fan-out without waiting for it.

        Returns:
            False if there is no notifier
        """
        if self.notifier is None:
            return False
        task = asyncio.create_task(
            self._deliver(package_id, event, version, package_name, recipients)
        )
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)
        return True

    async def _deliver(
        self,
        package_id: str,
        event: NotificationEvent,
        version: Optional[str],
        package_name: Optional[str],
        recipients: Optional[List[str]],
    ) -> None:
        try:
            await self.notifier.notify(
                package_id,
                event,
                version=version,
                package_name=package_name,
                recipients=recipients,
            )
        except Exception as e:
            logger.warning("notify_failed", package_id=package_id, error=repr(e))

    async def wait_for_notifications(self) -> None:
        """Wait until every scheduled notification has finished."""
        while self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)

    async def _retrying(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Retry a Transient failure up to ``max_attempts`` times."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except Transient:
                if attempt == self.max_attempts:
                    raise
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def publish_release(
        self,
        package_id: str,
        version: str,
        content: bytes,
        owner: OwnerClaim,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PublishResult:
        """Publish a new release.

        Steps:
            1. Resolve or create the package; check ownership.
            2. Stage the artifact (obtains the hash).
            3. Record the release on the ledger, then promote the staged
               bytes; discard them if the ledger write fails.
            4. Index the version (best-effort) and schedule subscriber
               notifications.

        Raises:
            Forbidden: the package belongs to someone else
            AlreadyExists: the key is already on the ledger
            Transient: a store or the ledger failed or timed out
        """
        validate_release_key(package_id, version)
        log = logger.bind(package_id=package_id, version=version, owner_id=owner.owner_id)

        package, created = await self._index(
            self.index.ensure_package(package_id, owner.owner_id, name, description),
            package_id,
        )
        if not created and package.owner_id != owner.owner_id and not owner.elevated:
            log.info("publish_forbidden", recorded_owner=package.owner_id)
            raise Forbidden(
                "Only package owner can publish new versions", package_id, version
            )

        # A package created here is kept when the publish fails; its owner is fixed.
        artifact, release = await self._publish_artifact_and_release(
            package_id, version, content, log
        )
        await self._best_effort(
            "version_index",
            self.index.record_version(
                package_id, version, artifact.hash, artifact.size, owner.owner_id
            ),
            package_id=package_id,
            version=version,
        )
        self._notify(
            package_id, NotificationEvent.NEW_VERSION, version, package_name=package.name
        )

        log.info("release_published", hash=artifact.hash, size=artifact.size)
        return PublishResult(
            package_id=package_id,
            version=version,
            hash=artifact.hash,
            size=artifact.size,
            download_ref=download_ref(package_id, version),
            publisher=release.publisher,
            package_name=package.name,
        )

    async def _publish_artifact_and_release(self, package_id, version, content, log):
        already = await self._ledger(self.ledger.exists(package_id, version), package_id, version)
        if already:
            raise AlreadyExists(
                f"Release {package_id} version {version} already exists", package_id, version
            )

        operation = PublishOperation(
            self.store,
            self.ledger,
            package_id,
            version,
            content,
            artifact_timeout=self.artifact_timeout,
            ledger_timeout=self.ledger_timeout,
        )
        try:
            return await operation.run()
        except ReleaseExistsError:
            log.info("publish_conflict", phase=operation.phase.value)
            raise AlreadyExists(
                f"Release {package_id} version {version} already exists", package_id, version
            )
        except asyncio.TimeoutError:
            log.warning("publish_timeout", phase=operation.phase.value)
            raise Transient(
                "Publish timed out; the artifact write was rolled back", package_id, version
            )
        except LedgerError as e:
            log.warning("publish_ledger_failed", phase=operation.phase.value, error=e.message)
            raise Transient(f"Ledger unavailable: {e.message}", package_id, version) from e
        except ArtifactStoreError as e:
            log.warning("publish_store_failed", phase=operation.phase.value, error=str(e))
            raise Transient(f"Artifact store failed: {e}", package_id, version) from e

    async def validate_artifact(
        self, package_id: str, version: str, content: bytes
    ) -> ValidationResult:
        """Compare ``content`` against the ledger-recorded hash.

        Never raises for a mismatch or an unknown key; those are reported as
        ``valid=False``.
        """
        validate_release_key(package_id, version)
        actual_hash = digest(content)

        try:
            release = await self._ledger(
                self.ledger.get(package_id, version), package_id, version
            )
        except ReleaseNotFoundError:
            return ValidationResult(valid=False, expected_hash=None, actual_hash=actual_hash)

        valid = await self._ledger(
            self.ledger.validate(package_id, version, actual_hash), package_id, version
        )
        logger.info(
            "artifact_validated",
            package_id=package_id,
            version=version,
            valid=valid,
            status=release.status.value,
        )
        return ValidationResult(
            valid=valid,
            expected_hash=release.content_hash,
            actual_hash=actual_hash,
            status=release.status,
        )

    async def _get_release(self, package_id: str, version: str) -> Release:
        try:
            return await self._ledger(self.ledger.get(package_id, version), package_id, version)
        except ReleaseNotFoundError:
            raise NotFound(f"Release {package_id}@{version} not found", package_id, version)

    async def fetch_for_download(
        self,
        package_id: str,
        version: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> bytes:
        """Return artifact bytes for an ACTIVE release.

        The ledger status gates distribution, not the presence of bytes.

        Raises:
            NotFound: no release, or no stored bytes
            Unavailable: the release is not ACTIVE, or the stored bytes no
                longer match the recorded hash
        """
        validate_release_key(package_id, version)
        release = await self._get_release(package_id, version)
        if not release.is_active:
            raise Unavailable(
                f"Version {version} is {release.status.value}", package_id, version
            )

        try:
            content = await asyncio.wait_for(
                self.store.get(package_id, version), timeout=self.artifact_timeout
            )
        except ArtifactNotFoundError:
            raise NotFound("Package file not found", package_id, version)
        except asyncio.TimeoutError:
            raise Transient("Artifact read timed out", package_id, version)
        except ArtifactStoreError as e:
            raise Transient(f"Artifact store failed: {e}", package_id, version) from e

        if not matches(content, release.content_hash):
            logger.error(
                "artifact_hash_mismatch",
                package_id=package_id,
                version=version,
                expected=release.content_hash,
            )
            raise Unavailable(
                "Stored artifact does not match the recorded hash", package_id, version
            )

        await self._best_effort(
            "download_log",
            self.index.record_download(package_id, version, user_id, ip_address),
            package_id=package_id,
            version=version,
        )
        return content

    async def describe_release(self, package_id: str, version: str) -> ReleaseDetail:
        """Ledger record plus download count and artifact availability."""
        validate_release_key(package_id, version)
        release = await self._get_release(package_id, version)

        try:
            count = await asyncio.wait_for(
                self.index.download_count(package_id, version), timeout=self.index_timeout
            )
        except Exception as e:
            logger.warning("download_count_failed", package_id=package_id, error=repr(e))
            count = 0
        try:
            available = await asyncio.wait_for(
                self.store.exists(package_id, version), timeout=self.artifact_timeout
            )
        except Exception as e:
            logger.warning("artifact_exists_failed", package_id=package_id, error=repr(e))
            available = False

        return ReleaseDetail(
            package_id=package_id,
            version=version,
            content_hash=release.content_hash,
            status=release.status,
            publisher=release.publisher,
            download_count=count,
            file_available=available,
            download_ref=download_ref(package_id, version)
            if available and release.is_active
            else None,
        )

    async def discontinue_release(
        self, package_id: str, version: str, actor_id: str = "system"
    ) -> Release:
        """Flip one release to DISCONTINUED and delete its artifact.

        Idempotent. A failed artifact delete is logged, not raised: the
        ledger status already blocks distribution.

        Raises:
            NotFound: no release at the key
        """
        validate_release_key(package_id, version)
        before = await self._get_release(package_id, version)
        try:
            release = await self._retrying(
                lambda: self._ledger(
                    self.ledger.discontinue(package_id, version), package_id, version
                )
            )
        except ReleaseNotFoundError:
            raise NotFound(f"Release {package_id}@{version} not found", package_id, version)

        await self._delete_artifact(package_id, version)

        if before.is_active:
            await self._best_effort(
                "status_audit",
                self.index.record_status_change(
                    package_id,
                    version,
                    before.status.value,
                    release.status.value,
                    actor_id,
                ),
                package_id=package_id,
                version=version,
            )
            self._notify(package_id, NotificationEvent.VERSION_DISCONTINUED, version)

        logger.info("release_discontinued", package_id=package_id, version=version)
        return release

    async def _delete_artifact(self, package_id: str, version: str) -> Optional[str]:
        """Delete one stored artifact, retrying once. Returns an error string on failure."""
        last_error: Optional[str] = None
        for _ in range(self.max_attempts):
            try:
                await asyncio.wait_for(
                    self.store.delete_version(package_id, version),
                    timeout=self.artifact_timeout,
                )
                return None
            except (asyncio.TimeoutError, ArtifactStoreError) as e:
                last_error = repr(e)
        logger.warning(
            "artifact_delete_failed", package_id=package_id, version=version, error=last_error
        )
        return last_error

    async def _discontinue_version(
        self, package_id: str, version: str, actor_id: str
    ) -> VersionOutcome:
        outcome = VersionOutcome(version=version)

        try:
            before = await self._ledger(
                self.ledger.get(package_id, version), package_id, version
            )
            release = await self._retrying(
                lambda: self._ledger(
                    self.ledger.discontinue(package_id, version), package_id, version
                )
            )
            outcome.status = release.status
            if before.is_active:
                await self._best_effort(
                    "status_audit",
                    self.index.record_status_change(
                        package_id,
                        version,
                        before.status.value,
                        ReleaseStatus.DISCONTINUED.value,
                        actor_id,
                    ),
                    package_id=package_id,
                    version=version,
                )
        except ReleaseNotFoundError:
            # Orphaned artifact from an interrupted publish: nothing on the ledger.
            outcome.errors.append("no ledger record")
        except Transient as e:
            # Ledger status unknown; the artifact stays until a retry succeeds.
            outcome.errors.append(e.message)
            return outcome

        delete_error = await self._delete_artifact(package_id, version)
        if delete_error is None:
            outcome.artifact_deleted = True
        else:
            outcome.errors.append(f"artifact delete failed: {delete_error}")
        return outcome

    async def discontinue_package(
        self, package_id: str, actor_id: str = "system"
    ) -> PackageDiscontinueReport:
        """Discontinue every version of a package and remove its metadata.

        Versions are processed independently: a failure on one never stops
        the others, and each outcome is reported.

        Raises:
            NotFound: neither metadata nor stored versions exist
        """
        validate_package_id(package_id)
        package = await self._index(self.index.get_package(package_id), package_id)
        indexed = await self._index(self.index.list_versions(package_id), package_id)
        try:
            stored = await asyncio.wait_for(
                self.store.list_versions(package_id), timeout=self.artifact_timeout
            )
        except (asyncio.TimeoutError, ArtifactStoreError) as e:
            logger.warning("list_stored_versions_failed", package_id=package_id, error=repr(e))
            stored = []

        versions = sorted(set(indexed) | set(stored))
        if package is None and not versions:
            raise NotFound(f"Package {package_id} not found", package_id)

        # Subscriptions are deleted with the package metadata, so read them first.
        try:
            recipients = await self._index(self.index.subscriber_emails(package_id), package_id)
        except Transient:
            recipients = []

        outcomes = await asyncio.gather(
            *(self._discontinue_version(package_id, v, actor_id) for v in versions)
        )
        report = PackageDiscontinueReport(package_id=package_id, versions=list(outcomes))

        if all(o.artifact_deleted for o in outcomes):
            await self._best_effort(
                "package_storage_cleanup",
                self.store.delete_package(package_id),
                timeout=self.artifact_timeout,
                package_id=package_id,
            )

        if package is not None:
            report.metadata_removed = await self._best_effort(
                "package_metadata_delete",
                self.index.delete_package(package_id, actor_id),
                package_id=package_id,
            )
        else:
            report.metadata_removed = True

        if self._notify(
            package_id, NotificationEvent.PACKAGE_DISCONTINUED, recipients=recipients
        ):
            report.subscribers_notified = len(recipients)

        logger.info(
            "package_discontinued",
            package_id=package_id,
            versions=len(outcomes),
            failed=[o.version for o in outcomes if not o.ok],
        )
        return report

    async def close(self) -> None:
        await self.wait_for_notifications()
        await self.ledger.close()
