"""
Tests for the Release Registrar.

Covers publish ordering and rollback, integrity validation, download gating,
single-release and whole-package discontinuation, and the error taxonomy.
"""

import asyncio

import pytest

from release_registry.core.errors import (
    AlreadyExists,
    Forbidden,
    InvalidReleaseKey,
    NotFound,
    Transient,
    Unavailable,
)
from release_registry.core.hasher import digest
from release_registry.core.notifier import SubscriberNotifier
from release_registry.core.registrar import ReleaseRegistrar
from release_registry.db.services import (
    DownloadLogService,
    PackageService,
    PackageVersionService,
    SubscriptionService,
)
from release_registry.db.audit_service import AuditService
from release_registry.ledger import LedgerError, ReleaseStatus
from release_registry.schemas.release import OwnerClaim, PublishResult

from conftest import RecordingEmailChannel

ALICE = OwnerClaim(owner_id="alice")
BOB = OwnerClaim(owner_id="bob")
ADMIN = OwnerClaim(owner_id="root", elevated=True)

PKG = "com.acme.lib"


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_returns_hash_size_and_download_ref(self, registrar):
        result = await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE, name="Acme Lib")

        assert result.hash == digest(b"b1")
        assert result.size == 2
        assert result.publisher == "Org1MSP"
        assert result.download_ref == f"/packages/{PKG}/1.0.0/download-file"
        assert result.package_name == "Acme Lib"

    @pytest.mark.asyncio
    async def test_publish_creates_package_owned_by_publisher(self, registrar, db_session):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        package = PackageService(db_session).get(PKG)
        assert package.owner_id == "alice"
        assert package.name == PKG

    @pytest.mark.asyncio
    async def test_publish_indexes_version(self, registrar, db_session):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        row = PackageVersionService(db_session).get(PKG, "1.0.0")
        assert row.content_hash == digest(b"b1")
        assert row.size == 2
        assert row.published_by == "alice"

    @pytest.mark.asyncio
    async def test_other_owner_is_forbidden(self, registrar, ledger):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        with pytest.raises(Forbidden):
            await registrar.publish_release(PKG, "1.1.0", b"b2", BOB)
        assert not await ledger.exists(PKG, "1.1.0")

    @pytest.mark.asyncio
    async def test_elevated_caller_may_publish_to_any_package(self, registrar):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        result = await registrar.publish_release(PKG, "1.1.0", b"b2", ADMIN)
        assert result.hash == digest(b"b2")

    @pytest.mark.asyncio
    async def test_invalid_key_is_rejected_before_any_write(self, registrar, store, ledger_service):
        with pytest.raises(InvalidReleaseKey):
            await registrar.publish_release("Bad/Id", "1.0.0", b"x", ALICE)
        with pytest.raises(InvalidReleaseKey):
            await registrar.publish_release(PKG, "1.0", b"x", ALICE)
        assert await store.stats() == {"total_artifacts": 0, "total_bytes": 0}
        assert ledger_service.history == []

    @pytest.mark.asyncio
    async def test_duplicate_publish_keeps_first_hash_and_bytes(self, registrar, store, ledger):
        await registrar.publish_release(PKG, "1.0.0", b"first", ALICE)
        with pytest.raises(AlreadyExists):
            await registrar.publish_release(PKG, "1.0.0", b"second", ALICE)

        assert (await ledger.get(PKG, "1.0.0")).content_hash == digest(b"first")
        assert await store.get(PKG, "1.0.0") == b"first"

    @pytest.mark.asyncio
    async def test_publisher_past_precheck_leaves_winner_bytes(
        self, registrar, store, ledger, ledger_service
    ):
        await registrar.publish_release(PKG, "1.0.0", b"winner", ALICE)

        # Simulate a publisher that passed the pre-check before the winner committed
        original_exists = ledger.exists

        async def stale_exists(package_id, version):
            return False

        ledger.exists = stale_exists
        try:
            with pytest.raises(AlreadyExists):
                await registrar.publish_release(PKG, "1.0.0", b"loser", ALICE)
        finally:
            ledger.exists = original_exists

        assert await store.get(PKG, "1.0.0") == b"winner"
        assert (await ledger.get(PKG, "1.0.0")).content_hash == digest(b"winner")
        assert store.staged_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_first_publishers_store_only_winner_bytes(
        self, registrar, store, ledger, db_session
    ):
        store.stage_delay = 0.05

        results = await asyncio.gather(
            registrar.publish_release(PKG, "1.0.0", b"AAAA", ALICE),
            registrar.publish_release(PKG, "1.0.0", b"BBBB", ALICE),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, PublishResult)]
        assert len(winners) == 1
        assert sum(isinstance(r, AlreadyExists) for r in results) == 1

        recorded = (await ledger.get(PKG, "1.0.0")).content_hash
        assert recorded == winners[0].hash
        assert digest(await store.get(PKG, "1.0.0")) == recorded
        assert store.staged_count == 0
        assert PackageService(db_session).get(PKG).owner_id == "alice"

    @pytest.mark.asyncio
    async def test_ledger_timeout_rolls_back_and_is_transient(
        self, registrar, store, ledger, ledger_service
    ):
        ledger_service.publish_delay = 1.0
        with pytest.raises(Transient) as exc_info:
            await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)

        assert exc_info.value.retryable
        assert not await store.exists(PKG, "1.0.0")
        assert not await ledger.exists(PKG, "1.0.0")

    @pytest.mark.asyncio
    async def test_ledger_error_rolls_back_and_is_transient(self, registrar, store, ledger_service):
        ledger_service.publish_error = LedgerError("endorsement policy failure")
        with pytest.raises(Transient, match="endorsement policy failure"):
            await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        assert not await store.exists(PKG, "1.0.0")

    @pytest.mark.asyncio
    async def test_store_failure_aborts_before_ledger(self, registrar, store, ledger_service):
        store.fail_stage = True
        with pytest.raises(Transient):
            await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        assert ledger_service.publish_calls == []

    @pytest.mark.asyncio
    async def test_failed_first_publish_keeps_package_for_its_owner(
        self, registrar, store, db_session
    ):
        store.fail_stage = True
        with pytest.raises(Transient):
            await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)

        assert PackageService(db_session).get(PKG).owner_id == "alice"
        history = AuditService(db_session).get_entity_history("Package", PKG)
        assert [entry.action for entry in history] == ["created"]

        store.fail_stage = False
        with pytest.raises(Forbidden):
            await registrar.publish_release(PKG, "1.0.0", b"b1", BOB)

    @pytest.mark.asyncio
    async def test_failed_first_publish_spares_concurrent_version(
        self, registrar, ledger, ledger_service, db_session
    ):
        ledger_service.version_delays["1.0.0"] = 0.15
        ledger_service.version_errors["1.0.0"] = LedgerError("peer down")

        async def publish_later():
            await asyncio.sleep(0.05)
            return await registrar.publish_release(PKG, "2.0.0", b"v2", ALICE)

        results = await asyncio.gather(
            registrar.publish_release(PKG, "1.0.0", b"v1", ALICE),
            publish_later(),
            return_exceptions=True,
        )

        assert isinstance(results[0], Transient)
        assert isinstance(results[1], PublishResult)

        db_session.expire_all()
        assert PackageService(db_session).get(PKG).owner_id == "alice"
        assert PackageVersionService(db_session).list_versions(PKG) == ["2.0.0"]
        assert (await ledger.get(PKG, "2.0.0")).is_active
        with pytest.raises(Forbidden):
            await registrar.publish_release(PKG, "3.0.0", b"v3", BOB)

    @pytest.mark.asyncio
    async def test_retry_after_transient_succeeds(self, registrar, ledger_service):
        ledger_service.publish_error = LedgerError("peer down")
        with pytest.raises(Transient):
            await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)

        ledger_service.publish_error = None
        result = await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        assert result.hash == digest(b"b1")

    @pytest.mark.asyncio
    async def test_publish_notifies_subscribers(self, registrar, db_session, channel):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE, name="Acme Lib")
        SubscriptionService(db_session).subscribe("carol", PKG, "carol@example.com")

        await registrar.publish_release(PKG, "1.1.0", b"b2", ALICE)
        await registrar.wait_for_notifications()

        assert [p.recipient for p in channel.sent] == ["carol@example.com"]
        assert channel.sent[0].subject == "New Version: Acme Lib 1.1.0"

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_publish(
        self, registrar, db_session, channel
    ):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        SubscriptionService(db_session).subscribe("carol", PKG, "carol@example.com")
        channel.fail_for.add("carol@example.com")

        result = await registrar.publish_release(PKG, "1.1.0", b"b2", ALICE)
        assert result.version == "1.1.0"
        await registrar.wait_for_notifications()
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_slow_mail_relay_does_not_delay_publish(self, store, ledger, index, db_session):
        channel = RecordingEmailChannel(delay=0.5)
        notifier = SubscriberNotifier(
            index, channel, base_url="https://registry.test", timeout_seconds=2.0
        )
        registrar = ReleaseRegistrar(store=store, ledger=ledger, index=index, notifier=notifier)
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        SubscriptionService(db_session).subscribe("carol", PKG, "carol@example.com")

        loop = asyncio.get_running_loop()
        started = loop.time()
        await registrar.publish_release(PKG, "1.1.0", b"b2", ALICE)
        elapsed = loop.time() - started

        assert elapsed < 0.4
        assert channel.sent == []

        await registrar.close()
        assert [p.recipient for p in channel.sent] == ["carol@example.com"]


class TestValidate:
    @pytest.mark.asyncio
    async def test_identical_bytes_are_valid(self, registrar):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        result = await registrar.validate_artifact(PKG, "1.0.0", b"b1")
        assert result.valid
        assert result.expected_hash == result.actual_hash == digest(b"b1")
        assert result.status == ReleaseStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_one_byte_mutation_is_invalid(self, registrar):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        result = await registrar.validate_artifact(PKG, "1.0.0", b"b2")
        assert not result.valid
        assert result.actual_hash != result.expected_hash
        assert result.actual_hash == digest(b"b2")
        assert result.message == "File does not match the recorded hash"

    @pytest.mark.asyncio
    async def test_unknown_key_is_invalid_not_an_error(self, registrar):
        result = await registrar.validate_artifact(PKG, "9.9.9", b"anything")
        assert not result.valid
        assert result.expected_hash is None
        assert result.status is None

    @pytest.mark.asyncio
    async def test_discontinued_release_is_invalid_even_with_matching_bytes(self, registrar):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await registrar.discontinue_release(PKG, "1.0.0")
        result = await registrar.validate_artifact(PKG, "1.0.0", b"b1")
        assert not result.valid
        assert result.expected_hash == result.actual_hash
        assert result.status == ReleaseStatus.DISCONTINUED


class TestDownload:
    @pytest.mark.asyncio
    async def test_fetch_returns_bytes_and_logs_download(self, registrar, db_session):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        content = await registrar.fetch_for_download(
            PKG, "1.0.0", user_id="dave", ip_address="10.0.0.1"
        )
        assert content == b"b1"
        assert DownloadLogService(db_session).count(PKG, "1.0.0") == 1

    @pytest.mark.asyncio
    async def test_unknown_release_is_not_found(self, registrar):
        with pytest.raises(NotFound):
            await registrar.fetch_for_download(PKG, "1.0.0")

    @pytest.mark.asyncio
    async def test_discontinued_release_is_unavailable(self, registrar):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await registrar.discontinue_release(PKG, "1.0.0")
        with pytest.raises(Unavailable):
            await registrar.fetch_for_download(PKG, "1.0.0")

    @pytest.mark.asyncio
    async def test_status_gates_even_when_bytes_remain(self, registrar, store):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        store.fail_delete_for.add((PKG, "1.0.0"))
        await registrar.discontinue_release(PKG, "1.0.0")

        assert await store.exists(PKG, "1.0.0")
        with pytest.raises(Unavailable):
            await registrar.fetch_for_download(PKG, "1.0.0")

    @pytest.mark.asyncio
    async def test_missing_bytes_for_active_release_is_not_found(self, registrar, store):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await store.delete_version(PKG, "1.0.0")
        with pytest.raises(NotFound, match="Package file not found"):
            await registrar.fetch_for_download(PKG, "1.0.0")

    @pytest.mark.asyncio
    async def test_tampered_bytes_are_never_served(self, registrar, store):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await store.put(PKG, "1.0.0", b"tampered")
        with pytest.raises(Unavailable):
            await registrar.fetch_for_download(PKG, "1.0.0")


class TestDescribe:
    @pytest.mark.asyncio
    async def test_describe_active_release(self, registrar):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await registrar.fetch_for_download(PKG, "1.0.0")
        detail = await registrar.describe_release(PKG, "1.0.0")

        assert detail.status == ReleaseStatus.ACTIVE
        assert detail.content_hash == digest(b"b1")
        assert detail.download_count == 1
        assert detail.file_available
        assert detail.download_ref == f"/packages/{PKG}/1.0.0/download-file"

    @pytest.mark.asyncio
    async def test_describe_discontinued_release_has_no_download_ref(self, registrar):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await registrar.discontinue_release(PKG, "1.0.0")
        detail = await registrar.describe_release(PKG, "1.0.0")
        assert detail.status == ReleaseStatus.DISCONTINUED
        assert not detail.file_available
        assert detail.download_ref is None

    @pytest.mark.asyncio
    async def test_describe_unknown_release(self, registrar):
        with pytest.raises(NotFound):
            await registrar.describe_release(PKG, "1.0.0")


class TestDiscontinueRelease:
    @pytest.mark.asyncio
    async def test_flips_status_and_deletes_artifact(self, registrar, store, ledger):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        release = await registrar.discontinue_release(PKG, "1.0.0", actor_id="alice")

        assert release.status == ReleaseStatus.DISCONTINUED
        assert release.content_hash == digest(b"b1")
        assert not await store.exists(PKG, "1.0.0")
        assert (await ledger.get(PKG, "1.0.0")).status == ReleaseStatus.DISCONTINUED

    @pytest.mark.asyncio
    async def test_is_idempotent(self, registrar, ledger_service):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await registrar.discontinue_release(PKG, "1.0.0")
        again = await registrar.discontinue_release(PKG, "1.0.0")
        assert again.status == ReleaseStatus.DISCONTINUED
        assert [tx.tx_type for tx in ledger_service.history].count("DiscontinueRelease") == 1

    @pytest.mark.asyncio
    async def test_unknown_release_is_not_found(self, registrar):
        with pytest.raises(NotFound):
            await registrar.discontinue_release(PKG, "1.0.0")

    @pytest.mark.asyncio
    async def test_artifact_delete_failure_is_not_raised(self, registrar, store):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        store.fail_delete_for.add((PKG, "1.0.0"))
        release = await registrar.discontinue_release(PKG, "1.0.0")
        assert release.status == ReleaseStatus.DISCONTINUED

    @pytest.mark.asyncio
    async def test_status_change_is_audited(self, registrar, db_session):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await registrar.discontinue_release(PKG, "1.0.0", actor_id="alice")

        history = AuditService(db_session).get_entity_history("Release", f"{PKG}:1.0.0")
        actions = [entry.action for entry in history]
        assert actions == ["published", "status_changed"]
        assert history[-1].after == {"status": "DISCONTINUED"}

    @pytest.mark.asyncio
    async def test_subscribers_told_version_disabled(self, registrar, db_session, channel):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        SubscriptionService(db_session).subscribe("carol", PKG, "carol@example.com")

        await registrar.discontinue_release(PKG, "1.0.0")
        await registrar.discontinue_release(PKG, "1.0.0")
        await registrar.wait_for_notifications()

        assert [p.subject for p in channel.sent] == [f"Version Discontinued: {PKG} 1.0.0"]


class TestDiscontinuePackage:
    @pytest.mark.asyncio
    async def test_all_versions_discontinued_despite_one_delete_failure(
        self, registrar, store, ledger
    ):
        versions = ["1.0.0", "1.1.0", "2.0.0"]
        for v in versions:
            await registrar.publish_release(PKG, v, v.encode(), ALICE)
        store.fail_delete_for.add((PKG, "1.1.0"))

        report = await registrar.discontinue_package(PKG, actor_id="root")

        for v in versions:
            assert (await ledger.get(PKG, v)).status == ReleaseStatus.DISCONTINUED
        outcomes = {o.version: o for o in report.versions}
        assert set(outcomes) == set(versions)
        assert outcomes["1.0.0"].ok and outcomes["2.0.0"].ok
        assert not outcomes["1.1.0"].ok
        assert not outcomes["1.1.0"].artifact_deleted
        assert outcomes["1.1.0"].status == ReleaseStatus.DISCONTINUED
        assert not report.complete

    @pytest.mark.asyncio
    async def test_removes_metadata_and_cascades(self, registrar, db_session):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        SubscriptionService(db_session).subscribe("carol", PKG, "carol@example.com")

        report = await registrar.discontinue_package(PKG)

        db_session.expire_all()
        assert report.metadata_removed
        assert report.complete
        assert PackageService(db_session).get(PKG) is None
        assert PackageVersionService(db_session).list_versions(PKG) == []
        assert SubscriptionService(db_session).subscriber_emails(PKG) == []

    @pytest.mark.asyncio
    async def test_subscribers_notified_after_metadata_removed(
        self, registrar, db_session, channel
    ):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        SubscriptionService(db_session).subscribe("carol", PKG, "carol@example.com")
        SubscriptionService(db_session).subscribe("erin", PKG, "erin@example.com")

        report = await registrar.discontinue_package(PKG)
        await registrar.wait_for_notifications()

        subjects = [p.subject for p in channel.sent]
        assert subjects.count(f"Package Discontinued: {PKG}") == 2
        assert report.subscribers_notified == 2

    @pytest.mark.asyncio
    async def test_orphaned_stored_version_is_cleaned_up(self, registrar, store):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        # Bytes left behind by an interrupted publish, never recorded anywhere
        await store.put(PKG, "0.9.0", b"orphan")

        report = await registrar.discontinue_package(PKG)

        outcomes = {o.version: o for o in report.versions}
        assert set(outcomes) == {"0.9.0", "1.0.0"}
        assert outcomes["0.9.0"].artifact_deleted
        assert outcomes["0.9.0"].errors == ["no ledger record"]
        assert await store.list_versions(PKG) == []

    @pytest.mark.asyncio
    async def test_storage_cleanup_runs_under_artifact_timeout(
        self, store, ledger, index, notifier
    ):
        registrar = ReleaseRegistrar(
            store=store,
            ledger=ledger,
            index=index,
            notifier=notifier,
            artifact_timeout=2.0,
            ledger_timeout=0.2,
            index_timeout=0.15,
        )
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)

        cleaned = []
        real_delete_package = store.delete_package

        async def slow_delete_package(package_id):
            await asyncio.sleep(0.5)
            await real_delete_package(package_id)
            cleaned.append(package_id)

        store.delete_package = slow_delete_package
        await registrar.discontinue_package(PKG)

        assert cleaned == [PKG]

    @pytest.mark.asyncio
    async def test_unknown_package_is_not_found(self, registrar):
        with pytest.raises(NotFound):
            await registrar.discontinue_package("org.missing")

    @pytest.mark.asyncio
    async def test_transient_ledger_failure_is_reported_per_version(
        self, registrar, ledger_service
    ):
        await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        await registrar.publish_release(PKG, "2.0.0", b"b2", ALICE)

        real_discontinue = ledger_service.discontinue

        async def flaky_discontinue(package_id, version):
            if version == "1.0.0":
                raise LedgerError("peer down")
            return await real_discontinue(package_id, version)

        ledger_service.discontinue = flaky_discontinue
        report = await registrar.discontinue_package(PKG)

        outcomes = {o.version: o for o in report.versions}
        assert outcomes["1.0.0"].status is None
        assert "peer down" in outcomes["1.0.0"].errors[0]
        assert not outcomes["1.0.0"].artifact_deleted
        assert outcomes["2.0.0"].status == ReleaseStatus.DISCONTINUED
        assert outcomes["2.0.0"].ok


class TestScenario:
    @pytest.mark.asyncio
    async def test_release_lifecycle_end_to_end(self, registrar, store, ledger):
        b1 = b"\x1f\x8b\x08\x00acme-lib-1.0.0"
        published = await registrar.publish_release(PKG, "1.0.0", b1, ALICE)
        h1 = digest(b1)
        assert published.hash == h1

        record = await ledger.get(PKG, "1.0.0")
        assert record.status == ReleaseStatus.ACTIVE
        assert record.content_hash == h1

        assert (await registrar.validate_artifact(PKG, "1.0.0", b1)).valid
        assert await registrar.fetch_for_download(PKG, "1.0.0") == b1

        await registrar.discontinue_release(PKG, "1.0.0")
        assert (await ledger.get(PKG, "1.0.0")).status == ReleaseStatus.DISCONTINUED
        assert not (await registrar.validate_artifact(PKG, "1.0.0", b1)).valid
        with pytest.raises(Unavailable):
            await registrar.fetch_for_download(PKG, "1.0.0")

        with pytest.raises(AlreadyExists):
            await registrar.publish_release(PKG, "1.0.0", b1, ALICE)
        assert not await store.exists(PKG, "1.0.0")


class TestWithoutNotifier:
    @pytest.mark.asyncio
    async def test_registrar_works_without_notifier(self, store, ledger, index):
        registrar = ReleaseRegistrar(store=store, ledger=ledger, index=index)
        result = await registrar.publish_release(PKG, "1.0.0", b"b1", ALICE)
        assert result.hash == digest(b"b1")
        report = await registrar.discontinue_package(PKG)
        assert report.subscribers_notified == 0
