"""Test configuration and fixtures."""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

import pytest
from sqlalchemy.orm import sessionmaker

from release_registry.core.notifier import SubscriberNotifier
from release_registry.core.registrar import ReleaseRegistrar
from release_registry.db.base import Base, build_engine
from release_registry.db import audit_models, models  # noqa: F401
from release_registry.db.index import MetadataIndex
from release_registry.ledger import InMemoryLedgerService, ReleaseLedgerClient
from release_registry.ledger.models import Release
from release_registry.notifications.email import EmailChannel, EmailPayload
from release_registry.storage import ArtifactStoreError, InMemoryArtifactStore, StagedArtifact


class RecordingEmailChannel(EmailChannel):
    """Collects payloads instead of sending them."""

    def __init__(self, fail_for: Optional[Set[str]] = None, delay: float = 0.0):
        self.sent: List[EmailPayload] = []
        self.fail_for = fail_for or set()
        self.delay = delay

    async def send(self, payload: EmailPayload) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if payload.recipient in self.fail_for:
            raise ConnectionError(f"SMTP refused {payload.recipient}")
        self.sent.append(payload)


class FlakyArtifactStore(InMemoryArtifactStore):
    """In-memory store that can be told to stall or fail specific operations."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_stage = False
        self.stage_delay: float = 0.0
        self.fail_delete_for: Set[Tuple[str, str]] = set()

    async def stage(self, package_id: str, version: str, content: bytes) -> StagedArtifact:
        if self.fail_stage:
            raise ArtifactStoreError("disk full")
        if self.stage_delay:
            await asyncio.sleep(self.stage_delay)
        return await super().stage(package_id, version, content)

    @property
    def staged_count(self) -> int:
        return len(self._staged)

    async def delete_version(self, package_id: str, version: str) -> None:
        if (package_id, version) in self.fail_delete_for:
            raise ArtifactStoreError(f"permission denied: {package_id}/{version}")
        await super().delete_version(package_id, version)


class ControllableLedgerService(InMemoryLedgerService):
    """In-memory ledger whose publish can hang, fail, or race."""

    def __init__(self, identity: str = "Org1MSP"):
        super().__init__(identity)
        self.publish_delay: float = 0.0
        self.publish_error: Optional[Exception] = None
        self.version_delays: Dict[str, float] = {}
        self.version_errors: Dict[str, Exception] = {}
        self.publish_calls: List[Tuple[str, str, str]] = []

    async def publish(self, package_id: str, version: str, file_hash: str) -> Release:
        self.publish_calls.append((package_id, version, file_hash))
        delay = self.version_delays.get(version, self.publish_delay)
        if delay:
            await asyncio.sleep(delay)
        error = self.version_errors.get(version, self.publish_error)
        if error is not None:
            raise error
        return await super().publish(package_id, version, file_hash)


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so worker threads get their own connections."""
    db_engine = build_engine(f"sqlite:///{tmp_path / 'registry.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def index(session_factory) -> MetadataIndex:
    return MetadataIndex(session_factory)


@pytest.fixture
def store() -> FlakyArtifactStore:
    return FlakyArtifactStore()


@pytest.fixture
def ledger_service() -> ControllableLedgerService:
    return ControllableLedgerService()


@pytest.fixture
def ledger(ledger_service) -> ReleaseLedgerClient:
    return ReleaseLedgerClient(ledger_service)


@pytest.fixture
def channel() -> RecordingEmailChannel:
    return RecordingEmailChannel()


@pytest.fixture
def notifier(index, channel) -> SubscriberNotifier:
    return SubscriberNotifier(index, channel, base_url="https://registry.test", timeout_seconds=1.0)


@pytest.fixture
def registrar(store, ledger, index, notifier) -> ReleaseRegistrar:
    return ReleaseRegistrar(
        store=store,
        ledger=ledger,
        index=index,
        notifier=notifier,
        artifact_timeout=1.0,
        ledger_timeout=0.2,
        index_timeout=2.0,
    )
