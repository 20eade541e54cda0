"""
Async facade over the metadata index for the Registrar.

Each call opens its own session and runs the synchronous service code in a
worker thread, so the Registrar never blocks the event loop on the database
and holds no session between awaits.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..core.keys import ledger_key
from .audit_service import AuditService
from .services import (
    DownloadLogService,
    PackageService,
    PackageVersionService,
    SubscriptionService,
)

T = TypeVar("T")


@dataclass(frozen=True)
class PackageRecord:
    """Detached snapshot of a package row."""

    package_id: str
    owner_id: str
    name: str
    description: Optional[str]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageRecord":
        return cls(
            package_id=data["package_id"],
            owner_id=data["owner_id"],
            name=data["name"],
            description=data.get("description"),
        )


class MetadataIndex:
    """Session-per-call async access to package metadata."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _in_session(self, fn: Callable[[Session], T]) -> T:
        db = self.session_factory()
        try:
            return fn(db)
        finally:
            db.close()

    async def _run(self, fn: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._in_session, fn)

    async def get_package(self, package_id: str) -> Optional[PackageRecord]:
        def work(db: Session) -> Optional[PackageRecord]:
            pkg = PackageService(db).get(package_id)
            return PackageRecord.from_dict(pkg.to_dict()) if pkg else None

        return await self._run(work)

    async def ensure_package(
        self,
        package_id: str,
        owner_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tuple[PackageRecord, bool]:
        """Return the package, creating it for ``owner_id`` if absent.

        Returns:
            (record, created). When two callers race to create the same
            package the loser gets the winner's row with created=False.
        """

        def work(db: Session) -> Tuple[PackageRecord, bool]:
            service = PackageService(db)
            pkg = service.get(package_id)
            if pkg is not None:
                return PackageRecord.from_dict(pkg.to_dict()), False
            try:
                pkg = service.create(package_id, owner_id, name, description)
                return PackageRecord.from_dict(pkg.to_dict()), True
            except IntegrityError:
                db.rollback()
                pkg = service.get(package_id)
                if pkg is None:
                    raise
                return PackageRecord.from_dict(pkg.to_dict()), False

        return await self._run(work)

    async def delete_package(self, package_id: str, actor_id: str = "system") -> bool:
        actor_kind = "admin" if actor_id != "system" else "system"
        return await self._run(
            lambda db: PackageService(db).delete(package_id, actor_id, actor_kind=actor_kind)
        )

    async def record_version(
        self,
        package_id: str,
        version: str,
        content_hash: str,
        size: int,
        published_by: str,
    ) -> None:
        def work(db: Session) -> None:
            PackageVersionService(db).record(
                package_id, version, content_hash, size, published_by
            )

        await self._run(work)

    async def list_versions(self, package_id: str) -> List[str]:
        return await self._run(lambda db: PackageVersionService(db).list_versions(package_id))

    async def record_status_change(
        self,
        package_id: str,
        version: str,
        old_status: str,
        new_status: str,
        actor_id: str = "system",
    ) -> None:
        def work(db: Session) -> None:
            AuditService(db).log_status_change(
                entity_kind="Release",
                entity_id=ledger_key(package_id, version),
                old_status=old_status,
                new_status=new_status,
                actor_kind="admin" if actor_id != "system" else "system",
                actor_id=actor_id,
            )

        await self._run(work)

    async def subscriber_emails(self, package_id: str) -> List[str]:
        return await self._run(lambda db: SubscriptionService(db).subscriber_emails(package_id))

    async def record_download(
        self,
        package_id: str,
        version: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        def work(db: Session) -> None:
            DownloadLogService(db).record(package_id, version, user_id, ip_address)

        await self._run(work)

    async def download_count(self, package_id: str, version: Optional[str] = None) -> int:
        return await self._run(lambda db: DownloadLogService(db).count(package_id, version))
