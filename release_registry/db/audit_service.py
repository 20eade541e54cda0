"""
Audit Log Service.

Records metadata-index state changes. Services call it after committing
their own change so that an entry never describes a write that was rolled
back.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from .audit_models import AuditLogModel


class AuditService:
    """Service for writing and querying audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.log_create("Package", pkg.package_id, pkg.to_dict(), actor_id="user-1")
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        actor_kind: str,
        actor_id: str,
        note: Optional[str],
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=str(uuid.uuid4()),
            ts=datetime.now(timezone.utc),
            actor_kind=actor_kind,
            actor_id=actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the creation of an entity."""
        return self._record(
            "created", entity_kind, entity_id, None, after, actor_kind, actor_id, note
        )

    def log_publish(
        self,
        package_id: str,
        version: str,
        after: Dict[str, Any],
        actor_kind: str = "user",
        actor_id: str = "unknown",
    ) -> AuditLogModel:
        """Log a release that the ledger accepted."""
        return self._record(
            "published",
            "Release",
            f"{package_id}:{version}",
            None,
            after,
            actor_kind,
            actor_id,
            f"Published {package_id}@{version}",
        )

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a status transition, e.g. ACTIVE -> DISCONTINUED."""
        return self._record(
            "status_changed",
            entity_kind,
            entity_id,
            {"status": old_status},
            {"status": new_status},
            actor_kind,
            actor_id,
            note or f"Status changed: {old_status} -> {new_status}",
        )

    def log_delete(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the deletion of an entity."""
        return self._record(
            "deleted", entity_kind, entity_id, before, None, actor_kind, actor_id, note
        )

    def get_entity_history(
        self, entity_kind: str, entity_id: str, limit: int = 100
    ) -> List[AuditLogModel]:
        """Get audit history for an entity, oldest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(AuditLogModel.ts)
            .limit(limit)
            .all()
        )

    def get_recent(
        self, action: Optional[str] = None, limit: int = 100
    ) -> List[AuditLogModel]:
        """Get the most recent entries, optionally filtered by action."""
        query = self.db.query(AuditLogModel)
        if action:
            query = query.filter(AuditLogModel.action == action)
        return query.order_by(desc(AuditLogModel.ts)).limit(limit).all()
