"""
Audit Log Database Model.

Append-only trail of metadata-index state changes. The ledger keeps its own
history for release records; this table covers what happens around it:
package creation and removal, and the registry's view of release lifecycle.
"""

from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Enum, Index, String, Text
from sqlalchemy.sql import func

from .base import Base

audit_actor_kind_enum = Enum(
    "user",
    "admin",
    "system",
    name="audit_actor_kind",
)

audit_action_enum = Enum(
    "created",
    "published",
    "status_changed",
    "deleted",
    name="audit_action",
)


class AuditLogModel(Base):
    """One audit entry: who changed which entity, with before/after snapshots."""

    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True)
    ts = Column(DateTime(timezone=True), nullable=False, default=func.now(), index=True)

    actor_kind = Column(audit_actor_kind_enum, nullable=False)
    actor_id = Column(String(128), nullable=False, index=True)

    action = Column(audit_action_enum, nullable=False, index=True)

    # "Package" entities use package_id, "Release" entities use package_id:version
    entity_kind = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(320), nullable=False, index=True)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_kind", "entity_id"),
        Index("ix_audit_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "ts": self.ts.isoformat() if self.ts else None,
            "actor_kind": self.actor_kind,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
        }
