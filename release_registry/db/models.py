"""
SQLAlchemy models for the release metadata index.

The ledger is the record of truth for release hashes and status. These
tables hold ownership and user-facing metadata, keyed by package_id or
(package_id, version).
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Any) -> Any:
    return value.isoformat() if value else None


class PackageModel(Base):
    """Package ownership record, created lazily on first publish."""

    __tablename__ = "packages"

    package_id = Column(String(255), primary_key=True)
    owner_id = Column(String(128), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utc_now, onupdate=_utc_now
    )

    # Deleting a package removes its metadata only; ledger history is untouched.
    versions = relationship(
        "PackageVersionModel", back_populates="package", cascade="all, delete-orphan"
    )
    comments = relationship("CommentModel", cascade="all, delete-orphan")
    subscriptions = relationship("SubscriptionModel", cascade="all, delete-orphan")
    downloads = relationship("DownloadLogModel", cascade="all, delete-orphan")

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "package_id": self.package_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class PackageVersionModel(Base):
    """Index of versions published under a package.

    The ledger offers no range query, so this table is how the registry
    enumerates the versions of a package.
    """

    __tablename__ = "package_versions"

    id = Column(String(36), primary_key=True, default=_new_id)
    package_id = Column(
        String(255),
        ForeignKey("packages.package_id", ondelete="CASCADE"),
        nullable=False,
    )
    version = Column(String(50), nullable=False)
    content_hash = Column(String(64), nullable=False)
    size = Column(BigInteger, nullable=False)
    published_by = Column(String(128), nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    package = relationship("PackageModel", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("package_id", "version", name="uq_package_versions_key"),
        Index("ix_package_versions_package", "package_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_id": self.package_id,
            "version": self.version,
            "content_hash": self.content_hash,
            "size": self.size,
            "published_by": self.published_by,
            "published_at": _iso(self.published_at),
        }


class CommentModel(Base):
    """User comment and optional 1-5 rating on a release."""

    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=_new_id)
    package_id = Column(
        String(255),
        ForeignKey("packages.package_id", ondelete="CASCADE"),
        nullable=False,
    )
    version = Column(String(50), nullable=False)
    user_id = Column(String(128), nullable=False, index=True)
    comment_text = Column(Text, nullable=False)
    rating = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utc_now, onupdate=_utc_now
    )

    __table_args__ = (
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_comments_rating"),
        Index("ix_comments_package_version", "package_id", "version"),
        Index("ix_comments_created_at", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "package_id": self.package_id,
            "version": self.version,
            "user_id": self.user_id,
            "comment_text": self.comment_text,
            "rating": self.rating,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class SubscriptionModel(Base):
    """A subscriber's interest in notifications for a package."""

    __tablename__ = "subscriptions"

    user_id = Column(String(128), primary_key=True)
    package_id = Column(
        String(255),
        ForeignKey("packages.package_id", ondelete="CASCADE"),
        primary_key=True,
    )
    email = Column(String(255), nullable=False)
    subscribed_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    __table_args__ = (Index("ix_subscriptions_package_id", "package_id"),)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "package_id": self.package_id,
            "email": self.email,
            "subscribed_at": _iso(self.subscribed_at),
        }


class DownloadLogModel(Base):
    """One successful artifact download."""

    __tablename__ = "download_logs"

    id = Column(String(36), primary_key=True, default=_new_id)
    package_id = Column(
        String(255),
        ForeignKey("packages.package_id", ondelete="CASCADE"),
        nullable=False,
    )
    version = Column(String(50), nullable=False)
    user_id = Column(String(128), nullable=True, index=True)
    ip_address = Column(String(45), nullable=True)
    downloaded_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    __table_args__ = (
        Index("ix_download_logs_package_version", "package_id", "version"),
        Index("ix_download_logs_downloaded_at", "downloaded_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "package_id": self.package_id,
            "version": self.version,
            "user_id": self.user_id,
            "ip_address": self.ip_address,
            "downloaded_at": _iso(self.downloaded_at),
        }
