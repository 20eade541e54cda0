"""
Metadata index service layer.

Database operations for packages, version index rows, comments,
subscriptions and download logs. State changes that matter for forensics
(package creation and deletion, releases) go through the audit log.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from .audit_service import AuditService
from .models import (
    CommentModel,
    DownloadLogModel,
    PackageModel,
    PackageVersionModel,
    SubscriptionModel,
)


class PackageService:
    """Service for package ownership records."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def get(self, package_id: str) -> Optional[PackageModel]:
        """Get a package by id."""
        return (
            self.db.query(PackageModel)
            .filter(PackageModel.package_id == package_id)
            .first()
        )

    def list(self, limit: int = 50, offset: int = 0) -> List[PackageModel]:
        """List packages, newest first."""
        return (
            self.db.query(PackageModel)
            .order_by(desc(PackageModel.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_by_owner(self, owner_id: str) -> List[PackageModel]:
        return (
            self.db.query(PackageModel)
            .filter(PackageModel.owner_id == owner_id)
            .order_by(desc(PackageModel.created_at))
            .all()
        )

    def create(
        self,
        package_id: str,
        owner_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> PackageModel:
        """Create a package owned by ``owner_id``. Ownership never changes afterwards."""
        db_package = PackageModel(
            package_id=package_id,
            owner_id=owner_id,
            name=name or package_id,
            description=description,
        )
        self.db.add(db_package)
        self.db.commit()
        self.db.refresh(db_package)

        self.audit.log_create(
            entity_kind="Package",
            entity_id=package_id,
            after=db_package.to_dict(),
            actor_kind="user",
            actor_id=owner_id,
        )
        return db_package

    def update(
        self, package_id: str, name: str, description: Optional[str]
    ) -> Optional[PackageModel]:
        db_package = self.get(package_id)
        if db_package is None:
            return None
        db_package.name = name
        db_package.description = description
        self.db.commit()
        self.db.refresh(db_package)
        return db_package

    def is_owner(self, package_id: str, user_id: str) -> bool:
        db_package = self.get(package_id)
        return db_package is not None and db_package.owner_id == user_id

    def delete(
        self,
        package_id: str,
        actor_id: str = "system",
        actor_kind: str = "admin",
        note: str = "Package discontinued",
    ) -> bool:
        """Delete a package and its dependent metadata.

        Returns:
            False if the package did not exist
        """
        db_package = self.get(package_id)
        if db_package is None:
            return False

        before = db_package.to_dict()
        self.db.delete(db_package)
        self.db.commit()

        self.audit.log_delete(
            entity_kind="Package",
            entity_id=package_id,
            before=before,
            actor_kind=actor_kind,
            actor_id=actor_id,
            note=note,
        )
        return True


class PackageVersionService:
    """Service for the per-package version index."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def get(self, package_id: str, version: str) -> Optional[PackageVersionModel]:
        return (
            self.db.query(PackageVersionModel)
            .filter(
                PackageVersionModel.package_id == package_id,
                PackageVersionModel.version == version,
            )
            .first()
        )

    def record(
        self,
        package_id: str,
        version: str,
        content_hash: str,
        size: int,
        published_by: str,
    ) -> PackageVersionModel:
        """Index a version the ledger accepted. Re-recording is a no-op."""
        existing = self.get(package_id, version)
        if existing is not None:
            return existing

        row = PackageVersionModel(
            package_id=package_id,
            version=version,
            content_hash=content_hash,
            size=size,
            published_by=published_by,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)

        self.audit.log_publish(package_id, version, row.to_dict(), actor_id=published_by)
        return row

    def list_versions(self, package_id: str) -> List[str]:
        rows = (
            self.db.query(PackageVersionModel.version)
            .filter(PackageVersionModel.package_id == package_id)
            .order_by(PackageVersionModel.published_at)
            .all()
        )
        return [r.version for r in rows]


class CommentService:
    """Service for release comments and ratings."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        package_id: str,
        version: str,
        user_id: str,
        comment_text: str,
        rating: Optional[int] = None,
    ) -> CommentModel:
        comment = CommentModel(
            package_id=package_id,
            version=version,
            user_id=user_id,
            comment_text=comment_text,
            rating=rating,
        )
        self.db.add(comment)
        self.db.commit()
        self.db.refresh(comment)
        return comment

    def get(self, comment_id: str) -> Optional[CommentModel]:
        return self.db.query(CommentModel).filter(CommentModel.id == comment_id).first()

    def list_for_release(self, package_id: str, version: str) -> List[CommentModel]:
        return (
            self.db.query(CommentModel)
            .filter(
                CommentModel.package_id == package_id,
                CommentModel.version == version,
            )
            .order_by(desc(CommentModel.created_at))
            .all()
        )

    def update(
        self, comment_id: str, comment_text: str, rating: Optional[int] = None
    ) -> Optional[CommentModel]:
        comment = self.get(comment_id)
        if comment is None:
            return None
        comment.comment_text = comment_text
        comment.rating = rating
        self.db.commit()
        self.db.refresh(comment)
        return comment

    def delete(self, comment_id: str) -> bool:
        comment = self.get(comment_id)
        if comment is None:
            return False
        self.db.delete(comment)
        self.db.commit()
        return True

    def is_owner(self, comment_id: str, user_id: str) -> bool:
        comment = self.get(comment_id)
        return comment is not None and comment.user_id == user_id

    def average_rating(self, package_id: str, version: str) -> Optional[float]:
        """Average of non-null ratings, rounded to two places."""
        value = (
            self.db.query(func.avg(CommentModel.rating))
            .filter(
                CommentModel.package_id == package_id,
                CommentModel.version == version,
                CommentModel.rating.isnot(None),
            )
            .scalar()
        )
        return round(float(value), 2) if value is not None else None


class SubscriptionService:
    """Service for package subscriptions."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str, package_id: str) -> Optional[SubscriptionModel]:
        return (
            self.db.query(SubscriptionModel)
            .filter(
                SubscriptionModel.user_id == user_id,
                SubscriptionModel.package_id == package_id,
            )
            .first()
        )

    def subscribe(self, user_id: str, package_id: str, email: str) -> SubscriptionModel:
        """Subscribe a user. Subscribing twice refreshes the e-mail address."""
        subscription = self.get(user_id, package_id)
        if subscription is None:
            subscription = SubscriptionModel(
                user_id=user_id, package_id=package_id, email=email
            )
            self.db.add(subscription)
        else:
            subscription.email = email
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def unsubscribe(self, user_id: str, package_id: str) -> bool:
        subscription = self.get(user_id, package_id)
        if subscription is None:
            return False
        self.db.delete(subscription)
        self.db.commit()
        return True

    def is_subscribed(self, user_id: str, package_id: str) -> bool:
        return self.get(user_id, package_id) is not None

    def subscriber_emails(self, package_id: str) -> List[str]:
        rows = (
            self.db.query(SubscriptionModel.email)
            .filter(SubscriptionModel.package_id == package_id)
            .order_by(SubscriptionModel.subscribed_at)
            .all()
        )
        return [r.email for r in rows]

    def list_for_user(self, user_id: str) -> List[PackageModel]:
        return (
            self.db.query(PackageModel)
            .join(SubscriptionModel, SubscriptionModel.package_id == PackageModel.package_id)
            .filter(SubscriptionModel.user_id == user_id)
            .order_by(desc(SubscriptionModel.subscribed_at))
            .all()
        )


class DownloadLogService:
    """Service for download logging and counts."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        package_id: str,
        version: str,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> DownloadLogModel:
        entry = DownloadLogModel(
            package_id=package_id,
            version=version,
            user_id=user_id,
            ip_address=ip_address,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def count(self, package_id: str, version: Optional[str] = None) -> int:
        """Download count for a package, or for one release of it."""
        query = self.db.query(func.count(DownloadLogModel.id)).filter(
            DownloadLogModel.package_id == package_id
        )
        if version:
            query = query.filter(DownloadLogModel.version == version)
        return int(query.scalar() or 0)

    def recent(self, package_id: str, limit: int = 10) -> List[DownloadLogModel]:
        return (
            self.db.query(DownloadLogModel)
            .filter(DownloadLogModel.package_id == package_id)
            .order_by(desc(DownloadLogModel.downloaded_at))
            .limit(limit)
            .all()
        )

    def summary(self, package_id: str) -> Dict[str, Any]:
        rows = (
            self.db.query(DownloadLogModel.version, func.count(DownloadLogModel.id))
            .filter(DownloadLogModel.package_id == package_id)
            .group_by(DownloadLogModel.version)
            .all()
        )
        by_version = {version: int(n) for version, n in rows}
        return {"total": sum(by_version.values()), "by_version": by_version}
