"""Create release registry tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "packages",
        sa.Column("package_id", sa.String(255), primary_key=True),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_packages_owner_id", "packages", ["owner_id"])

    op.create_table(
        "package_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "package_id",
            sa.String(255),
            sa.ForeignKey("packages.package_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.String(50), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("size", sa.BigInteger, nullable=False),
        sa.Column("published_by", sa.String(128), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("package_id", "version", name="uq_package_versions_key"),
    )
    op.create_index("ix_package_versions_package", "package_versions", ["package_id"])

    op.create_table(
        "comments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "package_id",
            sa.String(255),
            sa.ForeignKey("packages.package_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.String(50), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("comment_text", sa.Text, nullable=False),
        sa.Column("rating", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_comments_rating"
        ),
    )
    op.create_index("ix_comments_user_id", "comments", ["user_id"])
    op.create_index("ix_comments_package_version", "comments", ["package_id", "version"])
    op.create_index("ix_comments_created_at", "comments", ["created_at"])

    op.create_table(
        "subscriptions",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column(
            "package_id",
            sa.String(255),
            sa.ForeignKey("packages.package_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("subscribed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_subscriptions_package_id", "subscriptions", ["package_id"])

    op.create_table(
        "download_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "package_id",
            sa.String(255),
            sa.ForeignKey("packages.package_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.String(50), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("downloaded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_download_logs_user_id", "download_logs", ["user_id"])
    op.create_index(
        "ix_download_logs_package_version", "download_logs", ["package_id", "version"]
    )
    op.create_index("ix_download_logs_downloaded_at", "download_logs", ["downloaded_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ts",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "actor_kind",
            sa.Enum("user", "admin", "system", name="audit_actor_kind"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column(
            "action",
            sa.Enum("created", "published", "status_changed", "deleted", name="audit_action"),
            nullable=False,
        ),
        sa.Column("entity_kind", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(320), nullable=False),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
    )
    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity_kind", "audit_log", ["entity_kind"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index("ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("download_logs")
    op.drop_table("subscriptions")
    op.drop_table("comments")
    op.drop_table("package_versions")
    op.drop_table("packages")
    sa.Enum(name="audit_action").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="audit_actor_kind").drop(op.get_bind(), checkfirst=True)
