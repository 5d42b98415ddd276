"""baseline schema: users, content items, chapters, entitlements

Revision ID: a1c3e5f7b902
Revises: 
Create Date: 2026-10-17 09:12:40.118211

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c3e5f7b902"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum("listener", "creator", "admin", name="user_role")
content_type = sa.Enum("audiobook", "music", "podcast", name="content_type")
content_status = sa.Enum("draft", "submitted", "under_review", "approved", "rejected", name="content_status")
entitlement_source = sa.Enum("free", "purchase", "gift", name="entitlement_source")


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("username", sa.String(), nullable=True),
        sa.Column("hashed_password", sa.String(length=1024), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_superuser", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("role", user_role, nullable=False, server_default="listener"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_user_id", "user", ["id"])
    op.create_index("ix_user_email", "user", ["email"], unique=True)
    op.create_index("ix_user_username", "user", ["username"])

    op.create_table(
        "content_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("content_type", content_type, nullable=False, server_default="audiobook"),
        sa.Column("status", content_status, nullable=False, server_default="draft"),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("cover_path", sa.String(), nullable=True),
        sa.Column("chapter_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("price >= 0", name="ck_content_item_price_nonneg"),
    )
    op.create_index("ix_content_item_id", "content_item", ["id"])
    op.create_index("ix_content_item_creator_id", "content_item", ["creator_id"])
    op.create_index("ix_content_item_status", "content_item", ["status"])

    op.create_table(
        "chapter",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_item_id", sa.Integer(),
                  sa.ForeignKey("content_item.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chapter_index", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("storage_path", sa.String(), nullable=False, unique=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("file_size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("audio_format", sa.String(length=16), nullable=False),
        sa.Column("is_preview", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_chapter_id", "chapter", ["id"])
    op.create_index("ix_chapter_content_order", "chapter", ["content_item_id", "chapter_index"])

    op.create_table(
        "entitlement",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content_item_id", sa.Integer(),
                  sa.ForeignKey("content_item.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("source", entitlement_source, nullable=False),
        sa.Column("payment_reference", sa.String(length=255), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "content_item_id", name="uq_entitlement_user_content"),
    )
    op.create_index("ix_entitlement_id", "entitlement", ["id"])
    op.create_index("ix_entitlement_user_id", "entitlement", ["user_id"])
    op.create_index("ix_entitlement_content_item_id", "entitlement", ["content_item_id"])


def downgrade() -> None:
    op.drop_table("entitlement")
    op.drop_table("chapter")
    op.drop_table("content_item")
    op.drop_table("user")
    bind = op.get_bind()
    for enum in (entitlement_source, content_status, content_type, user_role):
        enum.drop(bind, checkfirst=True)
