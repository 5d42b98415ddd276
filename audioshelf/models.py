import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text,
    UniqueConstraint, event, func,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    listener = "listener"
    creator = "creator"
    admin = "admin"


class ContentType(str, enum.Enum):
    audiobook = "audiobook"
    music = "music"
    podcast = "podcast"


class ContentStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"


class EntitlementSource(str, enum.Enum):
    free = "free"
    purchase = "purchase"
    gift = "gift"


# ---------------------------
# USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, index=True, nullable=False)
    username = Column(String, index=True)
    hashed_password = Column(String(1024), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    role = Column(SAEnum(UserRole, name="user_role"), default=UserRole.listener, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    content_items = relationship("ContentItem", back_populates="creator", foreign_keys="ContentItem.creator_id")
    entitlements = relationship("Entitlement", back_populates="user", passive_deletes=True)


# ---------------------------
# CONTENT
# ---------------------------
class ContentItem(Base):
    __tablename__ = "content_item"

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("user.id", ondelete="RESTRICT"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    content_type = Column(SAEnum(ContentType, name="content_type"), default=ContentType.audiobook, nullable=False)
    status = Column(SAEnum(ContentStatus, name="content_status"), default=ContentStatus.draft, nullable=False, index=True)
    is_free = Column(Boolean, default=False, nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=False)
    cover_path = Column(String, nullable=True)

    # derived from live chapter rows, recomputed in the same unit of work as every chapter mutation
    chapter_count = Column(Integer, default=0, nullable=False)
    total_duration_seconds = Column(Integer, default=0, nullable=False)

    rejection_reason = Column(Text, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now())

    creator = relationship("User", back_populates="content_items", foreign_keys=[creator_id])
    chapters = relationship(
        "Chapter",
        back_populates="content_item",
        order_by="Chapter.chapter_index.asc(), Chapter.id.asc()",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_content_item_price_nonneg"),
    )

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def __repr__(self):
        return f"<ContentItem(id={self.id}, status={self.status}, creator_id={self.creator_id})>"


class Chapter(Base):
    __tablename__ = "chapter"

    id = Column(Integer, primary_key=True, index=True)
    content_item_id = Column(Integer, ForeignKey("content_item.id", ondelete="CASCADE"), nullable=False)
    chapter_index = Column(Integer, nullable=True)  # NULL only between insert and normalization
    title = Column(String(255), nullable=False)
    storage_path = Column(String, unique=True, nullable=False)
    duration_seconds = Column(Integer, default=0, nullable=False)
    file_size_bytes = Column(Integer, default=0, nullable=False)
    audio_format = Column(String(16), nullable=False)
    is_preview = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    content_item = relationship("ContentItem", back_populates="chapters")

    __table_args__ = (
        Index("ix_chapter_content_order", "content_item_id", "chapter_index"),
    )

    def __repr__(self):
        return f"<Chapter(id={self.id}, content_item_id={self.content_item_id}, index={self.chapter_index})>"


# ---------------------------
# ENTITLEMENTS (append-only)
# ---------------------------
class Entitlement(Base):
    __tablename__ = "entitlement"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    content_item_id = Column(Integer, ForeignKey("content_item.id", ondelete="RESTRICT"), nullable=False, index=True)
    source = Column(SAEnum(EntitlementSource, name="entitlement_source"), nullable=False)
    payment_reference = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    user = relationship("User", back_populates="entitlements")
    content_item = relationship("ContentItem")

    __table_args__ = (
        UniqueConstraint("user_id", "content_item_id", name="uq_entitlement_user_content"),
    )

    def __repr__(self):
        return f"<Entitlement(id={self.id}, user_id={self.user_id}, content_item_id={self.content_item_id}, source={self.source})>"


class ImmutableRowError(RuntimeError):
    pass


@event.listens_for(Entitlement, "before_update")
def entitlement_before_update(mapper, connection, target):
    raise ImmutableRowError(f"entitlement {target.id} is immutable")


@event.listens_for(Entitlement, "before_delete")
def entitlement_before_delete(mapper, connection, target):
    raise ImmutableRowError(f"entitlement {target.id} cannot be deleted")
