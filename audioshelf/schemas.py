from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional, Union

from fastapi_users import schemas as fu_schemas
from pydantic import BaseModel, ConfigDict, Field

from .models import ContentStatus, ContentType, EntitlementSource, UserRole


# =========================
# USER SCHEMAS
# =========================
class UserRead(fu_schemas.BaseUser[int]):
    username: Optional[str] = None
    role: UserRole = UserRole.listener


class UserCreate(fu_schemas.BaseUserCreate):
    username: Optional[str] = None
    # admins are promoted out of band, never self-registered
    role: Literal["listener", "creator"] = "listener"


class UserUpdate(fu_schemas.BaseUserUpdate):
    username: Optional[str] = None


# =========================
# CONTENT SCHEMAS
# =========================
class ContentCreate(BaseModel):
    title: str
    description: Optional[str] = None
    content_type: ContentType = ContentType.audiobook
    is_free: bool = False
    price: Decimal = Decimal("0")


class ContentUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    content_type: Optional[ContentType] = None
    is_free: Optional[bool] = None
    price: Optional[Decimal] = None


class ContentRead(BaseModel):
    id: int
    creator_id: int
    title: str
    description: Optional[str] = None
    content_type: ContentType
    status: ContentStatus
    is_free: bool
    price: Decimal
    cover_path: Optional[str] = None
    chapter_count: int
    total_duration_seconds: int
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeleteResult(BaseModel):
    id: int
    outcome: Literal["deleted", "archived"]


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


# =========================
# CHAPTER SCHEMAS
# =========================
class ChapterRead(BaseModel):
    id: int
    content_item_id: int
    chapter_index: Optional[int] = None
    title: str
    storage_path: str
    duration_seconds: int
    file_size_bytes: int
    audio_format: str
    is_preview: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ChapterUpdate(BaseModel):
    title: Optional[str] = None
    duration_seconds: Optional[int] = None
    is_preview: Optional[bool] = None


class ManualOrderRequest(BaseModel):
    # chapter id -> what the creator typed; blank or junk is allowed
    order: Dict[int, Union[str, int, None]]


class ReorderChaptersRequest(BaseModel):
    order: List[int]


# =========================
# ENTITLEMENT SCHEMAS
# =========================
class EntitlementRead(BaseModel):
    id: int
    user_id: int
    content_item_id: int
    source: EntitlementSource
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentWebhookPayload(BaseModel):
    user_id: int
    content_item_id: int
    payment_reference: str
    source: Literal["purchase", "gift"] = "purchase"
