# services/content.py
"""Content items: creation, edits, listing, deletion and the review lifecycle.

Lifecycle::

    draft ──► submitted ──► under_review ──► approved
                 ▲   │            │             │
                 │   └────────────┴──► rejected │
                 └─────────── resubmit ◄────────┘ (rejected or approved)

Submitting needs at least one chapter. Review moves are admin-only and every
move into approved/rejected goes out to the notifier. Entitlements are never
touched by status changes.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.errors import AuthorizationError, InvalidTransition, ValidationError
from audioshelf.models import Chapter, ContentItem, ContentStatus, ContentType, Entitlement
from audioshelf.services import access
from audioshelf.services.access import Actor
from audioshelf.services.notifications import Notifier, get_notifier, notify
from audioshelf.services.validation import clean_title
from audioshelf.storage import ObjectStore, delete_quietly

logger = logging.getLogger(__name__)

# target status -> statuses it may be entered from
TRANSITIONS: dict[ContentStatus, set[ContentStatus]] = {
    ContentStatus.submitted: {ContentStatus.draft, ContentStatus.rejected, ContentStatus.approved},
    ContentStatus.under_review: {ContentStatus.submitted},
    ContentStatus.approved: {ContentStatus.submitted, ContentStatus.under_review},
    ContentStatus.rejected: {ContentStatus.submitted, ContentStatus.under_review},
}
CREATOR_EDITABLE = {ContentStatus.draft, ContentStatus.rejected}
EDITABLE_FIELDS = ("title", "description", "content_type", "is_free", "price")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_price(raw: Any) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("Price must be a number.", code="invalid_price") from e
    if not value.is_finite() or value < 0:
        raise ValidationError("Price cannot be negative.", code="invalid_price")
    return value.quantize(Decimal("0.01"))


def _content_type(raw: Any) -> ContentType:
    try:
        return ContentType(raw)
    except ValueError as e:
        raise ValidationError(f"Unknown content type: {raw!r}", code="invalid_content_type") from e


# ---------------------------
# Repository helpers
# ---------------------------
async def lock_content(db: AsyncSession, content_item_id: int) -> Optional[ContentItem]:
    """Row-lock the item for the rest of the transaction (single writer per item)."""
    q = select(ContentItem).where(ContentItem.id == content_item_id).with_for_update()
    return (await db.execute(q)).scalars().first()


async def fetch_chapters(db: AsyncSession, content_item_id: int) -> list[Chapter]:
    q = (
        select(Chapter)
        .where(Chapter.content_item_id == content_item_id)
        .order_by(Chapter.chapter_index.is_(None), Chapter.chapter_index.asc(), Chapter.id.asc())
    )
    return list((await db.execute(q)).scalars().all())


async def recompute_aggregates(db: AsyncSession, content_item_id: int) -> ContentItem:
    """Set chapter_count / total_duration_seconds from the live chapter rows."""
    await db.flush()
    count, total = (
        await db.execute(
            select(func.count(Chapter.id), func.coalesce(func.sum(Chapter.duration_seconds), 0))
            .where(Chapter.content_item_id == content_item_id)
        )
    ).one()
    item = await db.get(ContentItem, content_item_id)
    item.chapter_count = int(count or 0)
    item.total_duration_seconds = int(total or 0)
    await db.flush()
    return item


async def has_entitlements(db: AsyncSession, content_item_id: int) -> bool:
    q = select(Entitlement.id).where(Entitlement.content_item_id == content_item_id).limit(1)
    return (await db.execute(q)).scalar_one_or_none() is not None


def ensure_editable(actor: Actor, item: ContentItem) -> None:
    """Creator edits are limited by status; an approved item re-enters review."""
    if access.is_admin(actor):
        return
    if item.archived_at is not None:
        raise InvalidTransition("Archived content can no longer be edited.", code="archived")
    if item.status in CREATOR_EDITABLE:
        return
    if item.status == ContentStatus.approved:
        # post-publish correction starts a new submission cycle
        item.status = ContentStatus.submitted
        item.submitted_at = _now()
        logger.info("content %s re-entered review after creator edit", item.id)
        return
    raise InvalidTransition("Content is awaiting review and cannot be edited right now.", code="in_review")


# ---------------------------
# Create / read
# ---------------------------
async def create_content(
    db: AsyncSession,
    actor: Actor,
    *,
    title: str,
    description: Optional[str] = None,
    content_type: Any = ContentType.audiobook,
    is_free: bool = False,
    price: Any = 0,
) -> ContentItem:
    if not access.can_create(actor):
        raise AuthorizationError("Only creators can publish content", code="forbidden")
    item = ContentItem(
        creator_id=actor.id,
        title=clean_title(title),
        description=(description or "").strip() or None,
        content_type=_content_type(content_type),
        status=ContentStatus.draft,
        is_free=bool(is_free),
        price=parse_price(price),
        chapter_count=0,
        total_duration_seconds=0,
    )
    db.add(item)
    await db.commit()
    logger.info("content %s created by user %s", item.id, actor.id)
    return item


async def get_content(db: AsyncSession, actor: Actor, content_item_id: int) -> ContentItem:
    return await access.load_readable(db, actor, content_item_id)


async def list_chapters(db: AsyncSession, actor: Actor, content_item_id: int) -> list[Chapter]:
    await access.load_readable(db, actor, content_item_id)
    return await fetch_chapters(db, content_item_id)


async def list_public(
    db: AsyncSession,
    *,
    content_type: Optional[ContentType] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ContentItem]:
    q = (
        select(ContentItem)
        .where(ContentItem.status == ContentStatus.approved)
        .where(ContentItem.archived_at.is_(None))
    )
    if content_type is not None:
        q = q.where(ContentItem.content_type == content_type)
    q = q.order_by(ContentItem.created_at.desc(), ContentItem.id.desc()).limit(max(1, min(limit, 200))).offset(max(0, offset))
    return list((await db.execute(q)).scalars().all())


async def list_for_creator(db: AsyncSession, actor: Actor) -> list[ContentItem]:
    if actor.id is None:
        return []
    q = select(ContentItem).where(ContentItem.creator_id == actor.id).order_by(ContentItem.id.desc())
    return list((await db.execute(q)).scalars().all())


async def list_for_review(db: AsyncSession, actor: Actor) -> list[ContentItem]:
    if not access.is_admin(actor):
        raise AuthorizationError("Admin access required", code="forbidden")
    q = (
        select(ContentItem)
        .where(ContentItem.status.in_([ContentStatus.submitted, ContentStatus.under_review]))
        .where(ContentItem.archived_at.is_(None))
        .order_by(ContentItem.submitted_at.asc(), ContentItem.id.asc())
    )
    return list((await db.execute(q)).scalars().all())


# ---------------------------
# Update / delete
# ---------------------------
async def update_content(db: AsyncSession, actor: Actor, content_item_id: int, changes: dict) -> ContentItem:
    item = await access.load_writable(db, actor, content_item_id, for_update=True)
    updates = {k: v for k, v in (changes or {}).items() if k in EDITABLE_FIELDS}
    if not updates:
        return item
    ensure_editable(actor, item)
    if "title" in updates:
        item.title = clean_title(updates["title"])
    if "description" in updates:
        item.description = (updates["description"] or "").strip() or None
    if "content_type" in updates:
        item.content_type = _content_type(updates["content_type"])
    if "is_free" in updates:
        item.is_free = bool(updates["is_free"])
    if "price" in updates:
        item.price = parse_price(updates["price"])
    await db.commit()
    return item


async def delete_content(db: AsyncSession, actor: Actor, content_item_id: int, *, store: ObjectStore) -> str:
    """Hard-delete when nobody holds an entitlement, otherwise archive. Returns which."""
    item = await access.load_writable(db, actor, content_item_id, for_update=True)
    if await has_entitlements(db, item.id):
        return await _archive(db, item)

    paths = [c.storage_path for c in await fetch_chapters(db, item.id)]
    if item.cover_path:
        paths.append(item.cover_path)
    try:
        await db.execute(delete(Chapter).where(Chapter.content_item_id == item.id))
        await db.execute(delete(ContentItem).where(ContentItem.id == item.id))
        await db.commit()
    except IntegrityError:
        # an entitlement landed after the check; the FK refuses the delete
        await db.rollback()
        item = await db.get(ContentItem, content_item_id)
        return await _archive(db, item)

    # rows are gone; blobs follow, best effort
    for path in paths:
        await delete_quietly(store, path)
    logger.info("content %s deleted with %d object(s)", content_item_id, len(paths))
    return "deleted"


async def _archive(db: AsyncSession, item: ContentItem) -> str:
    if item.archived_at is None:
        item.archived_at = _now()
    await db.commit()
    logger.info("content %s archived (entitlements exist)", item.id)
    return "archived"


# ---------------------------
# Lifecycle
# ---------------------------
def _check_transition(item: ContentItem, target: ContentStatus) -> None:
    if item.status not in TRANSITIONS[target]:
        raise InvalidTransition(
            f"Cannot move content from {item.status.value} to {target.value}.",
        )


async def submit(db: AsyncSession, actor: Actor, content_item_id: int) -> ContentItem:
    item = await access.load_writable(db, actor, content_item_id, for_update=True)
    if item.archived_at is not None:
        raise InvalidTransition("Archived content cannot be submitted.", code="archived")
    _check_transition(item, ContentStatus.submitted)
    if (item.chapter_count or 0) < 1:
        raise ValidationError("Add at least one chapter before submitting for review.", code="no_chapters")
    item.status = ContentStatus.submitted
    item.submitted_at = _now()
    item.rejection_reason = None
    await db.commit()
    logger.info("content %s submitted by user %s", item.id, actor.id)
    return item


async def _review(db: AsyncSession, actor: Actor, content_item_id: int, target: ContentStatus,
                  reason: Optional[str] = None) -> ContentItem:
    if not access.is_admin(actor):
        raise AuthorizationError("Admin access required", code="forbidden")
    item = await access.load_writable(db, actor, content_item_id, for_update=True)
    _check_transition(item, target)
    item.status = target
    if target in (ContentStatus.approved, ContentStatus.rejected):
        item.reviewed_by = actor.id
        item.reviewed_at = _now()
        if target == ContentStatus.rejected:
            item.rejection_reason = (reason or "").strip() or None
        else:
            item.rejection_reason = None
    await db.commit()
    logger.info("content %s -> %s by admin %s", item.id, target.value, actor.id)
    return item


async def start_review(db: AsyncSession, actor: Actor, content_item_id: int) -> ContentItem:
    return await _review(db, actor, content_item_id, ContentStatus.under_review)


async def approve(db: AsyncSession, actor: Actor, content_item_id: int, *,
                  notifier: Optional[Notifier] = None) -> ContentItem:
    item = await _review(db, actor, content_item_id, ContentStatus.approved)
    notifier = notifier or get_notifier()
    await notify(notifier.content_status_changed, item, ContentStatus.approved, None)
    return item


async def reject(db: AsyncSession, actor: Actor, content_item_id: int, reason: Optional[str] = None, *,
                 notifier: Optional[Notifier] = None) -> ContentItem:
    item = await _review(db, actor, content_item_id, ContentStatus.rejected, reason)
    notifier = notifier or get_notifier()
    await notify(notifier.content_status_changed, item, ContentStatus.rejected, item.rejection_reason)
    return item


__all__ = [
    "TRANSITIONS",
    "parse_price",
    "lock_content",
    "fetch_chapters",
    "recompute_aggregates",
    "has_entitlements",
    "ensure_editable",
    "create_content",
    "get_content",
    "list_chapters",
    "list_public",
    "list_for_creator",
    "list_for_review",
    "update_content",
    "delete_content",
    "submit",
    "start_review",
    "approve",
    "reject",
]
