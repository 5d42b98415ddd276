# services/access.py
"""Read/write authorization for content items.

Four ways to read: the item is approved (and not archived), the actor holds an
entitlement for it, the actor created it, or the actor is an admin. Writing
needs creator or admin.

Each condition is its own predicate. ``has_entitlement`` looks only at the
entitlement table and ``is_admin`` only at the resolved role; neither ever goes
back through ``can_read``/``can_write`` or loads content through a gate, so
there is no path by which evaluating access can re-enter itself.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.errors import AuthorizationError
from audioshelf.models import ContentItem, ContentStatus, Entitlement, UserRole


@dataclass(frozen=True, slots=True)
class Actor:
    id: Optional[int]
    role: UserRole = UserRole.listener

    @property
    def is_anonymous(self) -> bool:
        return self.id is None


ANONYMOUS = Actor(id=None, role=UserRole.listener)


def actor_for(user) -> Actor:
    if user is None:
        return ANONYMOUS
    if getattr(user, "is_superuser", False):
        return Actor(id=user.id, role=UserRole.admin)
    role = getattr(user, "role", None) or UserRole.listener
    return Actor(id=user.id, role=UserRole(role))


# ---- predicates ----
def is_admin(actor: Actor) -> bool:
    return actor.role == UserRole.admin


def is_creator_of(actor: Actor, item: ContentItem) -> bool:
    return actor.id is not None and item.creator_id == actor.id


def is_publicly_visible(item: ContentItem) -> bool:
    return item.status == ContentStatus.approved and item.archived_at is None


async def has_entitlement(db: AsyncSession, user_id: Optional[int], content_item_id: int) -> bool:
    if user_id is None:
        return False
    q = (
        select(Entitlement.id)
        .where(Entitlement.user_id == user_id)
        .where(Entitlement.content_item_id == content_item_id)
        .limit(1)
    )
    return (await db.execute(q)).scalar_one_or_none() is not None


# ---- decisions ----
def can_create(actor: Actor) -> bool:
    return actor.role in (UserRole.creator, UserRole.admin)


def can_write(actor: Actor, item: ContentItem) -> bool:
    return is_admin(actor) or is_creator_of(actor, item)


async def can_read(db: AsyncSession, actor: Actor, item: ContentItem) -> bool:
    # cheapest first; the entitlement lookup is the only query
    if is_admin(actor) or is_creator_of(actor, item) or is_publicly_visible(item):
        return True
    return await has_entitlement(db, actor.id, item.id)


# ---- gates ----
async def _fetch(db: AsyncSession, content_item_id: int, *, for_update: bool = False) -> Optional[ContentItem]:
    q = select(ContentItem).where(ContentItem.id == content_item_id)
    if for_update:
        q = q.with_for_update()
    return (await db.execute(q)).scalars().first()


async def load_readable(db: AsyncSession, actor: Actor, content_item_id: int) -> ContentItem:
    item = await _fetch(db, content_item_id)
    if item is None or not await can_read(db, actor, item):
        raise AuthorizationError()
    return item


async def load_writable(db: AsyncSession, actor: Actor, content_item_id: int, *, for_update: bool = False) -> ContentItem:
    item = await _fetch(db, content_item_id, for_update=for_update)
    if item is None or not can_write(actor, item):
        raise AuthorizationError()
    return item


__all__ = [
    "Actor",
    "ANONYMOUS",
    "actor_for",
    "is_admin",
    "is_creator_of",
    "is_publicly_visible",
    "has_entitlement",
    "can_create",
    "can_read",
    "can_write",
    "load_readable",
    "load_writable",
]
