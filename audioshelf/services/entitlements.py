# services/entitlements.py
"""Entitlements: the append-only record of who may access what, and why.

Both write paths lean on the table's unique constraints instead of
check-then-insert: a duplicate insert fails with IntegrityError and is turned
into "return the row that won". Retried or concurrent claims and redelivered
payment webhooks therefore all end with exactly one row.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.errors import ConflictError, NotEligible, ValidationError
from audioshelf.models import ContentItem, ContentStatus, Entitlement, EntitlementSource
from audioshelf.services.notifications import Notifier, get_notifier, notify

logger = logging.getLogger(__name__)


async def get_entitlement(db: AsyncSession, user_id: int, content_item_id: int) -> Optional[Entitlement]:
    q = (
        select(Entitlement)
        .where(Entitlement.user_id == user_id, Entitlement.content_item_id == content_item_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).scalars().first()


async def get_by_payment_reference(db: AsyncSession, payment_reference: str) -> Optional[Entitlement]:
    q = select(Entitlement).where(Entitlement.payment_reference == payment_reference)
    return (await db.execute(q)).scalars().first()


async def list_entitlements(db: AsyncSession, user_id: int) -> list[Entitlement]:
    q = (
        select(Entitlement)
        .where(Entitlement.user_id == user_id)
        .order_by(Entitlement.created_at.desc(), Entitlement.id.desc())
    )
    return list((await db.execute(q)).scalars().all())


async def _insert(db: AsyncSession, **fields: Any) -> Optional[Entitlement]:
    """Insert and commit; ``None`` when a unique constraint (or FK) refused the row."""
    ent = Entitlement(**fields)
    db.add(ent)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return None
    return ent


async def _is_claimable(db: AsyncSession, content_item_id: int) -> bool:
    # read the current row, not whatever the session may hold
    q = (
        select(ContentItem.is_free, ContentItem.status, ContentItem.archived_at)
        .where(ContentItem.id == content_item_id)
    )
    row = (await db.execute(q)).first()
    if row is None:
        return False
    is_free, status, archived_at = row
    return bool(is_free) and status == ContentStatus.approved and archived_at is None


async def claim_free(db: AsyncSession, user_id: int, content_item_id: int, *,
                     notifier: Optional[Notifier] = None) -> Entitlement:
    existing = await get_entitlement(db, user_id, content_item_id)
    if existing is not None:
        return existing

    if not await _is_claimable(db, content_item_id):
        raise NotEligible("This title is not available for free.")

    ent = await _insert(db, user_id=user_id, content_item_id=content_item_id, source=EntitlementSource.free)
    if ent is None:
        # lost the race against a concurrent claim
        winner = await get_entitlement(db, user_id, content_item_id)
        if winner is None:
            raise ConflictError("The claim could not be recorded. Please try again.")
        logger.info("claim_free: concurrent claim for user %s content %s resolved to %s",
                    user_id, content_item_id, winner.id)
        return winner

    logger.info("claim_free: user %s claimed content %s (entitlement %s)", user_id, content_item_id, ent.id)
    notifier = notifier or get_notifier()
    await notify(notifier.free_claimed, ent)
    return ent


def _check_reference_owner(ent: Entitlement, ref: str, user_id: int, content_item_id: int) -> None:
    if (ent.user_id, ent.content_item_id) != (user_id, content_item_id):
        logger.warning("grant_purchase: payment %s already recorded for user %s content %s",
                       ref, ent.user_id, ent.content_item_id)
        raise ConflictError(f"Payment {ref} is already recorded for another purchase.",
                            code="payment_reference_conflict")


async def grant_purchase(
    db: AsyncSession,
    user_id: int,
    content_item_id: int,
    payment_reference: Optional[str],
    *,
    source: Any = EntitlementSource.purchase,
) -> Entitlement:
    """Trusted path (payment webhook). Skips the free check; idempotent per payment and per owner."""
    ref = (payment_reference or "").strip()
    if not ref:
        raise ValidationError("payment_reference is required.", code="payment_reference_required")
    try:
        source = EntitlementSource(source)
    except ValueError as e:
        raise ValidationError(f"Unknown entitlement source: {source!r}", code="invalid_source") from e
    if source == EntitlementSource.free:
        raise ValidationError("Free entitlements are created by claiming.", code="invalid_source")

    by_ref = await get_by_payment_reference(db, ref)
    if by_ref is not None:
        _check_reference_owner(by_ref, ref, user_id, content_item_id)
        logger.info("grant_purchase: payment %s already processed (entitlement %s)", ref, by_ref.id)
        return by_ref

    if await db.get(ContentItem, content_item_id) is None:
        raise ValidationError(f"Unknown content item {content_item_id}.", code="unknown_content")

    owned = await get_entitlement(db, user_id, content_item_id)
    if owned is not None:
        logger.info("grant_purchase: user %s already owns content %s (entitlement %s)",
                    user_id, content_item_id, owned.id)
        return owned

    ent = await _insert(db, user_id=user_id, content_item_id=content_item_id, source=source,
                        payment_reference=ref)
    if ent is None:
        by_ref = await get_by_payment_reference(db, ref)
        if by_ref is not None:
            _check_reference_owner(by_ref, ref, user_id, content_item_id)
        winner = by_ref or await get_entitlement(db, user_id, content_item_id)
        if winner is None:
            raise ConflictError("The entitlement could not be recorded.")
        logger.info("grant_purchase: concurrent insert for payment %s resolved to %s", ref, winner.id)
        return winner

    logger.info("grant_purchase: entitlement %s created (%s, payment %s)", ent.id, source.value, ref)
    return ent


__all__ = [
    "get_entitlement",
    "get_by_payment_reference",
    "list_entitlements",
    "claim_free",
    "grant_purchase",
]
