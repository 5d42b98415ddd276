# services/reorder.py
"""Chapter ordering.

Creators type an ordinal next to each chapter; the text can be blank, junk or
duplicated. Valid positive integers sort by value, everything else goes after
them in the order it was entered, ties keep their original position, and the
result is renumbered 1..N. Drag-and-drop uses the same path with the list
position as the ordinal.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.errors import ConflictError, ValidationError
from audioshelf.models import Chapter
from audioshelf.services import access
from audioshelf.services.access import Actor
from audioshelf.services.content import ensure_editable, fetch_chapters, recompute_aggregates

logger = logging.getLogger(__name__)

# larger than any realistic manual entry
INVALID_ORDINAL_SENTINEL = 9999

_DIGITS = re.compile(r"\+?[0-9]+")


def parse_ordinal(raw: object) -> Optional[int]:
    if raw is None:
        return None
    text = str(raw).strip()
    if not _DIGITS.fullmatch(text):
        return None
    value = int(text)
    return value if value > 0 else None


def compute_order(entries: Sequence[tuple[int, object]]) -> list[tuple[int, int]]:
    """Map ``(chapter_id, raw_ordinal)`` pairs, in their current order, to ``(chapter_id, new_index)``."""
    keyed: list[tuple[int, int, int]] = []
    invalid = 0
    for position, (chapter_id, raw) in enumerate(entries):
        ordinal = parse_ordinal(raw)
        if ordinal is None:
            ordinal = INVALID_ORDINAL_SENTINEL + invalid
            invalid += 1
        keyed.append((ordinal, position, chapter_id))
    # position as explicit secondary key; don't rely on sort stability
    keyed.sort(key=lambda k: (k[0], k[1]))
    return [(chapter_id, idx) for idx, (_, _, chapter_id) in enumerate(keyed, start=1)]


def _check_complete(chapters: Iterable[Chapter], ids: Iterable[int]) -> None:
    ids = list(ids)
    known = {c.id for c in chapters}
    if len(ids) != len(set(ids)) or set(ids) != known:
        raise ValidationError("The new order must list every chapter of this item exactly once.",
                              code="invalid_chapter_set")


async def _persist(db: AsyncSession, content_item_id: int, chapters: list[Chapter],
                   plan: list[tuple[int, int]]) -> list[Chapter]:
    by_id = {c.id: c for c in chapters}
    changed = 0
    try:
        for chapter_id, idx in plan:
            chapter = by_id[chapter_id]
            if chapter.chapter_index != idx:
                chapter.chapter_index = idx
                changed += 1
        await recompute_aggregates(db, content_item_id)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        current = await fetch_chapters(db, content_item_id)
        logger.warning("reorder of content %s failed; reloaded %d chapters", content_item_id, len(current))
        raise ConflictError("The chapter order changed while saving. The current order has been reloaded.",
                            code="reorder_conflict", current=current) from e
    logger.info("content %s reordered (%d chapter index(es) changed)", content_item_id, changed)
    return await fetch_chapters(db, content_item_id)


async def reorder(db: AsyncSession, actor: Actor, content_item_id: int,
                  chapter_order_inputs: Mapping[int, object]) -> list[Chapter]:
    """Apply typed ordinals (chapter id -> free text) and persist a clean 1..N order."""
    item = await access.load_writable(db, actor, content_item_id, for_update=True)
    chapters = await fetch_chapters(db, item.id)
    inputs = {int(k): v for k, v in (chapter_order_inputs or {}).items()}
    _check_complete(chapters, inputs.keys())
    ensure_editable(actor, item)
    plan = compute_order([(c.id, inputs[c.id]) for c in chapters])
    return await _persist(db, item.id, chapters, plan)


async def move_chapters(db: AsyncSession, actor: Actor, content_item_id: int,
                        ordered_ids: Sequence[int]) -> list[Chapter]:
    """Drag-and-drop: the list position is the new ordinal."""
    item = await access.load_writable(db, actor, content_item_id, for_update=True)
    chapters = await fetch_chapters(db, item.id)
    ordered_ids = [int(i) for i in ordered_ids or []]
    _check_complete(chapters, ordered_ids)
    ensure_editable(actor, item)
    plan = compute_order([(cid, pos) for pos, cid in enumerate(ordered_ids, start=1)])
    return await _persist(db, item.id, chapters, plan)


async def normalize_indices(db: AsyncSession, content_item_id: int) -> list[Chapter]:
    """Renumber by current order (NULL indices last). Caller owns the transaction."""
    chapters = await fetch_chapters(db, content_item_id)
    for idx, chapter in enumerate(chapters, start=1):
        if chapter.chapter_index != idx:
            chapter.chapter_index = idx
    await db.flush()
    return chapters


__all__ = [
    "INVALID_ORDINAL_SENTINEL",
    "parse_ordinal",
    "compute_order",
    "reorder",
    "move_chapters",
    "normalize_indices",
]
