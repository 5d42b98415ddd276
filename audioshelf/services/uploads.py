# services/uploads.py
"""Chapter and cover uploads: binary first, row second.

There is no transaction spanning the object store and the database, so the
order of writes carries the consistency guarantee:

1. validate (nothing stored yet),
2. put the bytes at a fresh path,
3. insert/update the row and recompute the parent's aggregates, commit,
4. if step 3 fails or is cancelled, roll back and delete the blob best-effort,
   then re-raise the original error.

A row never points at a missing blob. The worst case is an orphaned blob.
Deletes run the other way round: row first, blob after commit.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.errors import AuthorizationError, ValidationError
from audioshelf.models import Chapter, ContentItem, ContentStatus
from audioshelf.services import access
from audioshelf.services.access import Actor
from audioshelf.services.content import ensure_editable, lock_content, recompute_aggregates
from audioshelf.services.reorder import normalize_indices
from audioshelf.services.validation import (
    ChapterMetadata, clean_title, validate_chapter_audio, validate_cover_image,
)
from audioshelf.settings.config import settings
from audioshelf.storage import ContentPathStrategy, ObjectStore, delete_quietly

logger = logging.getLogger(__name__)

PATHS = ContentPathStrategy(audio_bucket=settings.AUDIO_BUCKET, cover_bucket=settings.COVER_BUCKET)

AUDIO_MIME = {"mp3": "audio/mpeg", "m4a": "audio/mp4"}
IMAGE_MIME = {"jpg": "image/jpeg", "png": "image/png", "webp": "image/webp"}


async def _max_chapter_index(db: AsyncSession, content_item_id: int) -> int:
    res = await db.execute(select(func.max(Chapter.chapter_index)).where(Chapter.content_item_id == content_item_id))
    return int(res.scalar_one_or_none() or 0)


async def _compensate(db: AsyncSession, store: ObjectStore, path: str) -> None:
    try:
        await db.rollback()
    except Exception:  # noqa: BLE001
        logger.exception("rollback after failed write of %s also failed", path)
    logger.warning("row write failed; removing orphaned object %s", path)
    await delete_quietly(store, path)


async def _load_chapter_for_write(db: AsyncSession, actor: Actor, chapter_id: int) -> tuple[Chapter, ContentItem]:
    chapter = await db.get(Chapter, chapter_id)
    if chapter is None:
        raise AuthorizationError("Chapter not found")
    item = await access.load_writable(db, actor, chapter.content_item_id, for_update=True)
    return chapter, item


async def upload_chapter(
    db: AsyncSession,
    actor: Actor,
    content_item_id: int,
    file_bytes: bytes,
    metadata: ChapterMetadata,
    *,
    store: ObjectStore,
    paths: Optional[ContentPathStrategy] = None,
) -> Chapter:
    paths = paths or PATHS
    item = await access.load_writable(db, actor, content_item_id)

    # 1) validate before touching storage
    title = clean_title(metadata.title)
    check = validate_chapter_audio(file_bytes, metadata)
    ensure_editable(actor, item)

    # 2) blob
    path = paths.chapter_path(item.creator_id, item.id, check.extension)
    await store.put(path, file_bytes, content_type=AUDIO_MIME.get(check.extension))
    logger.info("stored chapter audio %s (%d bytes) for content %s", path, check.size_bytes, item.id)

    # 3) row + aggregates in one unit of work
    try:
        if await lock_content(db, item.id) is None:
            raise AuthorizationError()
        chapter = Chapter(
            content_item_id=item.id,
            chapter_index=await _max_chapter_index(db, item.id) + 1,
            title=title,
            storage_path=path,
            duration_seconds=check.duration_seconds,
            file_size_bytes=check.size_bytes,
            audio_format=check.extension,
            is_preview=bool(metadata.is_preview),
        )
        db.add(chapter)
        await recompute_aggregates(db, item.id)
        await db.commit()
    except BaseException:
        # 4) includes cancellation; the original error is re-raised untouched
        await _compensate(db, store, path)
        raise

    logger.info("chapter %s added to content %s at index %s", chapter.id, item.id, chapter.chapter_index)
    return chapter


async def upload_cover(
    db: AsyncSession,
    actor: Actor,
    content_item_id: int,
    file_bytes: bytes,
    filename: str,
    *,
    store: ObjectStore,
    paths: Optional[ContentPathStrategy] = None,
) -> ContentItem:
    paths = paths or PATHS
    item = await access.load_writable(db, actor, content_item_id)
    ext = validate_cover_image(file_bytes, filename)
    ensure_editable(actor, item)

    path = paths.cover_path(item.id, ext)
    await store.put(path, file_bytes, content_type=IMAGE_MIME.get(ext))
    try:
        locked = await lock_content(db, content_item_id)
        if locked is None:
            raise AuthorizationError()
        previous = locked.cover_path
        locked.cover_path = path
        await db.commit()
    except BaseException:
        await _compensate(db, store, path)
        raise

    if previous and previous != path:
        await delete_quietly(store, previous)
    logger.info("cover for content %s stored at %s", content_item_id, path)
    return locked


async def update_chapter(db: AsyncSession, actor: Actor, chapter_id: int, changes: dict) -> Chapter:
    chapter, item = await _load_chapter_for_write(db, actor, chapter_id)
    changes = changes or {}
    if not any(k in changes for k in ("title", "duration_seconds", "is_preview")):
        return chapter
    ensure_editable(actor, item)
    if "title" in changes:
        chapter.title = clean_title(changes["title"])
    if "duration_seconds" in changes:
        try:
            duration = int(changes["duration_seconds"])
        except (TypeError, ValueError) as e:
            raise ValidationError("Duration must be a whole number of seconds.", code="invalid_duration") from e
        if duration < 0 or duration > settings.MAX_CHAPTER_SECONDS:
            raise ValidationError(
                f"Duration must be between 0 and {settings.MAX_CHAPTER_SECONDS} seconds.",
                code="invalid_duration",
            )
        chapter.duration_seconds = duration
    if "is_preview" in changes:
        chapter.is_preview = bool(changes["is_preview"])
    await recompute_aggregates(db, item.id)
    await db.commit()
    return chapter


async def delete_chapter(db: AsyncSession, actor: Actor, chapter_id: int, *, store: ObjectStore) -> ContentItem:
    chapter, item = await _load_chapter_for_write(db, actor, chapter_id)
    ensure_editable(actor, item)
    path = chapter.storage_path

    await db.delete(chapter)
    await db.flush()
    await normalize_indices(db, item.id)
    item = await recompute_aggregates(db, item.id)
    if item.chapter_count == 0 and item.status == ContentStatus.submitted:
        # nothing left to review
        item.status = ContentStatus.draft
    await db.commit()

    # row is gone; the blob follows best-effort
    await delete_quietly(store, path)
    logger.info("chapter %s removed from content %s", chapter_id, item.id)
    return item


__all__ = [
    "PATHS",
    "upload_chapter",
    "upload_cover",
    "update_chapter",
    "delete_chapter",
]
