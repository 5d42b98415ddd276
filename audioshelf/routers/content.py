from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.database import get_db
from audioshelf.errors import ValidationError
from audioshelf.models import ContentType
from audioshelf.schemas import (
    ChapterRead, ContentCreate, ContentRead, ContentUpdate, DeleteResult,
    ManualOrderRequest, ReorderChaptersRequest,
)
from audioshelf.services import content as content_svc
from audioshelf.services import reorder as reorder_svc
from audioshelf.services import uploads
from audioshelf.services.access import Actor
from audioshelf.services.validation import ChapterMetadata
from audioshelf.settings.config import settings
from audioshelf.storage import ObjectStore
from audioshelf.utils import clean_filename, current_actor, get_store, require_actor

router = APIRouter(prefix="/content", tags=["content"])


async def _read_upload(file: UploadFile, limit: int) -> bytes:
    # refuse before buffering when the client told us the size
    if file.size is not None and file.size > limit:
        raise ValidationError(f"File is too large. Maximum size is {limit // (1024 * 1024)} MB.",
                              code="file_too_large")
    return await file.read()


@router.post("", response_model=ContentRead, status_code=201)
async def create_content(payload: ContentCreate, actor: Actor = Depends(require_actor),
                         db: AsyncSession = Depends(get_db)):
    return await content_svc.create_content(db, actor, **payload.model_dump())


@router.get("", response_model=List[ContentRead])
async def list_public_content(
    content_type: Optional[ContentType] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    return await content_svc.list_public(db, content_type=content_type, limit=limit, offset=offset)


@router.get("/mine", response_model=List[ContentRead])
async def list_my_content(actor: Actor = Depends(require_actor), db: AsyncSession = Depends(get_db)):
    return await content_svc.list_for_creator(db, actor)


@router.get("/{content_id}", response_model=ContentRead)
async def get_content(content_id: int, actor: Actor = Depends(current_actor), db: AsyncSession = Depends(get_db)):
    return await content_svc.get_content(db, actor, content_id)


@router.patch("/{content_id}", response_model=ContentRead)
async def update_content(content_id: int, payload: ContentUpdate, actor: Actor = Depends(require_actor),
                         db: AsyncSession = Depends(get_db)):
    return await content_svc.update_content(db, actor, content_id, payload.model_dump(exclude_unset=True))


@router.delete("/{content_id}", response_model=DeleteResult)
async def delete_content(content_id: int, actor: Actor = Depends(require_actor),
                         db: AsyncSession = Depends(get_db), store: ObjectStore = Depends(get_store)):
    outcome = await content_svc.delete_content(db, actor, content_id, store=store)
    return DeleteResult(id=content_id, outcome=outcome)


@router.post("/{content_id}/submit", response_model=ContentRead)
async def submit_content(content_id: int, actor: Actor = Depends(require_actor),
                         db: AsyncSession = Depends(get_db)):
    return await content_svc.submit(db, actor, content_id)


@router.post("/{content_id}/cover", response_model=ContentRead)
async def upload_cover(
    content_id: int,
    file: UploadFile = File(...),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_store),
):
    data = await _read_upload(file, settings.MAX_COVER_BYTES)
    return await uploads.upload_cover(db, actor, content_id, data, clean_filename(file.filename), store=store)


# ---------------------------
# Chapters of one item
# ---------------------------
@router.get("/{content_id}/chapters", response_model=List[ChapterRead])
async def list_chapters(content_id: int, actor: Actor = Depends(current_actor), db: AsyncSession = Depends(get_db)):
    return await content_svc.list_chapters(db, actor, content_id)


@router.post("/{content_id}/chapters", response_model=ChapterRead, status_code=201)
async def upload_chapter(
    content_id: int,
    file: UploadFile = File(...),
    title: str = Form(...),
    duration_seconds: Optional[int] = Form(default=None),
    is_preview: bool = Form(default=False),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
    store: ObjectStore = Depends(get_store),
):
    data = await _read_upload(file, settings.MAX_CHAPTER_BYTES)
    meta = ChapterMetadata(
        filename=clean_filename(file.filename),
        title=title,
        duration_seconds=duration_seconds,
        content_type=file.content_type,
        is_preview=is_preview,
    )
    return await uploads.upload_chapter(db, actor, content_id, data, meta, store=store)


@router.put("/{content_id}/chapters/order", response_model=List[ChapterRead])
async def save_manual_order(content_id: int, payload: ManualOrderRequest, actor: Actor = Depends(require_actor),
                            db: AsyncSession = Depends(get_db)):
    return await reorder_svc.reorder(db, actor, content_id, payload.order)


@router.patch("/{content_id}/chapters/reorder", response_model=List[ChapterRead])
async def reorder_chapters(content_id: int, payload: ReorderChaptersRequest, actor: Actor = Depends(require_actor),
                           db: AsyncSession = Depends(get_db)):
    return await reorder_svc.move_chapters(db, actor, content_id, payload.order)


__all__ = ["router"]
