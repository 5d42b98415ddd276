from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.database import get_db
from audioshelf.schemas import ChapterRead, ChapterUpdate, ContentRead
from audioshelf.services import uploads
from audioshelf.services.access import Actor
from audioshelf.storage import ObjectStore
from audioshelf.utils import get_store, require_actor

router = APIRouter(prefix="/chapters", tags=["chapters"])


@router.patch("/{chapter_id}", response_model=ChapterRead)
async def update_chapter(chapter_id: int, payload: ChapterUpdate, actor: Actor = Depends(require_actor),
                         db: AsyncSession = Depends(get_db)):
    return await uploads.update_chapter(db, actor, chapter_id, payload.model_dump(exclude_unset=True))


@router.delete("/{chapter_id}", response_model=ContentRead)
async def delete_chapter(chapter_id: int, actor: Actor = Depends(require_actor),
                         db: AsyncSession = Depends(get_db), store: ObjectStore = Depends(get_store)):
    return await uploads.delete_chapter(db, actor, chapter_id, store=store)


__all__ = ["router"]
