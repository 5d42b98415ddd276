from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.database import get_db
from audioshelf.schemas import EntitlementRead
from audioshelf.services import entitlements
from audioshelf.services.access import Actor
from audioshelf.services.notifications import Notifier
from audioshelf.utils import get_notifier_dep, require_actor

router = APIRouter(tags=["library"])


@router.post("/content/{content_id}/claim", response_model=EntitlementRead)
async def claim_free_content(
    content_id: int,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier_dep),
):
    return await entitlements.claim_free(db, actor.id, content_id, notifier=notifier)


@router.get("/library", response_model=List[EntitlementRead])
async def my_library(actor: Actor = Depends(require_actor), db: AsyncSession = Depends(get_db)):
    return await entitlements.list_entitlements(db, actor.id)


__all__ = ["router"]
