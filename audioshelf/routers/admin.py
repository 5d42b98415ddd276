from typing import List

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.database import get_db
from audioshelf.schemas import ContentRead, RejectRequest
from audioshelf.services import content as content_svc
from audioshelf.services.access import Actor
from audioshelf.services.notifications import Notifier
from audioshelf.utils import get_notifier_dep, require_admin_actor

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/review-queue", response_model=List[ContentRead])
async def review_queue(admin: Actor = Depends(require_admin_actor), db: AsyncSession = Depends(get_db)):
    return await content_svc.list_for_review(db, admin)


@router.post("/content/{content_id}/start-review", response_model=ContentRead)
async def start_review(content_id: int, admin: Actor = Depends(require_admin_actor),
                       db: AsyncSession = Depends(get_db)):
    return await content_svc.start_review(db, admin, content_id)


@router.post("/content/{content_id}/approve", response_model=ContentRead)
async def approve_content(
    content_id: int,
    admin: Actor = Depends(require_admin_actor),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier_dep),
):
    return await content_svc.approve(db, admin, content_id, notifier=notifier)


@router.post("/content/{content_id}/reject", response_model=ContentRead)
async def reject_content(
    content_id: int,
    payload: RejectRequest = Body(default_factory=RejectRequest),
    admin: Actor = Depends(require_admin_actor),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier_dep),
):
    return await content_svc.reject(db, admin, content_id, payload.reason, notifier=notifier)


__all__ = ["router"]
