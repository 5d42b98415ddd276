import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from audioshelf.database import get_db
from audioshelf.schemas import EntitlementRead, PaymentWebhookPayload
from audioshelf.services import entitlements
from audioshelf.utils import require_webhook_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payments", response_model=EntitlementRead, dependencies=[Depends(require_webhook_secret)])
async def payment_confirmed(payload: PaymentWebhookPayload, db: AsyncSession = Depends(get_db)):
    """Payment provider confirmation. Safe to redeliver: one entitlement per payment and per owner."""
    logger.info("payment webhook: payment %s for user %s content %s",
                payload.payment_reference, payload.user_id, payload.content_item_id)
    return await entitlements.grant_purchase(
        db,
        payload.user_id,
        payload.content_item_id,
        payload.payment_reference,
        source=payload.source,
    )


__all__ = ["router"]
