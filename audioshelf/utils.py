import hmac
import logging
import os
import re
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from .services.access import Actor, actor_for, is_admin
from .services.notifications import Notifier, get_notifier
from .settings.config import settings
from .storage import ObjectStore, build_object_store
from .users import current_active_user, current_optional_user

logger = logging.getLogger(__name__)

_store: Optional[ObjectStore] = None


def get_store() -> ObjectStore:
    global _store
    if _store is None:
        _store = build_object_store(settings)
    return _store


def get_notifier_dep() -> Notifier:
    return get_notifier()


# Dependency for anonymous-friendly routes (public catalogue)
async def current_actor(user=Depends(current_optional_user)) -> Actor:
    return actor_for(user)


# Dependency to enforce authentication (any role)
async def require_actor(user=Depends(current_active_user)) -> Actor:
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return actor_for(user)


async def require_admin_actor(actor: Actor = Depends(require_actor)) -> Actor:
    if not is_admin(actor):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


async def require_webhook_secret(x_webhook_secret: Optional[str] = Header(default=None)) -> None:
    expected = (settings.PAYMENT_WEBHOOK_SECRET or "").strip()
    if not expected:
        logger.error("payment webhook called but PAYMENT_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Webhook not configured")
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")


def clean_filename(name: str) -> str:
    name = os.path.basename(name or "")
    return re.sub(r"[^\w\-_.]", "_", name)
