"""Notification hooks for review decisions and free claims.

The core only calls the :class:`Notifier` interface. Hooks must return quickly
and never raise into the caller: :func:`notify` logs any failure, and
:class:`EmailNotifier` hands the actual delivery to a supervised background
task.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy import select

from audioshelf.background import run_sync, spawn
from audioshelf.database import async_session_maker
from audioshelf.models import ContentItem, ContentStatus, Entitlement, User
from audioshelf.services.mailer import send_email
from audioshelf.settings.config import settings

logger = logging.getLogger(__name__)


class Notifier:
    async def content_status_changed(self, item: ContentItem, status: ContentStatus,
                                     reason: Optional[str] = None) -> None:
        raise NotImplementedError

    async def free_claimed(self, entitlement: Entitlement) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    async def content_status_changed(self, item, status, reason=None) -> None:
        logger.debug("content %s -> %s (notifications disabled)", item.id, status)

    async def free_claimed(self, entitlement) -> None:
        logger.debug("free claim %s (notifications disabled)", entitlement.id)


@dataclass(slots=True)
class _Message:
    to_email: str
    subject: str
    text_body: str


def _trim(value: str, *, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 1].rstrip() + "…"


def _display_name(user: User) -> str:
    return (user.username or user.email or "there").strip()


def render_status_message(recipient: User, title: str, content_id: int, status: ContentStatus,
                          reason: Optional[str], base_url: str) -> _Message:
    name = _display_name(recipient)
    title = _trim(title or "Untitled", limit=140)
    url = f"{base_url.rstrip('/')}/content/{content_id}"
    if status == ContentStatus.approved:
        subject = f"Published: {title}"
        body = f"{name},\n\n'{title}' was approved and is now live.\n\n{url}\n"
    else:
        subject = f"Changes needed: {title}"
        body = f"{name},\n\n'{title}' was not approved.\n"
        if reason:
            body += f"\nReason: {_trim(reason.strip(), limit=600)}\n"
        body += f"\nUpdate it and resubmit when ready: {url}\n"
    return _Message(to_email=recipient.email, subject=subject, text_body=body)


def render_claim_message(recipient: User, title: str, content_id: int, base_url: str) -> _Message:
    title = _trim(title or "Untitled", limit=140)
    url = f"{base_url.rstrip('/')}/content/{content_id}"
    body = f"{_display_name(recipient)},\n\n'{title}' was added to your library.\n\n{url}\n"
    return _Message(to_email=recipient.email, subject=f"Added to your library: {title}", text_body=body)


class EmailNotifier(Notifier):
    def __init__(self, session_maker=async_session_maker, base_url: Optional[str] = None):
        self.session_maker = session_maker
        self.base_url = base_url or settings.BASE_URL

    async def _load(self, user_id: int) -> Optional[User]:
        async with self.session_maker() as session:
            user = (await session.execute(select(User).where(User.id == user_id))).scalars().first()
        if not user or not user.is_active or not (user.email or "").strip():
            return None
        return user

    async def _deliver(self, msg: _Message) -> None:
        ok = await run_sync(send_email, msg.to_email, subject=msg.subject, text_body=msg.text_body)
        if not ok:
            logger.warning("notification to %s was not delivered", msg.to_email)

    async def _status_job(self, creator_id: int, title: str, content_id: int,
                          status: ContentStatus, reason: Optional[str]) -> None:
        recipient = await self._load(creator_id)
        if recipient is None:
            logger.debug("status notification: creator %s not reachable", creator_id)
            return
        await self._deliver(render_status_message(recipient, title, content_id, status, reason, self.base_url))

    async def _claim_job(self, user_id: int, content_id: int) -> None:
        recipient = await self._load(user_id)
        if recipient is None:
            return
        async with self.session_maker() as session:
            item = await session.get(ContentItem, content_id)
        if item is None:
            return
        await self._deliver(render_claim_message(recipient, item.title, content_id, self.base_url))

    async def content_status_changed(self, item, status, reason=None) -> None:
        spawn(
            self._status_job(item.creator_id, item.title, item.id, status, reason),
            name=f"notify_status_{item.id}",
        )

    async def free_claimed(self, entitlement) -> None:
        spawn(
            self._claim_job(entitlement.user_id, entitlement.content_item_id),
            name=f"notify_claim_{entitlement.id}",
        )


async def notify(hook: Callable[..., Awaitable[None]], *args, **kwargs) -> None:
    """Invoke a notifier hook; failures are logged, never propagated."""
    try:
        await hook(*args, **kwargs)
    except Exception:  # noqa: BLE001
        logger.exception("notifier hook %s failed", getattr(hook, "__name__", hook))


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier() if settings.NOTIFICATIONS_ENABLED else NullNotifier()
    return _notifier


__all__ = [
    "Notifier",
    "NullNotifier",
    "EmailNotifier",
    "notify",
    "get_notifier",
    "render_status_message",
    "render_claim_message",
]
