import asyncio
from datetime import datetime, timezone
import os
import tempfile

# settings are read at import time
_TMP = tempfile.mkdtemp(prefix="audioshelf-tests-")
os.environ.setdefault("SECRET", "test-secret-do-not-use-in-production")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/app.db"
os.environ["EMAIL_TRANSPORT"] = "dummy"
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["STORAGE_ROOT"] = os.path.join(_TMP, "storage")
os.environ.pop("PAYMENT_WEBHOOK_SECRET", None)
os.environ.pop("ADMIN_EMAIL", None)

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from audioshelf.database import Base
from audioshelf.errors import StorageError
from audioshelf.models import Chapter, ContentItem, ContentStatus, User, UserRole
from audioshelf.services.access import Actor
from audioshelf.services.notifications import Notifier
from audioshelf.storage import ObjectStore


class FakeStore(ObjectStore):
    """In-memory object store with failure injection."""

    def __init__(self, *, fail_put=False, fail_delete=False):
        self.objects = {}
        self.fail_put = fail_put
        self.fail_delete = fail_delete
        self.puts = []
        self.deletes = []

    async def put(self, path, data, *, content_type=None):
        self.puts.append(path)
        if self.fail_put:
            raise StorageError(f"injected put failure for {path}")
        self.objects[path] = bytes(data)

    async def delete(self, path):
        self.deletes.append(path)
        if self.fail_delete:
            raise StorageError(f"injected delete failure for {path}")
        self.objects.pop(path, None)

    async def exists(self, path):
        return path in self.objects


class RecordingNotifier(Notifier):
    def __init__(self):
        self.status_changes = []
        self.claims = []

    async def content_status_changed(self, item, status, reason=None):
        self.status_changes.append((item.id, status, reason))

    async def free_claimed(self, entitlement):
        self.claims.append(entitlement.id)


class ExplodingNotifier(Notifier):
    async def content_status_changed(self, item, status, reason=None):
        raise RuntimeError("mail server on fire")

    async def free_claimed(self, entitlement):
        raise RuntimeError("mail server on fire")


class Harness:
    """Runs a coroutine against a throwaway sqlite database."""

    def __init__(self, url):
        self.url = url

    def engine(self):
        return create_async_engine(self.url, poolclass=NullPool)

    def run(self, fn):
        async def _main():
            engine = self.engine()
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
            try:
                return await fn(maker)
            finally:
                await engine.dispose()

        return asyncio.run(_main())


@pytest.fixture
def harness(tmp_path):
    return Harness(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


# ---- seed helpers ----
async def make_user(session, role=UserRole.listener, *, email=None, superuser=False):
    n = (await session.execute(User.__table__.select())).all()
    user = User(
        email=email or f"user{len(n) + 1}@example.com",
        username=f"user{len(n) + 1}",
        hashed_password="x",
        role=role,
        is_superuser=superuser,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    return user


def actor(user):
    return Actor(id=user.id, role=user.role)


async def make_item(session, creator, *, status=ContentStatus.draft, is_free=False, title="A Book",
                    archived=False):
    item = ContentItem(
        creator_id=creator.id,
        title=title,
        status=status,
        is_free=is_free,
        price=0,
        chapter_count=0,
        total_duration_seconds=0,
        archived_at=datetime.now(timezone.utc) if archived else None,
    )
    session.add(item)
    await session.commit()
    return item


async def add_chapter(session, item, index, *, duration=60, title=None):
    chapter = Chapter(
        content_item_id=item.id,
        chapter_index=index,
        title=title or f"Chapter {index}",
        storage_path=f"audio/{item.creator_id}/{item.id}/{index}-seed.mp3",
        duration_seconds=duration,
        file_size_bytes=10,
        audio_format="mp3",
    )
    session.add(chapter)
    await session.flush()
    item.chapter_count = (item.chapter_count or 0) + 1
    item.total_duration_seconds = (item.total_duration_seconds or 0) + duration
    await session.commit()
    return chapter
