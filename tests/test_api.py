import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from audioshelf.database import Base, get_db
from audioshelf.main import app
from audioshelf.models import UserRole
from audioshelf.services.access import ANONYMOUS, Actor
from audioshelf.settings.config import settings
from audioshelf.utils import current_actor, get_notifier_dep, get_store, require_actor

from conftest import FakeStore, RecordingNotifier, make_user

AUDIO = b"ID3" + b"\x00" * 64


class Who:
    def __init__(self):
        self.actor = ANONYMOUS

    def __call__(self):
        return self.actor


@pytest.fixture
def api(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async def setup():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            listener = await make_user(s, UserRole.listener)
            admin = await make_user(s, UserRole.admin)
            return {
                "creator": Actor(creator.id, UserRole.creator),
                "listener": Actor(listener.id, UserRole.listener),
                "admin": Actor(admin.id, UserRole.admin),
            }

    actors = asyncio.run(setup())

    async def override_get_db():
        async with maker() as session:
            yield session

    who = Who()
    store = FakeStore()
    notifier = RecordingNotifier()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[require_actor] = who
    app.dependency_overrides[current_actor] = who
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_notifier_dep] = lambda: notifier

    client = TestClient(app)
    client.who = who
    client.actors = actors
    client.store = store
    client.notifier = notifier

    def login(name):
        who.actor = actors[name] if name else ANONYMOUS

    client.login = login
    yield client

    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


def _published_item(api, *, is_free=False):
    api.login("creator")
    r = api.post("/content", json={"title": "Night Stories", "is_free": is_free, "content_type": "audiobook"})
    assert r.status_code == 201, r.text
    item_id = r.json()["id"]
    r = api.post(
        f"/content/{item_id}/chapters",
        files={"file": ("one.mp3", AUDIO, "audio/mpeg")},
        data={"title": "One", "duration_seconds": "60"},
    )
    assert r.status_code == 201, r.text
    assert api.post(f"/content/{item_id}/submit").json()["status"] == "submitted"
    api.login("admin")
    assert api.post(f"/admin/content/{item_id}/approve").json()["status"] == "approved"
    return item_id


def test_health(api):
    assert api.get("/health").json() == {"status": "ok"}


def test_missing_and_hidden_content_are_both_404(api):
    api.login("creator")
    item_id = api.post("/content", json={"title": "Draft"}).json()["id"]

    api.login(None)
    hidden = api.get(f"/content/{item_id}")
    missing = api.get("/content/987654")
    assert hidden.status_code == missing.status_code == 404
    assert hidden.json() == missing.json() == {"error": "not_found", "message": "Content not found"}


def test_publish_flow(api):
    item_id = _published_item(api)

    api.login(None)
    body = api.get(f"/content/{item_id}").json()
    assert body["chapter_count"] == 1
    assert body["total_duration_seconds"] == 60
    assert [c["title"] for c in api.get(f"/content/{item_id}/chapters").json()] == ["One"]
    assert [i["id"] for i in api.get("/content").json()] == [item_id]
    assert api.notifier.status_changes == [(item_id, "approved", None)]


def test_review_queue_is_admin_only(api):
    api.login("listener")
    assert api.get("/admin/review-queue").status_code == 403
    api.login("admin")
    assert api.get("/admin/review-queue").json() == []


def test_invalid_transition_is_409(api):
    api.login("creator")
    item_id = api.post("/content", json={"title": "Draft"}).json()["id"]
    api.login("admin")
    r = api.post(f"/admin/content/{item_id}/approve")
    assert r.status_code == 409
    assert r.json()["error"] == "invalid_transition"


def test_submit_without_chapters_is_400(api):
    api.login("creator")
    item_id = api.post("/content", json={"title": "Empty"}).json()["id"]
    r = api.post(f"/content/{item_id}/submit")
    assert r.status_code == 400
    assert r.json()["error"] == "no_chapters"


def test_oversized_upload_is_413(api, monkeypatch):
    monkeypatch.setattr(settings, "MAX_CHAPTER_BYTES", 8)
    api.login("creator")
    item_id = api.post("/content", json={"title": "Big"}).json()["id"]
    r = api.post(
        f"/content/{item_id}/chapters",
        files={"file": ("big.mp3", AUDIO, "audio/mpeg")},
        data={"title": "Big"},
    )
    assert r.status_code == 413
    assert api.store.puts == []


def test_manual_order_endpoint(api):
    api.login("creator")
    item_id = api.post("/content", json={"title": "Ordered"}).json()["id"]
    ids = []
    for title in ("A", "B", "C"):
        r = api.post(f"/content/{item_id}/chapters", files={"file": (f"{title}.mp3", AUDIO, "audio/mpeg")},
                     data={"title": title})
        ids.append(r.json()["id"])

    r = api.put(f"/content/{item_id}/chapters/order", json={"order": {str(ids[0]): "", str(ids[1]): "x",
                                                                      str(ids[2]): "1"}})
    assert r.status_code == 200, r.text
    assert [(c["title"], c["chapter_index"]) for c in r.json()] == [("C", 1), ("A", 2), ("B", 3)]

    r = api.patch(f"/content/{item_id}/chapters/reorder", json={"order": [ids[0], ids[1]]})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_chapter_set"


def test_claim_free_and_library(api):
    item_id = _published_item(api, is_free=True)
    api.login("listener")
    first = api.post(f"/content/{item_id}/claim")
    second = api.post(f"/content/{item_id}/claim")
    assert first.status_code == second.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert [e["content_item_id"] for e in api.get("/library").json()] == [item_id]


def test_claim_paid_item_is_403(api):
    item_id = _published_item(api, is_free=False)
    api.login("listener")
    r = api.post(f"/content/{item_id}/claim")
    assert r.status_code == 403
    assert r.json()["error"] == "not_eligible"


def test_payment_webhook(api, monkeypatch):
    item_id = _published_item(api)
    payload = {"user_id": api.actors["listener"].id, "content_item_id": item_id, "payment_reference": "pi_42"}

    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", None)
    assert api.post("/webhooks/payments", json=payload).status_code == 503

    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", "whsec_test")
    assert api.post("/webhooks/payments", json=payload).status_code == 401
    assert api.post("/webhooks/payments", json=payload, headers={"X-Webhook-Secret": "nope"}).status_code == 401

    first = api.post("/webhooks/payments", json=payload, headers={"X-Webhook-Secret": "whsec_test"})
    again = api.post("/webhooks/payments", json=payload, headers={"X-Webhook-Secret": "whsec_test"})
    assert first.status_code == again.status_code == 200
    assert first.json()["id"] == again.json()["id"]
    assert first.json()["source"] == "purchase"

    reused = dict(payload, user_id=api.actors["creator"].id)
    r = api.post("/webhooks/payments", json=reused, headers={"X-Webhook-Secret": "whsec_test"})
    assert r.status_code == 409
    assert r.json()["error"] == "payment_reference_conflict"


def test_library_requires_login(api):
    app.dependency_overrides.pop(require_actor, None)
    assert api.get("/library").status_code == 401
