from decimal import Decimal

import pytest
from sqlalchemy import select

from audioshelf.errors import AuthorizationError, InvalidTransition, ValidationError
from audioshelf.models import Chapter, ContentItem, ContentStatus, Entitlement, EntitlementSource, UserRole
from audioshelf.services import content

from conftest import ExplodingNotifier, actor, add_chapter, make_item, make_user


def test_create_requires_creator_role(harness):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            listener = await make_user(s)
            item = await content.create_content(s, actor(creator), title="  My Book ", price="4.5")
            with pytest.raises(AuthorizationError):
                await content.create_content(s, actor(listener), title="Nope")
            with pytest.raises(ValidationError) as exc:
                await content.create_content(s, actor(creator), title="Bad", price="-1")
            return item, exc.value.code

    item, code = harness.run(scenario)
    assert item.title == "My Book"
    assert item.status == ContentStatus.draft
    assert item.price == Decimal("4.50")
    assert item.chapter_count == 0
    assert code == "invalid_price"


def test_submit_needs_a_chapter(harness):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            item = await make_item(s, creator)
            with pytest.raises(ValidationError) as exc:
                await content.submit(s, actor(creator), item.id)
            await add_chapter(s, item, 1)
            submitted = await content.submit(s, actor(creator), item.id)
            return exc.value.code, submitted.status, submitted.submitted_at

    code, status, submitted_at = harness.run(scenario)
    assert code == "no_chapters"
    assert status == ContentStatus.submitted
    assert submitted_at is not None


def test_review_is_admin_only(harness, notifier):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            item = await make_item(s, creator, status=ContentStatus.submitted)
            with pytest.raises(AuthorizationError):
                await content.approve(s, actor(creator), item.id, notifier=notifier)
            with pytest.raises(AuthorizationError):
                await content.reject(s, actor(creator), item.id, "no", notifier=notifier)
            with pytest.raises(AuthorizationError):
                await content.list_for_review(s, actor(creator))
            return item.status

    assert harness.run(scenario) == ContentStatus.submitted
    assert notifier.status_changes == []


def test_full_review_cycle_notifies_creator(harness, notifier):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            admin = await make_user(s, UserRole.admin)
            item = await make_item(s, creator)
            await add_chapter(s, item, 1)
            await content.submit(s, actor(creator), item.id)
            queue = [i.id for i in await content.list_for_review(s, actor(admin))]
            await content.start_review(s, actor(admin), item.id)
            rejected = await content.reject(s, actor(admin), item.id, "  Audio is clipped  ", notifier=notifier)
            reason = rejected.rejection_reason
            resubmitted = await content.submit(s, actor(creator), item.id)
            cleared = resubmitted.rejection_reason
            approved = await content.approve(s, actor(admin), item.id, notifier=notifier)
            return item.id, admin.id, queue, reason, cleared, approved

    item_id, admin_id, queue, reason, cleared, approved = harness.run(scenario)
    assert queue == [item_id]
    assert reason == "Audio is clipped"
    assert cleared is None
    assert approved.status == ContentStatus.approved
    assert approved.reviewed_by == admin_id
    assert notifier.status_changes == [
        (item_id, ContentStatus.rejected, "Audio is clipped"),
        (item_id, ContentStatus.approved, None),
    ]


@pytest.mark.parametrize(
    "start,move",
    [
        (ContentStatus.draft, "approve"),
        (ContentStatus.draft, "start_review"),
        (ContentStatus.approved, "reject"),
        (ContentStatus.rejected, "approve"),
        (ContentStatus.under_review, "start_review"),
    ],
)
def test_invalid_transitions(harness, notifier, start, move):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            admin = await make_user(s, UserRole.admin)
            item = await make_item(s, creator, status=start)
            fn = getattr(content, move)
            kwargs = {} if move == "start_review" else {"notifier": notifier}
            with pytest.raises(InvalidTransition):
                await fn(s, actor(admin), item.id, **kwargs)

    harness.run(scenario)
    assert notifier.status_changes == []


def test_notifier_failure_does_not_undo_approval(harness):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            admin = await make_user(s, UserRole.admin)
            item = await make_item(s, creator, status=ContentStatus.submitted)
            await content.approve(s, actor(admin), item.id, notifier=ExplodingNotifier())
        async with maker() as s:
            return (await s.get(ContentItem, item.id)).status

    assert harness.run(scenario) == ContentStatus.approved


def test_creator_edit_rules(harness):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            admin = await make_user(s, UserRole.admin)
            draft = await make_item(s, creator)
            in_review = await make_item(s, creator, status=ContentStatus.under_review)
            approved = await make_item(s, creator, status=ContentStatus.approved)

            await content.update_content(s, actor(creator), draft.id, {"title": "Renamed", "status": "approved"})
            with pytest.raises(InvalidTransition):
                await content.update_content(s, actor(creator), in_review.id, {"title": "x"})
            await content.update_content(s, actor(admin), in_review.id, {"description": "fixed by staff"})
            await content.update_content(s, actor(creator), approved.id, {"description": "typo fix"})
            return draft, in_review, approved

    draft, in_review, approved = harness.run(scenario)
    assert draft.title == "Renamed"
    assert draft.status == ContentStatus.draft
    assert in_review.description == "fixed by staff"
    assert approved.status == ContentStatus.submitted


def test_delete_without_entitlements_removes_rows_and_blobs(harness, store):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            item = await make_item(s, creator)
            path = (await add_chapter(s, item, 1)).storage_path
            item.cover_path = "covers/1/cover.png"
            await s.commit()
            outcome = await content.delete_content(s, actor(creator), item.id, store=store)
        async with maker() as s:
            left = (await s.execute(select(Chapter))).scalars().all()
            return outcome, await s.get(ContentItem, item.id), left, path

    outcome, gone, left, path = harness.run(scenario)
    assert outcome == "deleted"
    assert gone is None
    assert left == []
    assert sorted(store.deletes) == sorted([path, "covers/1/cover.png"])


def test_delete_with_entitlements_archives(harness, store):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            buyer = await make_user(s)
            item = await make_item(s, creator, status=ContentStatus.approved)
            await add_chapter(s, item, 1)
            s.add(Entitlement(user_id=buyer.id, content_item_id=item.id, source=EntitlementSource.purchase,
                              payment_reference="pay_1"))
            await s.commit()
            outcome = await content.delete_content(s, actor(creator), item.id, store=store)
            public = await content.list_public(s)
            # the buyer keeps access; the public does not
            readable = await content.get_content(s, actor(buyer), item.id)
        async with maker() as s:
            fresh = await s.get(ContentItem, item.id)
            ents = (await s.execute(select(Entitlement))).scalars().all()
            return outcome, fresh, len(ents), public, readable.id

    outcome, fresh, ents, public, readable_id = harness.run(scenario)
    assert outcome == "archived"
    assert fresh.archived_at is not None
    assert ents == 1
    assert public == []
    assert readable_id == fresh.id
    assert store.deletes == []


def test_public_listing_shows_only_live_approved(harness):
    async def scenario(maker):
        async with maker() as s:
            creator = await make_user(s, UserRole.creator)
            live = await make_item(s, creator, status=ContentStatus.approved, title="Live")
            await make_item(s, creator, status=ContentStatus.approved, title="Gone", archived=True)
            await make_item(s, creator, status=ContentStatus.submitted, title="Pending")
            mine = await content.list_for_creator(s, actor(creator))
            return [i.id for i in await content.list_public(s)], live.id, len(mine)

    ids, live_id, mine = harness.run(scenario)
    assert ids == [live_id]
    assert mine == 3
