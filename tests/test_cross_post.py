"""
test_cross_post.py — Best-effort social cross-post after alert creation.

Run with:
    pytest tests/test_cross_post.py -v
"""

from __future__ import annotations

import pytest

from conftest import create_alert, make_user, seed
from pawmesh.app.broadcasts.cross_post import (
    SocialCrossPoster,
    build_post_body,
    build_post_title,
)
from pawmesh.app.broadcasts.models import AlertType, BroadcastAlert, SocialStatus
from pawmesh.app.broadcasts.service import BroadcastService
from pawmesh.app.storage.memory import InMemoryStore


class PostWriteFails(InMemoryStore):

    async def insert_social_post(self, post):
        raise ConnectionError("posts table unavailable")


class LinkBackFails(InMemoryStore):

    async def set_social_link(self, alert_id, *, post_id, status):
        if status is SocialStatus.POSTED:
            raise ConnectionError("alerts table locked")
        await super().set_social_link(alert_id, post_id=post_id, status=status)


def _alert(**overrides) -> BroadcastAlert:
    params = dict(
        creator_id="u1", latitude=1.0, longitude=2.0,
        alert_type=AlertType.LOST, range_km=5, duration_hours=6,
    )
    params.update(overrides)
    return BroadcastAlert(**params)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Post content
# ═══════════════════════════════════════════════════════════════════════════

class TestPostContent:

    def test_title_from_alert(self):
        assert build_post_title(_alert(title="Lost corgi")) == "Lost corgi"

    def test_title_fallback(self):
        assert build_post_title(_alert(alert_type=AlertType.STRAY)) == "Broadcast (Stray)"

    def test_body_sections(self):
        body = build_post_body(_alert(
            title="Lost corgi", description="Red harness", location_label="Prospect Park",
        ))
        assert body == "Lost pet alert\n\nLost corgi\n\nRed harness\n\nLocation: Prospect Park"

    def test_body_skips_missing_parts(self):
        assert build_post_body(_alert()) == "Lost pet alert"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Outcomes
# ═══════════════════════════════════════════════════════════════════════════

class TestCrossPostOutcome:

    @pytest.mark.asyncio
    async def test_posted_and_linked(self, store):
        alert = await store.insert_alert(_alert(title="Lost corgi", photo_ref="img/1.jpg"))

        outcome = await SocialCrossPoster(store).cross_post(alert, opted_in=True)

        assert outcome.status is SocialStatus.POSTED
        stored = await store.get_alert(alert.alert_id)
        assert stored.social_post_id == outcome.post_id
        assert stored.social_status is SocialStatus.POSTED
        post = await store.get_social_post(outcome.post_id)
        assert post.alert_id == alert.alert_id
        assert post.tags == ["News"]
        assert post.images == ["img/1.jpg"]

    @pytest.mark.asyncio
    async def test_not_opted_in(self, store):
        alert = await store.insert_alert(_alert())
        outcome = await SocialCrossPoster(store).cross_post(alert, opted_in=False)
        assert outcome.status is SocialStatus.NONE
        assert outcome.post_id is None

    @pytest.mark.asyncio
    async def test_others_type_never_cross_posted(self, store):
        alert = await store.insert_alert(_alert(alert_type=AlertType.OTHERS))
        outcome = await SocialCrossPoster(store).cross_post(alert, opted_in=True)
        assert outcome.status is SocialStatus.NONE

    @pytest.mark.asyncio
    async def test_post_write_failure_keeps_alert(self):
        store = PostWriteFails()
        alert = await store.insert_alert(_alert())

        outcome = await SocialCrossPoster(store).cross_post(alert, opted_in=True)

        assert outcome.status is SocialStatus.FAILED
        assert "posts table unavailable" in outcome.error
        stored = await store.get_alert(alert.alert_id)
        assert stored.is_active is True
        assert stored.social_status is SocialStatus.FAILED

    @pytest.mark.asyncio
    async def test_link_back_failure_removes_orphan_post(self):
        store = LinkBackFails()
        alert = await store.insert_alert(_alert())

        outcome = await SocialCrossPoster(store).cross_post(alert, opted_in=True)

        assert outcome.status is SocialStatus.FAILED
        assert store._posts == {}
        stored = await store.get_alert(alert.alert_id)
        assert stored.social_post_id is None
        assert stored.social_status is SocialStatus.FAILED


class TestCreateWithCrossPost:

    @pytest.mark.asyncio
    async def test_partial_success_surface(self, push):
        store = PostWriteFails()
        await seed(store, make_user("u1"))
        service = BroadcastService(store, provider=push, auto_dispatch=False)

        result = await service.create_broadcast(
            "u1", latitude=1.0, longitude=2.0, alert_type="Stray",
            range_km=3, duration_hours=3, post_to_social=True,
        )

        assert result.partial_success is True
        assert result.social_status is SocialStatus.FAILED
        assert result.social_error
        assert (await store.get_alert(result.alert_id)).is_active is True

    @pytest.mark.asyncio
    async def test_full_success(self, service, store):
        await seed(store, make_user("u1"))
        alert = await create_alert(service, "u1", post_to_social=True)
        assert alert.social_status is SocialStatus.POSTED
        assert alert.social_post_id is not None
