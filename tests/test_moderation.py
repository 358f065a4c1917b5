"""
test_moderation.py — Support toggle, add-only reports and auto-hide.

Run with:
    pytest tests/test_moderation.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import create_alert, make_user, seed
from pawmesh.app.broadcasts.models import InteractionType
from pawmesh.app.broadcasts.moderation import AUTO_HIDE_REPORT_THRESHOLD
from pawmesh.app.core.errors import AlreadyReported, DuplicateInteraction, NotFoundError


async def _setup(service, store, viewers=0):
    users = [make_user("owner")] + [make_user(f"v{i}") for i in range(viewers)]
    await seed(store, *users)
    return await create_alert(service, "owner")


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Support toggle
# ═══════════════════════════════════════════════════════════════════════════

class TestSupport:

    @pytest.mark.asyncio
    async def test_toggle(self, service, store):
        alert = await _setup(service, store)

        first = await service.support(alert.alert_id, "v")
        assert first.liked is True and first.support_count == 1
        assert await store.has_interaction(alert.alert_id, "v", InteractionType.SUPPORT)

        second = await service.support(alert.alert_id, "v")
        assert second.liked is False and second.support_count == 0
        assert not await store.has_interaction(alert.alert_id, "v", InteractionType.SUPPORT)

    @pytest.mark.asyncio
    async def test_counter_matches_ledger_under_concurrency(self, service, store):
        alert = await _setup(service, store)

        outcomes = await asyncio.gather(
            *(service.support(alert.alert_id, f"v{i}") for i in range(25))
        )

        assert all(o.liked for o in outcomes)
        assert (await service.get_broadcast(alert.alert_id)).support_count == 25

    @pytest.mark.asyncio
    async def test_odd_number_of_toggles_leaves_support(self, service, store):
        alert = await _setup(service, store)
        for _ in range(5):
            outcome = await service.support(alert.alert_id, "v")
        assert outcome.liked is True
        assert outcome.support_count == 1

    @pytest.mark.asyncio
    async def test_lost_race_reports_liked(self, service, store):
        alert = await _setup(service, store)

        async def duplicate(interaction):
            raise DuplicateInteraction(
                alert_id=interaction.alert_id,
                user_id=interaction.user_id,
                interaction_type="support",
            )

        store.add_interaction = duplicate
        outcome = await service.support(alert.alert_id, "v")
        assert outcome.liked is True

    @pytest.mark.asyncio
    async def test_unknown_alert(self, service):
        with pytest.raises(NotFoundError):
            await service.support("missing", "v")


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Reports and auto-hide
# ═══════════════════════════════════════════════════════════════════════════

class TestReport:

    @pytest.mark.asyncio
    async def test_report_once(self, service, store):
        alert = await _setup(service, store)

        outcome = await service.report(alert.alert_id, "v")
        assert outcome.report_count == 1
        assert outcome.auto_hidden is False

        with pytest.raises(AlreadyReported) as exc_info:
            await service.report(alert.alert_id, "v")
        assert exc_info.value.error_code == "ALREADY_REPORTED"
        assert exc_info.value.status_code == 409
        assert (await service.get_broadcast(alert.alert_id)).report_count == 1

    @pytest.mark.asyncio
    async def test_threshold_is_strictly_greater(self, service, store):
        alert = await _setup(service, store, viewers=12)

        for i in range(AUTO_HIDE_REPORT_THRESHOLD):
            outcome = await service.report(alert.alert_id, f"v{i}")
        assert outcome.report_count == 10
        assert outcome.auto_hidden is False
        assert (await service.get_broadcast(alert.alert_id)).is_active is True

        outcome = await service.report(alert.alert_id, "v10")
        assert outcome.report_count == 11
        assert outcome.auto_hidden is True
        assert (await service.get_broadcast(alert.alert_id)).is_active is False
        assert await service.list_visible() == []

    @pytest.mark.asyncio
    async def test_reports_after_hide_still_counted(self, service, store):
        alert = await _setup(service, store, viewers=12)
        for i in range(11):
            await service.report(alert.alert_id, f"v{i}")

        outcome = await service.report(alert.alert_id, "v11")
        assert outcome.report_count == 12
        assert outcome.auto_hidden is True

    @pytest.mark.asyncio
    async def test_unknown_alert(self, service):
        with pytest.raises(NotFoundError):
            await service.report("missing", "v")

    @pytest.mark.asyncio
    async def test_unknown_alerts_leave_no_lock_state(self, service, store):
        alert = await _setup(service, store)
        before = dict(vars(store))

        outcomes = await asyncio.gather(
            *(service.report(f"missing-{i}", "v") for i in range(50)),
            return_exceptions=True,
        )

        assert all(isinstance(o, NotFoundError) for o in outcomes)
        assert vars(store).keys() == before.keys()
        assert all(
            len(value) == len(before[name])
            for name, value in vars(store).items()
            if isinstance(value, (dict, list))
        )
        assert (await service.support(alert.alert_id, "v")).support_count == 1
