"""
test_alert_store.py — Alert creation, cap enforcement, edits and removal.

Covers:
    • Tier caps applied on create, nothing written on rejection
    • Add-on credit spent only above base caps, exhaustion, spend race
    • Input validation (coordinates, lengths, type)
    • Owner-only edit / remove, idempotent deactivation
    • Visibility listing and per-viewer filtering

Run with:
    pytest tests/test_alert_store.py -v
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from conftest import CENTER_LAT, CENTER_LON, make_credit, make_user, seed
from pawmesh.app.broadcasts.alert_store import (
    SYSTEM,
    AlertStore,
    filter_visible,
)
from pawmesh.app.broadcasts.entitlements import EntitlementResolver
from pawmesh.app.broadcasts.models import AlertType, BroadcastAlert, Tier
from pawmesh.app.core.errors import (
    AlertInactive,
    CapExceeded,
    NotFoundError,
    NotOwner,
    ValidationError,
)
from pawmesh.app.storage.memory import InMemoryStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class NoCreditStore(InMemoryStore):
    """Reports an active credit but loses every spend race."""

    async def consume_addon_credit(self, user_id, now):
        return False


def make_alerts(store) -> AlertStore:
    return AlertStore(store, EntitlementResolver(store))


async def create(alerts: AlertStore, creator_id: str, **overrides):
    params = dict(
        latitude=CENTER_LAT,
        longitude=CENTER_LON,
        alert_type="Lost",
        range_km=5.0,
        duration_hours=6.0,
        title="Lost tabby",
        now=NOW,
    )
    params.update(overrides)
    return await alerts.create(creator_id, **params)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Caps on create
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateCaps:

    @pytest.mark.asyncio
    async def test_gold_within_caps(self, store):
        await seed(store, make_user("g", Tier.GOLD))
        alert = await create(make_alerts(store), "g", range_km=20, duration_hours=48)
        assert alert.range_meters == 20000
        assert alert.expires_at == NOW + timedelta(hours=48)
        assert alert.is_active is True
        assert alert.support_count == 0 and alert.report_count == 0

    @pytest.mark.asyncio
    async def test_free_over_range_is_rejected(self, store):
        await seed(store, make_user("f", Tier.FREE))
        with pytest.raises(CapExceeded) as exc_info:
            await create(make_alerts(store), "f", range_km=25, duration_hours=24)

        err = exc_info.value
        assert err.tier == "free"
        assert err.fields[0] == "range_km"
        assert err.details["violations"][0]["allowed_max"] == 10
        assert await store.list_active_alerts(NOW) == []

    @pytest.mark.asyncio
    async def test_boundary_values_allowed(self, store):
        await seed(store, make_user("p", Tier.PREMIUM))
        alert = await create(make_alerts(store), "p", range_km=25, duration_hours=24)
        assert alert.range_meters == 25000

    @pytest.mark.asyncio
    async def test_family_member_gets_inviter_caps(self, store):
        await seed(
            store,
            make_user("parent", Tier.GOLD),
            make_user("kid", Tier.FREE, family_inviter_id="parent"),
        )
        alert = await create(make_alerts(store), "kid", range_km=40, duration_hours=40)
        assert alert.range_km == 40

    @pytest.mark.asyncio
    async def test_unknown_creator(self, store):
        with pytest.raises(NotFoundError):
            await create(make_alerts(store), "ghost")


class TestAddOnSpend:

    @pytest.mark.asyncio
    async def test_request_above_base_spends_one_credit(self, store):
        await seed(store, make_user("f", Tier.FREE))
        await store.upsert_addon_credit(make_credit("f", remaining=2))

        alert = await create(make_alerts(store), "f", range_km=120, duration_hours=60)

        assert alert.range_meters == 120000
        credit = await store.get_addon_credit("f")
        assert credit.remaining == 1

    @pytest.mark.asyncio
    async def test_request_within_base_keeps_credit(self, store):
        await seed(store, make_user("f", Tier.FREE))
        await store.upsert_addon_credit(make_credit("f", remaining=2))

        await create(make_alerts(store), "f", range_km=5, duration_hours=6)

        credit = await store.get_addon_credit("f")
        assert credit.remaining == 2

    @pytest.mark.asyncio
    async def test_last_credit_then_rejected(self, store):
        await seed(store, make_user("f", Tier.FREE))
        await store.upsert_addon_credit(make_credit("f", remaining=1))
        alerts = make_alerts(store)

        await create(alerts, "f", range_km=100)
        with pytest.raises(CapExceeded) as exc_info:
            await create(alerts, "f", range_km=100)

        assert exc_info.value.tier == "free"
        assert len(await store.list_active_alerts(NOW)) == 1

    @pytest.mark.asyncio
    async def test_above_addon_ceiling(self, store):
        await seed(store, make_user("f", Tier.FREE))
        await store.upsert_addon_credit(make_credit("f", remaining=5))

        with pytest.raises(CapExceeded) as exc_info:
            await create(make_alerts(store), "f", range_km=151)

        assert exc_info.value.tier == "free+addon"
        credit = await store.get_addon_credit("f")
        assert credit.remaining == 5

    @pytest.mark.asyncio
    async def test_lost_spend_race_rejects(self):
        store = NoCreditStore()
        await seed(store, make_user("f", Tier.FREE))
        await store.upsert_addon_credit(make_credit("f", remaining=1))

        with pytest.raises(CapExceeded):
            await create(make_alerts(store), "f", range_km=100)
        assert await store.list_active_alerts(NOW) == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Input validation
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides, field", [
        ({"latitude": 91.0}, "location"),
        ({"longitude": -181.0}, "location"),
        ({"range_km": 0}, "range_km"),
        ({"duration_hours": -1}, "duration_hours"),
        ({"alert_type": "Found"}, "alert_type"),
        ({"title": "x" * 101}, "title"),
        ({"description": "y" * 501}, "description"),
    ])
    async def test_rejected(self, store, overrides, field):
        await seed(store, make_user("u", Tier.GOLD))
        with pytest.raises(ValidationError) as exc_info:
            await create(make_alerts(store), "u", **overrides)
        assert exc_info.value.details["field"] == field

    @pytest.mark.asyncio
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["range_km", "duration_hours"])
    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    async def test_non_finite_rejected_without_rows(self, store, field, value):
        await seed(store, make_user("u", Tier.FREE))
        with pytest.raises(ValidationError) as exc_info:
            await create(make_alerts(store), "u", **{field: value})
        assert exc_info.value.details["field"] == field
        assert await store.list_active_alerts(NOW) == []

    @pytest.mark.asyncio
    async def test_type_is_case_insensitive(self, store):
        await seed(store, make_user("u"))
        alert = await create(make_alerts(store), "u", alert_type="stray")
        assert alert.alert_type is AlertType.STRAY

    @pytest.mark.asyncio
    async def test_text_is_trimmed(self, store):
        await seed(store, make_user("u"))
        alert = await create(
            make_alerts(store), "u", title="  Lost tabby  ", description="   ",
        )
        assert alert.title == "Lost tabby"
        assert alert.description is None


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Edit and removal
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdate:

    @pytest.mark.asyncio
    async def test_owner_edits(self, store):
        await seed(store, make_user("owner"))
        alerts = make_alerts(store)
        alert = await create(alerts, "owner", description="Grey collar")

        updated = await alerts.update(alert.alert_id, "owner", title="Found near park")

        assert updated.title == "Found near park"
        assert updated.description == "Grey collar"

    @pytest.mark.asyncio
    async def test_empty_string_clears(self, store):
        await seed(store, make_user("owner"))
        alerts = make_alerts(store)
        alert = await create(alerts, "owner", description="Grey collar")

        updated = await alerts.update(alert.alert_id, "owner", description="")
        assert updated.description is None
        assert updated.title == "Lost tabby"

    @pytest.mark.asyncio
    async def test_non_owner_rejected(self, store):
        await seed(store, make_user("owner"), make_user("other"))
        alerts = make_alerts(store)
        alert = await create(alerts, "owner")

        with pytest.raises(NotOwner):
            await alerts.update(alert.alert_id, "other", title="mine now")
        assert (await alerts.get(alert.alert_id)).title == "Lost tabby"

    @pytest.mark.asyncio
    async def test_inactive_rejected(self, store):
        await seed(store, make_user("owner"))
        alerts = make_alerts(store)
        alert = await create(alerts, "owner")
        await alerts.deactivate(alert.alert_id, "owner")

        with pytest.raises(AlertInactive):
            await alerts.update(alert.alert_id, "owner", title="again")


class TestDeactivate:

    @pytest.mark.asyncio
    async def test_idempotent(self, store):
        await seed(store, make_user("owner"))
        alerts = make_alerts(store)
        alert = await create(alerts, "owner")

        assert await alerts.deactivate(alert.alert_id, "owner") is True
        assert await alerts.deactivate(alert.alert_id, "owner") is False
        assert (await alerts.get(alert.alert_id)).is_active is False

    @pytest.mark.asyncio
    async def test_non_owner_rejected(self, store):
        await seed(store, make_user("owner"), make_user("other"))
        alerts = make_alerts(store)
        alert = await create(alerts, "owner")

        with pytest.raises(NotOwner):
            await alerts.deactivate(alert.alert_id, "other")
        assert (await alerts.get(alert.alert_id)).is_active is True

    @pytest.mark.asyncio
    async def test_system_skips_owner_check(self, store):
        await seed(store, make_user("owner"))
        alerts = make_alerts(store)
        alert = await create(alerts, "owner")

        assert await alerts.deactivate(alert.alert_id, SYSTEM) is True

    @pytest.mark.asyncio
    async def test_unknown_alert(self, store):
        with pytest.raises(NotFoundError):
            await make_alerts(store).deactivate("missing", "owner")


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Visibility
# ═══════════════════════════════════════════════════════════════════════════

class TestVisibility:

    @pytest.mark.asyncio
    async def test_lists_newest_first_without_expired_or_removed(self, store):
        await seed(store, make_user("u", Tier.GOLD))
        alerts = make_alerts(store)
        old = await create(alerts, "u", now=NOW - timedelta(hours=2))
        new = await create(alerts, "u", now=NOW - timedelta(hours=1))
        await create(alerts, "u", duration_hours=1, now=NOW - timedelta(hours=3))
        removed = await create(alerts, "u")
        await alerts.deactivate(removed.alert_id, "u")

        visible = await alerts.list_visible(NOW)
        assert [a.alert_id for a in visible] == [new.alert_id, old.alert_id]

    def test_expiry_boundary_is_not_visible(self):
        alert = BroadcastAlert(
            creator_id="u", latitude=0, longitude=0, alert_type=AlertType.LOST,
            range_km=1, duration_hours=1, created_at=NOW,
        )
        assert alert.is_visible(NOW + timedelta(minutes=59))
        assert not alert.is_visible(NOW + timedelta(hours=1))

    def test_filter_hidden_and_blocked(self):
        def alert(alert_id, creator):
            return BroadcastAlert(
                creator_id=creator, latitude=0, longitude=0,
                alert_type=AlertType.STRAY, range_km=1, duration_hours=5,
                alert_id=alert_id, created_at=NOW,
            )

        alerts = [alert("a1", "u1"), alert("a2", "u2"), alert("a3", "u3")]
        visible = filter_visible(
            alerts, NOW, hidden_ids=["a1"], blocked_user_ids=["u3"],
        )
        assert [a.alert_id for a in visible] == ["a2"]
