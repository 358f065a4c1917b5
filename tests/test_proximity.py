"""
test_proximity.py — Distance math and audience selection.

Run with:
    pytest tests/test_proximity.py -v
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import CENTER_LAT, CENTER_LON, make_user, offset, seed
from pawmesh.app.broadcasts.proximity import ProximityResolver
from pawmesh.app.spatial.radius_utils import (
    Coordinate,
    bounding_box,
    haversine_m,
    is_strictly_inside,
)

CENTER = Coordinate(CENTER_LAT, CENTER_LON)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Distance helpers
# ═══════════════════════════════════════════════════════════════════════════

class TestHaversine:

    def test_same_point(self):
        assert haversine_m(CENTER, CENTER) == 0.0

    def test_one_degree_longitude_at_equator(self):
        d = haversine_m(Coordinate(0, 0), Coordinate(0, 1))
        assert 111_000 < d < 111_400

    def test_symmetric(self):
        other = Coordinate(*offset(3000, 4000))
        assert haversine_m(CENTER, other) == pytest.approx(haversine_m(other, CENTER))

    def test_offsets_are_close_to_requested(self):
        other = Coordinate(*offset(5000))
        assert haversine_m(CENTER, other) == pytest.approx(5000, rel=1e-3)

    @pytest.mark.parametrize("lat, lon", [(91, 0), (-91, 0), (0, 181), (0, -181)])
    def test_invalid_coordinates(self, lat, lon):
        with pytest.raises(ValueError):
            Coordinate(lat, lon)


class TestBoundingBox:

    def test_contains_circle_points(self):
        bbox = bounding_box(CENTER, 10_000)
        for north, east in [(9_999, 0), (-9_999, 0), (0, 9_999), (0, -9_999)]:
            assert bbox.contains(*offset(north, east))

    def test_excludes_far_points(self):
        bbox = bounding_box(CENTER, 10_000)
        assert not bbox.contains(*offset(20_000))
        assert len(bbox.lon_ranges) == 1

    def test_pole_spans_all_longitudes(self):
        bbox = bounding_box(Coordinate(89.5, 0), 150_000)
        assert bbox.max_lat == 90.0
        assert bbox.lon_ranges == ((-180.0, 180.0),)
        assert bbox.contains(89.6, 170)

    def test_antimeridian_splits_longitudes(self):
        bbox = bounding_box(Coordinate(-17.8, 179.95), 150_000)
        assert len(bbox.lon_ranges) == 2
        assert bbox.contains(-17.8, -179.95)
        assert bbox.contains(-17.8, 179.5)
        assert not bbox.contains(-17.8, 0.0)

    def test_antimeridian_from_the_west(self):
        bbox = bounding_box(Coordinate(-17.8, -179.95), 150_000)
        assert bbox.contains(-17.8, 179.95)
        assert not bbox.contains(-17.8, 170.0)


class TestStrictlyInside:

    def test_boundary_is_outside(self):
        point = Coordinate(*offset(7_000))
        d = haversine_m(CENTER, point)
        assert is_strictly_inside(CENTER, point, d) == (False, d)
        assert is_strictly_inside(CENTER, point, d + 1)[0] is True

    def test_rejects_non_positive_radius(self):
        with pytest.raises(ValueError):
            is_strictly_inside(CENTER, CENTER, 0)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Audience resolution
# ═══════════════════════════════════════════════════════════════════════════

class TestFindEligible:

    @pytest.mark.asyncio
    async def test_boundary_user_excluded(self, store):
        await seed(store, make_user("edge", meters_north=8_000))
        lat, lon = offset(8_000)
        d = haversine_m(CENTER, Coordinate(lat, lon))
        resolver = ProximityResolver(store)

        assert await resolver.find_eligible(CENTER_LAT, CENTER_LON, d, 5) == []
        inside = await resolver.find_eligible(CENTER_LAT, CENTER_LON, d + 1, 5)
        assert [r.user_id for r in inside] == ["edge"]

    @pytest.mark.asyncio
    async def test_creator_excluded(self, store):
        await seed(store, make_user("creator"), make_user("neighbor", meters_north=100))
        recipients = await ProximityResolver(store).find_eligible(
            CENTER_LAT, CENTER_LON, 1_000, 5, exclude_user_id="creator",
        )
        assert [r.user_id for r in recipients] == ["neighbor"]

    @pytest.mark.asyncio
    async def test_trust_floor_inclusive(self, store):
        await seed(
            store,
            make_user("low", vouch_score=4),
            make_user("exact", vouch_score=5),
            make_user("high", vouch_score=50),
        )
        recipients = await ProximityResolver(store).find_eligible(
            CENTER_LAT, CENTER_LON, 1_000, 5,
        )
        assert sorted(r.user_id for r in recipients) == ["exact", "high"]

    @pytest.mark.asyncio
    async def test_users_without_position_skipped(self, store):
        await seed(store, make_user("nowhere", meters_north=None), make_user("here"))
        recipients = await ProximityResolver(store).find_eligible(
            CENTER_LAT, CENTER_LON, 1_000, 0,
        )
        assert [r.user_id for r in recipients] == ["here"]

    @pytest.mark.asyncio
    async def test_tokens_carried_through(self, store):
        await seed(store, make_user("a"), make_user("b", push_token=None))
        recipients = await ProximityResolver(store).find_eligible(
            CENTER_LAT, CENTER_LON, 1_000, 0,
        )
        tokens = {r.user_id: r.push_token for r in recipients}
        assert tokens == {"a": "tok-a", "b": None}

    @pytest.mark.asyncio
    async def test_zero_radius(self, store):
        await seed(store, make_user("here"))
        assert await ProximityResolver(store).find_eligible(
            CENTER_LAT, CENTER_LON, 0, 0,
        ) == []


class TestWrapAround:

    @pytest.mark.asyncio
    async def test_across_antimeridian(self, store):
        await seed(
            store,
            replace(make_user("east"), latitude=-17.8, longitude=-179.95),
            replace(make_user("west"), latitude=-17.8, longitude=179.5),
            replace(make_user("far"), latitude=-17.8, longitude=-175.0),
        )
        recipients = await ProximityResolver(store).find_eligible(-17.8, 179.95, 150_000, 5)
        assert sorted(r.user_id for r in recipients) == ["east", "west"]

    @pytest.mark.asyncio
    async def test_across_pole(self, store):
        await seed(store, replace(make_user("polar"), latitude=89.6, longitude=170.0))
        recipients = await ProximityResolver(store).find_eligible(89.5, 0.0, 150_000, 5)
        assert [r.user_id for r in recipients] == ["polar"]
