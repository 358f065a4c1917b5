"""
Shared fixtures and builders for the broadcast pipeline tests.

Positions are expressed as meter offsets from a fixed centre so distances
are easy to reason about in assertions.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import pytest

from pawmesh.app.broadcasts.channels.push import SimulatedPushProvider
from pawmesh.app.broadcasts.dispatcher import DispatchConfig
from pawmesh.app.broadcasts.models import AddOnCredit, Tier, UserProfile
from pawmesh.app.broadcasts.service import BroadcastService
from pawmesh.app.spatial.radius_utils import EARTH_RADIUS_M
from pawmesh.app.storage.memory import InMemoryStore

# Brooklyn, NY
CENTER_LAT = 40.6782
CENTER_LON = -73.9442


def offset(
    meters_north: float = 0.0,
    meters_east: float = 0.0,
    *,
    lat: float = CENTER_LAT,
    lon: float = CENTER_LON,
) -> Tuple[float, float]:
    """(lat, lon) displaced from a point by the given meters."""
    d_lat = math.degrees(meters_north / EARTH_RADIUS_M)
    d_lon = math.degrees(meters_east / (EARTH_RADIUS_M * math.cos(math.radians(lat))))
    return lat + d_lat, lon + d_lon


def make_user(
    user_id: str,
    tier: Tier = Tier.FREE,
    *,
    meters_north: Optional[float] = 0.0,
    vouch_score: int = 10,
    push_token: Optional[str] = "default",
    family_inviter_id: Optional[str] = None,
) -> UserProfile:
    if meters_north is None:
        lat = lon = None
    else:
        lat, lon = offset(meters_north)
    return UserProfile(
        user_id=user_id,
        tier=tier,
        family_inviter_id=family_inviter_id,
        vouch_score=vouch_score,
        push_token=f"tok-{user_id}" if push_token == "default" else push_token,
        latitude=lat,
        longitude=lon,
    )


def make_credit(
    user_id: str, remaining: int = 1, *, expires_in_hours: Optional[float] = 72.0,
) -> AddOnCredit:
    expires_at = None
    if expires_in_hours is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(hours=expires_in_hours)
    return AddOnCredit(user_id=user_id, remaining=remaining, expires_at=expires_at)


async def seed(store, *users: UserProfile) -> None:
    for user in users:
        await store.upsert_user(user)


async def create_alert(service: BroadcastService, creator_id: str, **overrides):
    """Create a small Lost alert at the centre; returns the BroadcastAlert."""
    params = dict(
        latitude=CENTER_LAT,
        longitude=CENTER_LON,
        alert_type="Lost",
        range_km=5.0,
        duration_hours=6.0,
        title="Lost beagle",
        description="Brown and white, answers to Milo",
    )
    params.update(overrides)
    result = await service.create_broadcast(creator_id, **params)
    return result.alert


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def push() -> SimulatedPushProvider:
    return SimulatedPushProvider()


@pytest.fixture
def dispatch_config() -> DispatchConfig:
    return DispatchConfig(batch_delay_seconds=0.0, batch_timeout_seconds=5.0)


@pytest.fixture
def service(store, push, dispatch_config) -> BroadcastService:
    return BroadcastService(
        store,
        provider=push,
        dispatch_config=dispatch_config,
        auto_dispatch=False,
    )
