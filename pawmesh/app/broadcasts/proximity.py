"""
proximity.py — Audience lookup for a broadcast.

Contract of `find_eligible`:
    • strictly inside the radius (a user exactly on the circle is out)
    • vouch_score >= the trust floor
    • the alert creator is never returned, even when standing on the pin
    • users without a last-known position are never returned

The store does the heavy lifting (bounding-box pre-filter, then
Haversine); this layer only shapes rows into `Recipient` targets and
logs the funnel. Store errors propagate: a dispatch that cannot resolve
its audience has nothing meaningful to record.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pawmesh.app.broadcasts.models import Recipient
from pawmesh.app.storage.base import BroadcastStore

logger = logging.getLogger(__name__)


class ProximityResolver:

    def __init__(self, store: BroadcastStore):
        self.store = store

    async def find_eligible(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        min_trust_score: int,
        exclude_user_id: Optional[str] = None,
    ) -> List[Recipient]:
        if radius_meters <= 0:
            return []

        users = await self.store.find_nearby_users(
            latitude, longitude, radius_meters, min_trust_score,
            exclude_user_id=exclude_user_id,
        )
        recipients = [
            Recipient(user_id=u.user_id, push_token=u.push_token)
            for u in users
            if u.user_id != exclude_user_id
        ]

        logger.info(
            "Proximity: %d eligible within %dm of (%.5f, %.5f), min_vouch=%d",
            len(recipients), radius_meters, latitude, longitude, min_trust_score,
        )
        return recipients
