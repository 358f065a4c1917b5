"""
memory.py — In-process entity store (development and tests).

Rows are copied in and out so callers never hold a live reference to
stored state, which mirrors how a database round-trip behaves. Ledger
and counter updates run under one store-wide asyncio.Lock so concurrent
support/unsupport on the same alert never lose an update.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pawmesh.app.broadcasts.models import (
    AddOnCredit,
    BroadcastAlert,
    Interaction,
    InteractionType,
    NotificationDispatchRecord,
    SocialPost,
    SocialStatus,
    UserProfile,
)
from pawmesh.app.core.errors import DuplicateInteraction, NotFoundError
from pawmesh.app.spatial.radius_utils import (
    Coordinate,
    bounding_box,
    is_strictly_inside,
)
from pawmesh.app.storage.base import COUNTER_FIELDS, BroadcastStore

logger = logging.getLogger(__name__)


class InMemoryStore(BroadcastStore):

    def __init__(self) -> None:
        self._users: Dict[str, UserProfile] = {}
        self._credits: Dict[str, AddOnCredit] = {}
        self._alerts: Dict[str, BroadcastAlert] = {}
        self._interactions: Dict[Tuple[str, str, InteractionType], Interaction] = {}
        self._posts: Dict[str, SocialPost] = {}
        self._dispatch_records: List[NotificationDispatchRecord] = []
        self._alert_lock = asyncio.Lock()
        self._credit_lock = asyncio.Lock()

    # ── Users & entitlements ──

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        user = self._users.get(user_id)
        return replace(user) if user else None

    async def upsert_user(self, user: UserProfile) -> UserProfile:
        self._users[user.user_id] = replace(user)
        return replace(user)

    async def get_addon_credit(self, user_id: str) -> Optional[AddOnCredit]:
        credit = self._credits.get(user_id)
        return replace(credit) if credit else None

    async def upsert_addon_credit(self, credit: AddOnCredit) -> AddOnCredit:
        self._credits[credit.user_id] = replace(credit)
        return replace(credit)

    async def consume_addon_credit(self, user_id: str, now: datetime) -> bool:
        async with self._credit_lock:
            credit = self._credits.get(user_id)
            if credit is None or not credit.is_active(now):
                return False
            credit.remaining -= 1
            return True

    # ── Alerts ──

    async def insert_alert(self, alert: BroadcastAlert) -> BroadcastAlert:
        self._alerts[alert.alert_id] = replace(alert)
        return replace(alert)

    async def get_alert(self, alert_id: str) -> Optional[BroadcastAlert]:
        alert = self._alerts.get(alert_id)
        return replace(alert) if alert else None

    async def update_alert_content(
        self, alert_id: str, *, title: Optional[str], description: Optional[str],
    ) -> Optional[BroadcastAlert]:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return None
        alert.title = title
        alert.description = description
        return replace(alert)

    async def set_social_link(
        self, alert_id: str, *, post_id: Optional[str], status: SocialStatus,
    ) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        alert.social_post_id = post_id
        alert.social_status = status

    async def deactivate_alert(self, alert_id: str) -> bool:
        async with self._alert_lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id=alert_id)
            changed = alert.is_active
            alert.is_active = False
            return changed

    async def list_active_alerts(self, now: datetime) -> List[BroadcastAlert]:
        return [
            replace(a) for a in self._alerts.values() if a.is_visible(now)
        ]

    # ── Interaction ledger ──

    async def add_interaction(self, interaction: Interaction) -> int:
        counter = COUNTER_FIELDS[interaction.interaction_type]
        async with self._alert_lock:
            alert = self._alerts.get(interaction.alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id=interaction.alert_id)
            if interaction.key in self._interactions:
                raise DuplicateInteraction(
                    alert_id=interaction.alert_id,
                    user_id=interaction.user_id,
                    interaction_type=interaction.interaction_type.value,
                )
            self._interactions[interaction.key] = replace(interaction)
            value = getattr(alert, counter) + 1
            setattr(alert, counter, value)
            return value

    async def remove_interaction(
        self, alert_id: str, user_id: str, interaction_type: InteractionType,
    ) -> Optional[int]:
        counter = COUNTER_FIELDS[interaction_type]
        async with self._alert_lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise NotFoundError("Alert", alert_id=alert_id)
            if self._interactions.pop((alert_id, user_id, interaction_type), None) is None:
                return None
            value = max(getattr(alert, counter) - 1, 0)
            setattr(alert, counter, value)
            return value

    async def has_interaction(
        self, alert_id: str, user_id: str, interaction_type: InteractionType,
    ) -> bool:
        return (alert_id, user_id, interaction_type) in self._interactions

    # ── Social posts ──

    async def insert_social_post(self, post: SocialPost) -> SocialPost:
        self._posts[post.post_id] = replace(post)
        return replace(post)

    async def delete_social_post(self, post_id: str) -> None:
        self._posts.pop(post_id, None)

    async def get_social_post(self, post_id: str) -> Optional[SocialPost]:
        post = self._posts.get(post_id)
        return replace(post) if post else None

    # ── Dispatch audit ──

    async def insert_dispatch_record(
        self, record: NotificationDispatchRecord,
    ) -> None:
        self._dispatch_records.append(replace(record))

    async def list_dispatch_records(
        self, alert_id: str,
    ) -> List[NotificationDispatchRecord]:
        return [
            replace(r) for r in self._dispatch_records if r.alert_id == alert_id
        ]

    # ── Proximity ──

    async def find_nearby_users(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        min_vouch_score: int,
        exclude_user_id: Optional[str] = None,
    ) -> List[UserProfile]:
        center = Coordinate(latitude, longitude)
        bbox = bounding_box(center, radius_meters)

        matched: List[UserProfile] = []
        for user in self._users.values():
            if user.user_id == exclude_user_id:
                continue
            if user.vouch_score < min_vouch_score:
                continue
            if user.latitude is None or user.longitude is None:
                continue
            if not bbox.contains(user.latitude, user.longitude):
                continue
            inside, _ = is_strictly_inside(
                center, Coordinate(user.latitude, user.longitude), radius_meters,
            )
            if inside:
                matched.append(replace(user))
        return matched
