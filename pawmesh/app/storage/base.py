"""
base.py — Entity store contract for the broadcast pipeline.

The store is the durable system of record. Each method is a single
transactional unit; in particular `add_interaction` / `remove_interaction`
write the ledger row and adjust the denormalised counter together so the
two can never drift. There is intentionally no method that sets a counter
directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

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

COUNTER_FIELDS = {
    InteractionType.SUPPORT: "support_count",
    InteractionType.REPORT: "report_count",
}


class BroadcastStore(ABC):
    """Async entity store used by every pipeline component."""

    # ── Users & entitlements ──

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]: ...

    @abstractmethod
    async def upsert_user(self, user: UserProfile) -> UserProfile: ...

    @abstractmethod
    async def get_addon_credit(self, user_id: str) -> Optional[AddOnCredit]: ...

    @abstractmethod
    async def upsert_addon_credit(self, credit: AddOnCredit) -> AddOnCredit: ...

    @abstractmethod
    async def consume_addon_credit(self, user_id: str, now: datetime) -> bool:
        """Atomically spend one active credit. False if none was available."""

    # ── Alerts ──

    @abstractmethod
    async def insert_alert(self, alert: BroadcastAlert) -> BroadcastAlert: ...

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[BroadcastAlert]: ...

    @abstractmethod
    async def update_alert_content(
        self, alert_id: str, *, title: Optional[str], description: Optional[str],
    ) -> Optional[BroadcastAlert]: ...

    @abstractmethod
    async def set_social_link(
        self, alert_id: str, *, post_id: Optional[str], status: SocialStatus,
    ) -> None: ...

    @abstractmethod
    async def deactivate_alert(self, alert_id: str) -> bool:
        """Set is_active=False. True if this call changed the row."""

    @abstractmethod
    async def list_active_alerts(self, now: datetime) -> List[BroadcastAlert]:
        """Alerts with is_active and expires_at > now."""

    # ── Interaction ledger ──

    @abstractmethod
    async def add_interaction(self, interaction: Interaction) -> int:
        """
        Insert a ledger row and increment its counter in one unit.

        Returns the counter value after the increment. Raises
        DuplicateInteraction when the (alert, user, type) row exists.
        """

    @abstractmethod
    async def remove_interaction(
        self, alert_id: str, user_id: str, interaction_type: InteractionType,
    ) -> Optional[int]:
        """
        Delete a ledger row and decrement its counter (floored at 0).

        Returns the counter after the decrement, or None when no row existed.
        """

    @abstractmethod
    async def has_interaction(
        self, alert_id: str, user_id: str, interaction_type: InteractionType,
    ) -> bool: ...

    # ── Social posts ──

    @abstractmethod
    async def insert_social_post(self, post: SocialPost) -> SocialPost: ...

    @abstractmethod
    async def delete_social_post(self, post_id: str) -> None: ...

    # ── Dispatch audit ──

    @abstractmethod
    async def insert_dispatch_record(
        self, record: NotificationDispatchRecord,
    ) -> None: ...

    @abstractmethod
    async def list_dispatch_records(
        self, alert_id: str,
    ) -> List[NotificationDispatchRecord]: ...

    # ── Proximity ──

    @abstractmethod
    async def find_nearby_users(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        min_vouch_score: int,
        exclude_user_id: Optional[str] = None,
    ) -> List[UserProfile]:
        """Users strictly inside the radius with vouch_score >= the floor."""

    # ── Health ──

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
