"""
service.py — Broadcast pipeline facade used by the HTTP layer.

Wires the components together over one entity store:

    EntitlementResolver ─┬─► AlertStore ─┬─► InteractionLedger
                         │               └─► SocialCrossPoster
                         └─► NotificationDispatcher ◄── ProximityResolver

After a successful create the dispatch is scheduled as its own asyncio
task; delivery is not part of the create response and its failures are
only logged. `drain()` awaits outstanding dispatches (shutdown, tests).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from pawmesh.app.broadcasts.alert_store import AlertStore, filter_visible
from pawmesh.app.broadcasts.channels.push import PushProvider, build_push_provider
from pawmesh.app.broadcasts.cross_post import SocialCrossPoster
from pawmesh.app.broadcasts.dispatcher import DispatchConfig, NotificationDispatcher
from pawmesh.app.broadcasts.entitlements import EntitlementResolver
from pawmesh.app.broadcasts.models import (
    AlertType,
    BroadcastAlert,
    CreateBroadcastResult,
    DispatchResult,
    ReportOutcome,
    SupportOutcome,
)
from pawmesh.app.broadcasts.moderation import InteractionLedger
from pawmesh.app.broadcasts.proximity import ProximityResolver
from pawmesh.app.core.errors import NotOwner
from pawmesh.app.storage.base import BroadcastStore

logger = logging.getLogger(__name__)


class BroadcastService:

    def __init__(
        self,
        store: BroadcastStore,
        *,
        provider: Optional[PushProvider] = None,
        dispatch_config: Optional[DispatchConfig] = None,
        auto_dispatch: bool = True,
    ):
        self.store = store
        self.entitlements = EntitlementResolver(store)
        self.alerts = AlertStore(store, self.entitlements)
        self.cross_poster = SocialCrossPoster(store)
        self.ledger = InteractionLedger(store, self.alerts)
        self.proximity = ProximityResolver(store)
        self.dispatcher = NotificationDispatcher(
            store,
            self.entitlements,
            self.proximity,
            provider,
            dispatch_config or DispatchConfig(),
        )
        self.auto_dispatch = auto_dispatch
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, store: BroadcastStore, settings: Any) -> "BroadcastService":
        return cls(
            store,
            provider=build_push_provider(settings),
            dispatch_config=DispatchConfig.from_settings(settings),
        )

    @property
    def provider(self) -> Optional[PushProvider]:
        return self.dispatcher.provider

    @property
    def pending_dispatches(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    # ── Alert lifecycle ──

    async def create_broadcast(
        self,
        creator_id: str,
        *,
        latitude: float,
        longitude: float,
        alert_type: Union[str, AlertType],
        range_km: float,
        duration_hours: float,
        title: Optional[str] = None,
        description: Optional[str] = None,
        photo_ref: Optional[str] = None,
        location_label: Optional[str] = None,
        post_to_social: bool = False,
    ) -> CreateBroadcastResult:
        """
        Create an alert, cross-post it if requested, schedule the fan-out.

        Raises CapExceeded / ValidationError / NotFoundError before anything
        is written. Cross-post failures are reported on the result only.
        """
        alert = await self.alerts.create(
            creator_id,
            latitude=latitude,
            longitude=longitude,
            alert_type=alert_type,
            range_km=range_km,
            duration_hours=duration_hours,
            title=title,
            description=description,
            photo_ref=photo_ref,
            location_label=location_label,
        )

        outcome = await self.cross_poster.cross_post(alert, opted_in=post_to_social)
        alert.social_status = outcome.status
        alert.social_post_id = outcome.post_id

        if self.auto_dispatch:
            self._schedule_dispatch(alert.alert_id)

        return CreateBroadcastResult(
            alert=alert,
            social_status=outcome.status,
            social_error=outcome.error,
        )

    async def get_broadcast(self, alert_id: str) -> BroadcastAlert:
        return await self.alerts.get(alert_id)

    async def update_broadcast(
        self,
        alert_id: str,
        editor_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> BroadcastAlert:
        return await self.alerts.update(
            alert_id, editor_id, title=title, description=description,
        )

    async def remove_broadcast(self, alert_id: str, user_id: str) -> bool:
        return await self.alerts.deactivate(alert_id, user_id)

    async def list_visible(
        self,
        *,
        now: Optional[datetime] = None,
        hidden_ids: Iterable[str] = (),
        blocked_user_ids: Iterable[str] = (),
    ) -> List[BroadcastAlert]:
        alerts = await self.alerts.list_visible(now)
        return filter_visible(
            alerts, now, hidden_ids=hidden_ids, blocked_user_ids=blocked_user_ids,
        )

    async def caps_for(self, user_id: str) -> Dict[str, Any]:
        """Effective caps plus base caps, for the upsell prompt."""
        entitlement = await self.entitlements.resolve(user_id)
        return {
            "user_id": user_id,
            "tier": entitlement.base_tier.value,
            "effective_tier": entitlement.effective_tier.value,
            "inherited_from": entitlement.inherited_from,
            "override_active": entitlement.override_active,
            "caps": entitlement.caps.to_dict(),
            "base_caps": entitlement.base_caps.to_dict(),
        }

    # ── Interactions ──

    async def support(self, alert_id: str, user_id: str) -> SupportOutcome:
        return await self.ledger.support(alert_id, user_id)

    async def report(self, alert_id: str, user_id: str) -> ReportOutcome:
        return await self.ledger.report(alert_id, user_id)

    # ── Notifications ──

    async def dispatch_notifications(
        self, alert_id: str, requested_by: Optional[str] = None,
    ) -> DispatchResult:
        """Run the fan-out now. A `requested_by` caller must own the alert."""
        if requested_by is not None:
            alert = await self.alerts.get(alert_id)
            if alert.creator_id != requested_by:
                raise NotOwner(alert_id=alert_id, user_id=requested_by)
        return await self.dispatcher.dispatch(alert_id)

    def _schedule_dispatch(self, alert_id: str) -> None:
        task = asyncio.create_task(self._dispatch_in_background(alert_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch_in_background(self, alert_id: str) -> None:
        try:
            await self.dispatcher.dispatch(alert_id)
        except Exception as exc:
            logger.error(
                "Background dispatch for alert %s failed: %s", alert_id, exc,
                extra={"alert_id": alert_id},
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for every scheduled dispatch to finish."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.store.close()
