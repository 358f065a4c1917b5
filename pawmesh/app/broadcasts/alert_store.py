"""
alert_store.py — Lifecycle owner of the BroadcastAlert entity.

═══════════════════════════════════════════════════════════════════════════
CREATE PATH
═══════════════════════════════════════════════════════════════════════════

    input checks ──► entitlement ──► cap check ──► [spend add-on] ──► insert
        │                                 │               │
        ▼                                 ▼               ▼
    ValidationError                  CapExceeded     CapExceeded
                                                   (credit raced to 0)

A request that fits the creator's base caps never touches the add-on
ledger. A request that only fits under the add-on ceiling spends exactly
one credit; if that spend fails the request is re-checked against the
base caps, which by construction rejects it. Nothing is written on any
rejection path.

Expiry is declarative: nothing sweeps expired alerts, and every consumer
filters on `is_active and expires_at > now`.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional, Union

from pawmesh.app.broadcasts.entitlements import EntitlementResolver
from pawmesh.app.broadcasts.models import AlertType, BroadcastAlert, _now
from pawmesh.app.broadcasts.tiers import BroadcastRequest, enforce, validate
from pawmesh.app.core.errors import (
    AlertInactive,
    NotFoundError,
    NotOwner,
    ValidationError,
)
from pawmesh.app.spatial.radius_utils import Coordinate
from pawmesh.app.storage.base import BroadcastStore

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500


class _SystemActor:
    """Actor used for moderation-driven deactivation (no owner check)."""

    def __repr__(self) -> str:
        return "SYSTEM"


SYSTEM = _SystemActor()

Actor = Union[str, _SystemActor]


# ═══════════════════════════════════════════════════════════════════════════
# Input normalisation
# ═══════════════════════════════════════════════════════════════════════════

def _clean_text(value: Optional[str], *, field: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters",
            field=field, length=len(text),
        )
    return text


def _parse_alert_type(value: Union[str, AlertType]) -> AlertType:
    if isinstance(value, AlertType):
        return value
    for member in AlertType:
        if member.value.lower() == str(value).strip().lower():
            return member
    raise ValidationError(
        f"Unknown alert type '{value}'",
        field="alert_type",
        allowed=[t.value for t in AlertType],
    )


def filter_visible(
    alerts: Iterable[BroadcastAlert],
    now: Optional[datetime] = None,
    *,
    hidden_ids: Iterable[str] = (),
    blocked_user_ids: Iterable[str] = (),
) -> List[BroadcastAlert]:
    """
    Apply per-viewer hide/block state on top of the shared visibility rule.

    Hidden alerts and blocked creators are viewer-local preferences; this
    never mutates the alerts or the store.
    """
    now = now or _now()
    hidden = set(hidden_ids)
    blocked = set(blocked_user_ids)
    return [
        a for a in alerts
        if a.is_visible(now)
        and a.alert_id not in hidden
        and a.creator_id not in blocked
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Alert Store
# ═══════════════════════════════════════════════════════════════════════════

class AlertStore:

    def __init__(self, store: BroadcastStore, entitlements: EntitlementResolver):
        self.store = store
        self.entitlements = entitlements

    async def create(
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
        now: Optional[datetime] = None,
    ) -> BroadcastAlert:
        """
        Validate, cap-check and insert a new alert.

        Raises
        ------
        ValidationError
            Malformed input (coordinates, lengths, range/duration that is not
            a positive finite number).
        CapExceeded
            Range or duration above the creator's effective ceiling.
        NotFoundError
            Unknown creator.
        """
        now = now or _now()

        try:
            Coordinate(latitude, longitude)
        except ValueError as exc:
            raise ValidationError(str(exc), field="location") from exc
        if not math.isfinite(range_km) or range_km <= 0:
            raise ValidationError(
                "range_km must be a positive number", field="range_km",
            )
        if not math.isfinite(duration_hours) or duration_hours <= 0:
            raise ValidationError(
                "duration_hours must be a positive number", field="duration_hours",
            )
        kind = _parse_alert_type(alert_type)
        title = _clean_text(title, field="title", max_length=TITLE_MAX_LENGTH)
        description = _clean_text(
            description, field="description", max_length=DESCRIPTION_MAX_LENGTH,
        )

        entitlement = await self.entitlements.resolve(creator_id, now=now)
        request = BroadcastRequest(range_km=range_km, duration_hours=duration_hours)
        base_label = entitlement.effective_tier.value

        if validate(request, entitlement.base_caps):
            if not entitlement.override_active:
                enforce(request, entitlement.base_caps, tier_label=base_label)

            enforce(request, entitlement.caps, tier_label=entitlement.label)
            spent = await self.store.consume_addon_credit(creator_id, now)
            if not spent:
                logger.info(
                    "Add-on credit for %s no longer available, re-checking "
                    "against %s caps",
                    creator_id, base_label, extra={"user_id": creator_id},
                )
                enforce(request, entitlement.base_caps, tier_label=base_label)
            else:
                logger.info(
                    "Spent one add-on credit for %s (range=%gkm, duration=%gh)",
                    creator_id, range_km, duration_hours,
                    extra={"user_id": creator_id},
                )

        alert = BroadcastAlert(
            creator_id=creator_id,
            latitude=latitude,
            longitude=longitude,
            alert_type=kind,
            range_km=range_km,
            duration_hours=duration_hours,
            title=title,
            description=description,
            photo_ref=photo_ref,
            location_label=location_label,
            created_at=now,
        )
        created = await self.store.insert_alert(alert)

        logger.info(
            "Created %s alert %s (range=%dm, expires=%s, tier=%s)",
            kind.value, created.alert_id, created.range_meters,
            created.expires_at.isoformat(), entitlement.label,
            extra={"alert_id": created.alert_id, "user_id": creator_id},
        )
        return created

    async def get(self, alert_id: str) -> BroadcastAlert:
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        return alert

    async def update(
        self,
        alert_id: str,
        editor_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> BroadcastAlert:
        """
        Owner-only edit of title/description on an active alert.

        A field left as None keeps its current value; an empty or
        whitespace-only string clears it.
        """
        alert = await self.get(alert_id)
        if alert.creator_id != editor_id:
            raise NotOwner(alert_id=alert_id, user_id=editor_id)
        if not alert.is_active:
            raise AlertInactive(alert_id)

        new_title = alert.title if title is None else _clean_text(
            title, field="title", max_length=TITLE_MAX_LENGTH,
        )
        new_description = alert.description if description is None else _clean_text(
            description, field="description", max_length=DESCRIPTION_MAX_LENGTH,
        )

        updated = await self.store.update_alert_content(
            alert_id, title=new_title, description=new_description,
        )
        if updated is None:
            raise NotFoundError("Alert", alert_id=alert_id)

        logger.info(
            "Alert %s edited by owner", alert_id,
            extra={"alert_id": alert_id, "user_id": editor_id},
        )
        return updated

    async def deactivate(self, alert_id: str, actor: Actor) -> bool:
        """
        Set is_active=False. Idempotent.

        Returns True when this call changed the alert, False when it was
        already inactive. Non-system actors must own the alert.
        """
        if actor is not SYSTEM:
            alert = await self.get(alert_id)
            if alert.creator_id != actor:
                raise NotOwner(alert_id=alert_id, user_id=str(actor))

        changed = await self.store.deactivate_alert(alert_id)
        if changed:
            logger.info(
                "Alert %s deactivated by %r", alert_id, actor,
                extra={"alert_id": alert_id},
            )
        else:
            logger.debug("Alert %s already inactive", alert_id)
        return changed

    async def list_visible(self, now: Optional[datetime] = None) -> List[BroadcastAlert]:
        """Active, unexpired alerts, newest first."""
        now = now or _now()
        alerts = await self.store.list_active_alerts(now)
        return sorted(
            (a for a in alerts if a.is_visible(now)),
            key=lambda a: a.created_at,
            reverse=True,
        )
