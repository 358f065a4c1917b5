"""
models.py — Shared data structures for the geo-broadcast pipeline.

Defines:
    • Tier, AlertType, SocialStatus, InteractionType, DispatchStatus
    • UserProfile     — audience member / alert creator
    • AddOnCredit     — paid time-boxed cap override
    • BroadcastAlert  — the geolocated, time-boxed alert
    • Interaction     — one support/report ledger row
    • SocialPost      — companion discussion post
    • Recipient       — resolved push target
    • PushNotification — provider-agnostic notification payload
    • NotificationDispatchRecord — audit row written for every dispatch
    • Result objects returned by the service facade

═══════════════════════════════════════════════════════════════════════════
ALERT LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    created (is_active=True)
        │
        ├── owner edits title/description ───────► still active
        │
        ├── owner removes ───────────────────────┐
        │                                        ▼
        └── report_count > 10 (auto-hide) ───► is_active=False (terminal)

    expires_at <= now  →  not surfaced, but nothing is swept or rewritten.

Alerts are never hard-deleted; deactivation is the only terminal state
and it is idempotent.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Tier(str, Enum):
    """Subscription tiers, cheapest first."""
    FREE    = "free"
    PREMIUM = "premium"
    GOLD    = "gold"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Tier":
        """
        Normalise a stored tier label.

        `plus` is the legacy label for premium; anything unknown or empty
        resolves to free.
        """
        normalized = str(value or "").strip().lower()
        if normalized == "plus":
            return cls.PREMIUM
        try:
            return cls(normalized)
        except ValueError:
            return cls.FREE


class AlertType(str, Enum):
    STRAY  = "Stray"
    LOST   = "Lost"
    OTHERS = "Others"


# Only these types may carry a companion social post
CROSS_POSTABLE_TYPES = frozenset({AlertType.STRAY, AlertType.LOST})


class SocialStatus(str, Enum):
    NONE   = "none"
    POSTED = "posted"
    FAILED = "failed"


class InteractionType(str, Enum):
    SUPPORT = "support"
    REPORT  = "report"


class DispatchStatus(str, Enum):
    """Status tag persisted on every NotificationDispatchRecord."""
    SENT                 = "sent"                  # every token accepted
    PARTIAL_FAILURE      = "partial_failure"       # some tokens failed
    FAILED               = "failed"                # no token accepted
    NO_RECIPIENTS        = "no_recipients"         # nobody eligible with a token
    INACTIVE             = "inactive"              # alert removed / auto-hidden
    DISABLED             = "disabled"              # notifications switched off
    PROVIDER_UNAVAILABLE = "provider_unavailable"  # no push provider configured


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
# Entities
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class UserProfile:
    """
    A platform user as seen by the broadcast pipeline.

    Attributes
    ----------
    user_id : str
    tier : Tier
        The user's own subscription tier.
    family_inviter_id : str | None
        Accepted family-plan link; the inviter's tier is inherited.
    vouch_score : int
        Community trust score; audiences are filtered on a minimum.
    push_token : str | None
        Device token for push delivery.
    latitude, longitude : float | None
        Last known position.
    """
    user_id: str
    tier: Tier = Tier.FREE
    family_inviter_id: Optional[str] = None
    vouch_score: int = 0
    push_token: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass
class AddOnCredit:
    """Paid "extra broadcast" credits that lift caps to the add-on ceiling."""
    user_id: str
    remaining: int = 0
    expires_at: Optional[datetime] = None
    kind: str = "extra_broadcast_72h"

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or _now()
        if self.remaining <= 0:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass
class BroadcastAlert:
    """A geolocated, time-boxed broadcast alert."""
    creator_id: str
    latitude: float
    longitude: float
    alert_type: AlertType
    range_km: float
    duration_hours: float
    title: Optional[str] = None
    description: Optional[str] = None
    photo_ref: Optional[str] = None
    location_label: Optional[str] = None
    alert_id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)
    is_active: bool = True
    support_count: int = 0
    report_count: int = 0
    social_post_id: Optional[str] = None
    social_status: SocialStatus = SocialStatus.NONE

    @property
    def range_meters(self) -> int:
        return round(self.range_km * 1000)

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(hours=self.duration_hours)

    def is_visible(self, now: Optional[datetime] = None) -> bool:
        """Active and not yet expired; the only alerts consumers surface."""
        return self.is_active and self.expires_at > (now or _now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "creator_id": self.creator_id,
            "alert_type": self.alert_type.value,
            "title": self.title,
            "description": self.description,
            "photo_ref": self.photo_ref,
            "location": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "label": self.location_label,
            },
            "range_km": self.range_km,
            "range_meters": self.range_meters,
            "duration_hours": self.duration_hours,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "is_active": self.is_active,
            "support_count": self.support_count,
            "report_count": self.report_count,
            "social_post_id": self.social_post_id,
            "social_status": self.social_status.value,
        }


@dataclass
class Interaction:
    """Ledger row; unique per (alert_id, user_id, interaction_type)."""
    alert_id: str
    user_id: str
    interaction_type: InteractionType
    created_at: datetime = field(default_factory=_now)

    @property
    def key(self) -> tuple:
        return (self.alert_id, self.user_id, self.interaction_type)


@dataclass
class SocialPost:
    """Companion discussion thread linked back to an alert."""
    author_id: str
    title: str
    content: str
    alert_id: Optional[str] = None
    tags: List[str] = field(default_factory=lambda: ["News"])
    images: List[str] = field(default_factory=list)
    post_id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Recipient:
    """An eligible audience member returned by the proximity resolver."""
    user_id: str
    push_token: Optional[str] = None


@dataclass
class PushNotification:
    """Provider-agnostic notification payload."""
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    image: Optional[str] = None


@dataclass
class NotificationDispatchRecord:
    """
    Audit trail of one dispatch, written even when nothing was sent.

    recipient_count is the number of tokens that *should* have been
    notified, independent of whether the provider fired.
    """
    alert_id: str
    status: DispatchStatus
    recipient_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    batch_count: int = 0
    radius_meters: int = 0
    error: Optional[str] = None
    record_id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "alert_id": self.alert_id,
            "status": self.status.value,
            "recipient_count": self.recipient_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "batch_count": self.batch_count,
            "radius_meters": self.radius_meters,
            "error": self.error,
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CrossPostOutcome:
    status: SocialStatus
    post_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CreateBroadcastResult:
    """
    Outcome of `create_broadcast`.

    The alert is live whenever this object exists; `social_status` and
    `social_error` carry the best-effort cross-post outcome.
    """
    alert: BroadcastAlert
    social_status: SocialStatus = SocialStatus.NONE
    social_error: Optional[str] = None

    @property
    def alert_id(self) -> str:
        return self.alert.alert_id

    @property
    def partial_success(self) -> bool:
        return self.social_status == SocialStatus.FAILED


@dataclass(frozen=True)
class SupportOutcome:
    support_count: int
    liked: bool


@dataclass(frozen=True)
class ReportOutcome:
    report_count: int
    auto_hidden: bool


@dataclass
class DispatchResult:
    alert_id: str
    status: DispatchStatus
    notified: int = 0
    failed: int = 0
    radius_meters: int = 0
    eligible_count: int = 0
    batches: int = 0

    @property
    def reason(self) -> str:
        return self.status.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "status": self.status.value,
            "notified": self.notified,
            "failed": self.failed,
            "radius_meters": self.radius_meters,
            "eligible_count": self.eligible_count,
            "batches": self.batches,
        }
