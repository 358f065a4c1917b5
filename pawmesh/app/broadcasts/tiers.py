"""
tiers.py — Tier policy table and broadcast cap enforcement.

═══════════════════════════════════════════════════════════════════════════
TIER POLICY
═══════════════════════════════════════════════════════════════════════════

    Tier        max range    max duration
    ────────    ─────────    ────────────
    free        10 km        12 h
    premium     25 km        24 h
    gold        50 km        48 h
    add-on      150 km       72 h   (overrides any base tier while active)

Both axes are strictly increasing free → premium → gold, and the add-on
ceiling dominates every base tier.

The same `validate` runs in two places:
    • client UX  — `clamp` lowers the request and returns the violations
                   so the form can show the limit and an upgrade prompt
    • server     — `enforce` rejects with CapExceeded; it never clamps,
                   since a silently lowered request hides a billing-relevant
                   limit from the audit trail
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from pawmesh.app.broadcasts.models import Tier
from pawmesh.app.core.errors import CapExceeded


@dataclass(frozen=True)
class Caps:
    max_range_km: float
    max_duration_hours: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "max_range_km": self.max_range_km,
            "max_duration_hours": self.max_duration_hours,
        }


@dataclass(frozen=True)
class BroadcastRequest:
    range_km: float
    duration_hours: float


@dataclass(frozen=True)
class CapViolation:
    field: str
    requested_value: float
    allowed_max: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "requested_value": self.requested_value,
            "allowed_max": self.allowed_max,
        }


TIER_POLICY: Dict[Tier, Caps] = {
    Tier.FREE:    Caps(max_range_km=10.0, max_duration_hours=12.0),
    Tier.PREMIUM: Caps(max_range_km=25.0, max_duration_hours=24.0),
    Tier.GOLD:    Caps(max_range_km=50.0, max_duration_hours=48.0),
}

ADDON_OVERRIDE_CAPS = Caps(max_range_km=150.0, max_duration_hours=72.0)


def resolve_caps(tier: Tier, override_active: bool = False) -> Caps:
    """Caps for a tier; an active add-on replaces them with the add-on ceiling."""
    if override_active:
        return ADDON_OVERRIDE_CAPS
    return TIER_POLICY[tier]


def validate(request: BroadcastRequest, caps: Caps) -> List[CapViolation]:
    """
    Check a request against caps.

    Returns every violation, range first; an empty list means the
    request is admissible.
    """
    violations: List[CapViolation] = []
    if request.range_km > caps.max_range_km:
        violations.append(
            CapViolation("range_km", request.range_km, caps.max_range_km)
        )
    if request.duration_hours > caps.max_duration_hours:
        violations.append(
            CapViolation(
                "duration_hours", request.duration_hours, caps.max_duration_hours,
            )
        )
    return violations


def enforce(request: BroadcastRequest, caps: Caps, *, tier_label: str) -> None:
    """Server-side hard check. Raises CapExceeded on any violation."""
    violations = validate(request, caps)
    if violations:
        raise CapExceeded(violations, tier=tier_label)


def clamp(
    request: BroadcastRequest, caps: Caps,
) -> Tuple[BroadcastRequest, List[CapViolation]]:
    """Client-side soft clamp: lowered request plus what was lowered."""
    violations = validate(request, caps)
    clamped = BroadcastRequest(
        range_km=min(request.range_km, caps.max_range_km),
        duration_hours=min(request.duration_hours, caps.max_duration_hours),
    )
    return clamped, violations
