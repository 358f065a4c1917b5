"""
entitlements.py — Effective tier + add-on override for a user.

Resolution is deliberately shallow:

    1. own tier
    2. exactly one hop through an accepted family-plan link
       (the inviter's own family link is never followed)
    3. any active add-on credit, independent of tier

Side lookups never fail the caller: a broken family link or an
unreadable add-on row degrades to "own tier" / "no override".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pawmesh.app.broadcasts.models import Tier
from pawmesh.app.broadcasts.tiers import Caps, resolve_caps
from pawmesh.app.core.errors import NotFoundError
from pawmesh.app.storage.base import BroadcastStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlement:
    user_id: str
    base_tier: Tier
    effective_tier: Tier
    override_active: bool = False
    inherited_from: Optional[str] = None

    @property
    def caps(self) -> Caps:
        return resolve_caps(self.effective_tier, self.override_active)

    @property
    def base_caps(self) -> Caps:
        """Caps without the add-on; used to decide whether a credit is spent."""
        return resolve_caps(self.effective_tier, False)

    @property
    def label(self) -> str:
        if self.override_active:
            return f"{self.effective_tier.value}+addon"
        return self.effective_tier.value


class EntitlementResolver:
    """Resolves `Entitlement` objects from the entity store."""

    def __init__(self, store: BroadcastStore):
        self.store = store

    async def resolve(
        self, user_id: str, *, now: Optional[datetime] = None,
    ) -> Entitlement:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id=user_id)

        effective = user.tier
        inherited_from = None

        if user.family_inviter_id and user.family_inviter_id != user.user_id:
            try:
                inviter = await self.store.get_user(user.family_inviter_id)
            except Exception as exc:
                logger.warning(
                    "Family tier lookup failed for %s (inviter %s): %s, "
                    "using own tier",
                    user_id, user.family_inviter_id, exc,
                    extra={"user_id": user_id},
                )
            else:
                if inviter is None:
                    logger.warning(
                        "Family inviter %s of %s not found, using own tier",
                        user.family_inviter_id, user_id,
                        extra={"user_id": user_id},
                    )
                else:
                    effective = inviter.tier
                    inherited_from = inviter.user_id

        override = False
        try:
            credit = await self.store.get_addon_credit(user_id)
            override = credit is not None and credit.is_active(now)
        except Exception as exc:
            logger.warning(
                "Add-on lookup failed for %s: %s, treating as no override",
                user_id, exc, extra={"user_id": user_id},
            )

        return Entitlement(
            user_id=user_id,
            base_tier=user.tier,
            effective_tier=effective,
            override_active=override,
            inherited_from=inherited_from,
        )
