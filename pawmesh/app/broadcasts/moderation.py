"""
moderation.py — Support/report ledger and report-driven auto-hide.

The interaction row is the source of truth; `support_count` and
`report_count` on the alert are a cache kept in step by the store in the
same transaction as the ledger write.

═══════════════════════════════════════════════════════════════════════════
AUTO-HIDE
═══════════════════════════════════════════════════════════════════════════

    report inserted ──► counter read back ──► count > 10 ? ──► deactivate
                                                 │
                                                 └── no ──► stays active

The check runs on the value returned by the same write, so the reporter
who tips the count over sees `auto_hidden=True` in their own response.
"""

from __future__ import annotations

import logging

from pawmesh.app.broadcasts.alert_store import SYSTEM, AlertStore
from pawmesh.app.broadcasts.models import (
    Interaction,
    InteractionType,
    ReportOutcome,
    SupportOutcome,
)
from pawmesh.app.core.errors import AlreadyReported, DuplicateInteraction
from pawmesh.app.storage.base import BroadcastStore

logger = logging.getLogger(__name__)

# Strictly greater than: the 10th report keeps the alert, the 11th hides it
AUTO_HIDE_REPORT_THRESHOLD = 10


class InteractionLedger:

    def __init__(self, store: BroadcastStore, alerts: AlertStore):
        self.store = store
        self.alerts = alerts

    async def support(self, alert_id: str, user_id: str) -> SupportOutcome:
        """Toggle the user's support: remove it if present, add it otherwise."""
        remaining = await self.store.remove_interaction(
            alert_id, user_id, InteractionType.SUPPORT,
        )
        if remaining is not None:
            logger.debug(
                "Support withdrawn on %s by %s (count=%d)",
                alert_id, user_id, remaining,
                extra={"alert_id": alert_id, "user_id": user_id},
            )
            return SupportOutcome(support_count=remaining, liked=False)

        try:
            count = await self.store.add_interaction(
                Interaction(alert_id, user_id, InteractionType.SUPPORT)
            )
        except DuplicateInteraction:
            # A concurrent request from the same user added it first
            alert = await self.alerts.get(alert_id)
            return SupportOutcome(support_count=alert.support_count, liked=True)

        logger.debug(
            "Support added on %s by %s (count=%d)", alert_id, user_id, count,
            extra={"alert_id": alert_id, "user_id": user_id},
        )
        return SupportOutcome(support_count=count, liked=True)

    async def report(self, alert_id: str, user_id: str) -> ReportOutcome:
        """
        Record a report; reports are add-only.

        Raises
        ------
        AlreadyReported
            This user has already reported the alert.
        NotFoundError
            Unknown alert.
        """
        try:
            count = await self.store.add_interaction(
                Interaction(alert_id, user_id, InteractionType.REPORT)
            )
        except DuplicateInteraction as exc:
            raise AlreadyReported(alert_id=alert_id, user_id=user_id) from exc

        logger.info(
            "Report on %s by %s (count=%d)", alert_id, user_id, count,
            extra={"alert_id": alert_id, "user_id": user_id},
        )

        if count > AUTO_HIDE_REPORT_THRESHOLD:
            changed = await self.alerts.deactivate(alert_id, SYSTEM)
            if changed:
                logger.warning(
                    "Alert %s auto-hidden after %d reports", alert_id, count,
                    extra={"alert_id": alert_id},
                )
            return ReportOutcome(report_count=count, auto_hidden=True)

        return ReportOutcome(report_count=count, auto_hidden=False)
