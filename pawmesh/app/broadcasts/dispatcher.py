"""
dispatcher.py — Batched push fan-out for one broadcast alert.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Load alert      │  inactive → audit "inactive", no proximity call
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  2. Audience radius │  creator's CURRENT effective caps × 1000
    └─────────┬───────────┘  (not the alert's own range_meters)
              ▼
    ┌─────────────────────┐
    │  3. Proximity query │  errors (and a vanished creator) are audited
    └─────────┬───────────┘  as "failed", then propagate
              ▼
    ┌─────────────────────┐
    │  4. Token filter    │  none left → audit "no_recipients"
    └─────────┬───────────┘  disabled / no provider → audit, nothing sent
              ▼
    ┌─────────────────────┐
    │  5. Partition       │  ≤ 500 tokens per batch
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  6. Send            │  sequential, fixed pause between batches,
    │                     │  each call bounded by a timeout; a batch that
    │                     │  raises counts all its tokens as failed
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  7-8. Aggregate +   │  audit record is always attempted; a failed
    │       audit record  │  write is logged and swallowed
    └─────────┬───────────┘
              ▼
          DispatchResult

═══════════════════════════════════════════════════════════════════════════
STATUS TAGS
═══════════════════════════════════════════════════════════════════════════

    Status                 When
    ────────────────────   ───────────────────────────────────────────
    sent                   every token accepted
    partial_failure        some accepted, some failed
    failed                 no token accepted
    no_recipients          nobody eligible has a push token
    inactive               alert removed or auto-hidden
    disabled               NOTIFICATIONS_ENABLED is off
    provider_unavailable   no push provider configured / initialised

For `disabled` and `provider_unavailable` the audience is still resolved
so the record shows who *should* have been notified.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, List, Optional

from pawmesh.app.broadcasts.channels.push import PushProvider
from pawmesh.app.broadcasts.entitlements import EntitlementResolver
from pawmesh.app.broadcasts.models import (
    BroadcastAlert,
    DispatchResult,
    DispatchStatus,
    NotificationDispatchRecord,
    PushNotification,
)
from pawmesh.app.broadcasts.proximity import ProximityResolver
from pawmesh.app.core.config import MAX_PUSH_BATCH_SIZE
from pawmesh.app.core.errors import BatchSendFailed, NotFoundError
from pawmesh.app.storage.base import BroadcastStore

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DispatchConfig:
    """Injected dispatcher settings; there is no module-level switch."""
    enabled: bool = True
    batch_size: int = MAX_PUSH_BATCH_SIZE
    batch_delay_seconds: float = 0.25
    batch_timeout_seconds: float = 15.0
    min_trust_score: int = 5

    def __post_init__(self) -> None:
        if not 1 <= self.batch_size <= MAX_PUSH_BATCH_SIZE:
            raise ValueError(
                f"batch_size must be between 1 and {MAX_PUSH_BATCH_SIZE}, "
                f"got {self.batch_size}"
            )
        if self.batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds must be >= 0")
        if self.batch_timeout_seconds <= 0:
            raise ValueError("batch_timeout_seconds must be positive")

    @classmethod
    def from_settings(cls, settings: Any) -> "DispatchConfig":
        return cls(
            enabled=settings.NOTIFICATIONS_ENABLED,
            batch_size=settings.PUSH_BATCH_SIZE,
            batch_delay_seconds=settings.PUSH_BATCH_DELAY_SECONDS,
            batch_timeout_seconds=settings.PUSH_BATCH_TIMEOUT_SECONDS,
            min_trust_score=settings.MIN_VOUCH_SCORE,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def partition(tokens: List[str], size: int) -> List[List[str]]:
    """Split tokens into consecutive batches of at most `size`."""
    return [tokens[i:i + size] for i in range(0, len(tokens), size)]


def build_notification(alert: BroadcastAlert) -> PushNotification:
    """Provider-agnostic payload for an alert."""
    body = alert.title or alert.description or "A pet near you needs help"
    return PushNotification(
        title=f"{alert.alert_type.value} pet alert nearby",
        body=body,
        data={
            "alert_id": alert.alert_id,
            "alert_type": alert.alert_type.value,
            "latitude": str(alert.latitude),
            "longitude": str(alert.longitude),
        },
        image=alert.photo_ref,
    )


def _status_for(success: int, failure: int) -> DispatchStatus:
    if failure == 0:
        return DispatchStatus.SENT
    if success == 0:
        return DispatchStatus.FAILED
    return DispatchStatus.PARTIAL_FAILURE


# ═══════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class NotificationDispatcher:

    def __init__(
        self,
        store: BroadcastStore,
        entitlements: EntitlementResolver,
        proximity: ProximityResolver,
        provider: Optional[PushProvider],
        config: DispatchConfig,
    ):
        self.store = store
        self.entitlements = entitlements
        self.proximity = proximity
        self.provider = provider
        self.config = config

    async def dispatch(self, alert_id: str) -> DispatchResult:
        """
        Notify every eligible nearby user about an alert.

        Raises
        ------
        NotFoundError
            Unknown alert or creator.
        Exception
            Whatever the proximity query raised.
        """
        started = time.perf_counter()
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)

        # ── Step 1: Inactive alerts are recorded but never fanned out ──
        if not alert.is_active:
            result = DispatchResult(alert_id=alert_id, status=DispatchStatus.INACTIVE)
            await self._record(result, recipient_count=0)
            logger.info(
                "Dispatch skipped for inactive alert %s", alert_id,
                extra={"alert_id": alert_id, "status": result.status.value},
            )
            return result

        radius_meters = 0
        try:
            # ── Step 2: Audience radius from the creator's current caps ──
            entitlement = await self.entitlements.resolve(alert.creator_id)
            radius_meters = round(entitlement.caps.max_range_km * 1000)

            # ── Step 3: Eligible audience ──
            recipients = await self.proximity.find_eligible(
                alert.latitude,
                alert.longitude,
                radius_meters,
                self.config.min_trust_score,
                exclude_user_id=alert.creator_id,
            )
        except Exception as exc:
            failed = DispatchResult(
                alert_id=alert_id,
                status=DispatchStatus.FAILED,
                radius_meters=radius_meters,
            )
            await self._record(failed, recipient_count=0, error=f"audience: {exc}")
            logger.error(
                "Dispatch for alert %s aborted resolving its audience: %s",
                alert_id, exc,
                extra={"alert_id": alert_id, "status": failed.status.value},
            )
            raise

        # ── Step 4: Reachable tokens ──
        tokens = [r.push_token for r in recipients if r.push_token]
        result = DispatchResult(
            alert_id=alert_id,
            status=DispatchStatus.NO_RECIPIENTS,
            radius_meters=radius_meters,
            eligible_count=len(recipients),
        )

        if not tokens:
            await self._record(result, recipient_count=0)
            self._log_outcome(result, started, recipient_count=0)
            return result

        if not self.config.enabled:
            result.status = DispatchStatus.DISABLED
            await self._record(result, recipient_count=len(tokens))
            self._log_outcome(result, started, recipient_count=len(tokens))
            return result

        if self.provider is None:
            result.status = DispatchStatus.PROVIDER_UNAVAILABLE
            await self._record(
                result,
                recipient_count=len(tokens),
                error="no push provider configured",
            )
            self._log_outcome(result, started, recipient_count=len(tokens))
            return result

        # ── Steps 5-7: Partition, send sequentially, aggregate ──
        notification = build_notification(alert)
        batches = partition(tokens, self.config.batch_size)
        success = failure = 0
        errors: List[str] = []

        for index, batch in enumerate(batches):
            if index:
                await asyncio.sleep(self.config.batch_delay_seconds)
            ok, failed, error = await self._send_batch(alert_id, index, batch, notification)
            success += ok
            failure += failed
            if error:
                errors.append(error)

        result.status = _status_for(success, failure)
        result.notified = success
        result.failed = failure
        result.batches = len(batches)

        # ── Step 8: Audit record ──
        await self._record(
            result,
            recipient_count=len(tokens),
            error="; ".join(errors) or None,
        )
        self._log_outcome(result, started, recipient_count=len(tokens))

        # ── Step 9 ──
        return result

    async def _send_batch(
        self,
        alert_id: str,
        index: int,
        batch: List[str],
        notification: PushNotification,
    ) -> tuple:
        """Send one batch. Returns (success, failure, error message or None)."""
        try:
            response = await asyncio.wait_for(
                self.provider.send_batch(batch, notification),
                timeout=self.config.batch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            failure = BatchSendFailed(
                alert_id, index,
                f"timed out after {self.config.batch_timeout_seconds:g}s",
            )
            logger.warning(
                "%s", failure.message,
                extra={"alert_id": alert_id, "batch": index},
            )
            return 0, len(batch), failure.message
        except Exception as exc:
            failure = BatchSendFailed(alert_id, index, str(exc))
            logger.warning(
                "%s", failure.message,
                extra={"alert_id": alert_id, "batch": index},
            )
            return 0, len(batch), failure.message

        # Tokens the provider returned no verdict for count as failures
        verdicts = list(response.verdicts[:len(batch)])
        ok = sum(1 for v in verdicts if v)
        failed = len(batch) - ok

        logger.debug(
            "Batch %d for alert %s: %d ok, %d failed",
            index, alert_id, ok, failed,
            extra={"alert_id": alert_id, "batch": index},
        )
        if not failed:
            return ok, failed, None

        reasons = Counter(response.errors.values())
        missing = failed - sum(reasons.values())
        if missing > 0:
            reasons["no verdict"] += missing
        summary = ", ".join(f"{reason} x{count}" for reason, count in reasons.most_common())
        message = f"Batch {index} rejected {failed} token(s): {summary}"
        logger.warning(
            "%s", message,
            extra={"alert_id": alert_id, "batch": index},
        )
        return ok, failed, message

    async def _record(
        self,
        result: DispatchResult,
        *,
        recipient_count: int,
        error: Optional[str] = None,
    ) -> None:
        record = NotificationDispatchRecord(
            alert_id=result.alert_id,
            status=result.status,
            recipient_count=recipient_count,
            success_count=result.notified,
            failure_count=result.failed,
            batch_count=result.batches,
            radius_meters=result.radius_meters,
            error=error,
        )
        try:
            await self.store.insert_dispatch_record(record)
        except Exception as exc:
            logger.error(
                "Failed to write dispatch record for alert %s: %s",
                result.alert_id, exc,
                extra={"alert_id": result.alert_id, "status": result.status.value},
            )

    @staticmethod
    def _log_outcome(
        result: DispatchResult, started: float, *, recipient_count: int,
    ) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        logger.info(
            "Dispatch for alert %s: %s, %d/%d notified in %d batches "
            "(radius=%dm, eligible=%d)",
            result.alert_id, result.status.value,
            result.notified, recipient_count, result.batches,
            result.radius_meters, result.eligible_count,
            extra={
                "alert_id": result.alert_id,
                "recipient_count": recipient_count,
                "status": result.status.value,
                "duration_ms": duration_ms,
            },
        )
