"""
push.py — Push notification providers.

Delivery mechanism:
    • One multicast call per batch of at most 500 device tokens
    • Payload: title, body, string-valued data map, optional image
    • The provider returns a verdict for every token in the batch

Two providers:

    SimulatedPushProvider — logs the notification and accepts every
                            token (development / tests)
    FcmPushProvider       — Firebase Cloud Messaging via firebase-admin;
                            the SDK call is blocking, so it runs on a
                            worker thread with asyncio.to_thread

`build_push_provider(settings)` returns None when push is switched off
or the configured provider cannot be initialised; the dispatcher records
that as `provider_unavailable` instead of failing.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import firebase_admin
from firebase_admin import credentials, messaging

from pawmesh.app.broadcasts.models import PushNotification
from pawmesh.app.core.errors import DispatchProviderUnavailable

logger = logging.getLogger(__name__)


@dataclass
class PushBatchResult:
    """Per-token verdicts for one multicast call, in token order."""
    tokens: List[str]
    verdicts: List[bool]
    errors: Dict[str, str] = field(default_factory=dict)


class PushProvider(ABC):
    name: str = "push"

    @abstractmethod
    async def send_batch(
        self, tokens: List[str], notification: PushNotification,
    ) -> PushBatchResult: ...


# ═══════════════════════════════════════════════════════════════════════════
# Simulation
# ═══════════════════════════════════════════════════════════════════════════

class SimulatedPushProvider(PushProvider):
    """
    Logs instead of sending. Every token is accepted unless listed in
    `rejected_tokens`, which lets development setups exercise the
    partial-failure path.
    """

    name = "simulation"

    def __init__(self, rejected_tokens: Iterable[str] = ()):
        self.rejected_tokens = set(rejected_tokens)
        self.sent_batches: List[List[str]] = []

    async def send_batch(
        self, tokens: List[str], notification: PushNotification,
    ) -> PushBatchResult:
        self.sent_batches.append(list(tokens))
        verdicts = [t not in self.rejected_tokens for t in tokens]
        logger.info(
            "[PUSH:simulated] %s → %d tokens (%d rejected)",
            notification.title, len(tokens), verdicts.count(False),
        )
        return PushBatchResult(
            tokens=list(tokens),
            verdicts=verdicts,
            errors={t: "simulated rejection" for t, ok in zip(tokens, verdicts) if not ok},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Firebase Cloud Messaging
# ═══════════════════════════════════════════════════════════════════════════

class FcmPushProvider(PushProvider):

    name = "fcm"

    def __init__(self, credentials_file: str, *, app_name: str = "pawmesh"):
        try:
            self._app = firebase_admin.get_app(app_name)
        except ValueError:
            try:
                cred = credentials.Certificate(credentials_file)
                self._app = firebase_admin.initialize_app(cred, name=app_name)
            except Exception as exc:
                raise DispatchProviderUnavailable(self.name, str(exc)) from exc
        logger.info("Firebase app '%s' initialised", app_name)

    async def send_batch(
        self, tokens: List[str], notification: PushNotification,
    ) -> PushBatchResult:
        message = messaging.MulticastMessage(
            tokens=list(tokens),
            notification=messaging.Notification(
                title=notification.title,
                body=notification.body,
                image=notification.image,
            ),
            data={k: str(v) for k, v in notification.data.items()},
        )
        response = await asyncio.to_thread(
            messaging.send_each_for_multicast, message, app=self._app,
        )

        verdicts: List[bool] = []
        errors: Dict[str, str] = {}
        for token, item in zip(tokens, response.responses):
            verdicts.append(bool(item.success))
            if not item.success:
                errors[token] = str(item.exception)
        return PushBatchResult(tokens=list(tokens), verdicts=verdicts, errors=errors)


def build_push_provider(settings: Any) -> Optional[PushProvider]:
    """Provider for the configured PUSH_PROVIDER, or None if unavailable."""
    kind = settings.PUSH_PROVIDER
    if kind == "none":
        logger.warning("Push provider disabled (PUSH_PROVIDER=none)")
        return None
    if kind == "simulation":
        return SimulatedPushProvider()
    if kind == "fcm":
        if not settings.FCM_CREDENTIALS_FILE:
            logger.warning("PUSH_PROVIDER=fcm but FCM_CREDENTIALS_FILE is not set")
            return None
        try:
            return FcmPushProvider(settings.FCM_CREDENTIALS_FILE)
        except DispatchProviderUnavailable as exc:
            logger.error("%s", exc.message)
            return None
    logger.warning("Unknown push provider '%s'", kind)
    return None
