"""
cross_post.py — Best-effort companion discussion post for an alert.

The alert is the primary artifact and is already committed by the time
this runs. Every failure here degrades to `social_status=failed` on the
alert and a `CrossPostOutcome` carrying the error; nothing is raised to
the create path and the alert is never rolled back.

    not opted in / type not cross-postable  →  none
    post written and linked                 →  posted
    post write failed                       →  failed
    post written, link-back failed          →  failed (orphan post removed)
"""

from __future__ import annotations

import logging
from typing import List

from pawmesh.app.broadcasts.models import (
    CROSS_POSTABLE_TYPES,
    BroadcastAlert,
    CrossPostOutcome,
    SocialPost,
    SocialStatus,
)
from pawmesh.app.core.errors import CrossPostFailed
from pawmesh.app.storage.base import BroadcastStore

logger = logging.getLogger(__name__)

SOCIAL_POST_TAGS = ["News"]


def build_post_title(alert: BroadcastAlert) -> str:
    return alert.title or f"Broadcast ({alert.alert_type.value})"


def build_post_body(alert: BroadcastAlert) -> str:
    """Canonical post text: type line, title, description, location."""
    lines: List[str] = [f"{alert.alert_type.value} pet alert"]
    if alert.title:
        lines.append(alert.title)
    if alert.description:
        lines.append(alert.description)
    if alert.location_label:
        lines.append(f"Location: {alert.location_label}")
    return "\n\n".join(lines)


def is_cross_postable(alert: BroadcastAlert, opted_in: bool) -> bool:
    return opted_in and alert.alert_type in CROSS_POSTABLE_TYPES


class SocialCrossPoster:

    def __init__(self, store: BroadcastStore):
        self.store = store

    async def cross_post(
        self, alert: BroadcastAlert, *, opted_in: bool,
    ) -> CrossPostOutcome:
        if not is_cross_postable(alert, opted_in):
            return CrossPostOutcome(status=SocialStatus.NONE)

        post = SocialPost(
            author_id=alert.creator_id,
            alert_id=alert.alert_id,
            title=build_post_title(alert),
            content=build_post_body(alert),
            tags=list(SOCIAL_POST_TAGS),
            images=[alert.photo_ref] if alert.photo_ref else [],
        )

        try:
            await self.store.insert_social_post(post)
        except Exception as exc:
            failure = CrossPostFailed(alert.alert_id, str(exc))
            logger.warning(
                "%s", failure.message, extra={"alert_id": alert.alert_id},
            )
            await self._mark_failed(alert)
            return CrossPostOutcome(status=SocialStatus.FAILED, error=str(exc))

        try:
            await self.store.set_social_link(
                alert.alert_id, post_id=post.post_id, status=SocialStatus.POSTED,
            )
        except Exception as exc:
            failure = CrossPostFailed(alert.alert_id, f"link-back failed: {exc}")
            logger.warning(
                "%s", failure.message, extra={"alert_id": alert.alert_id},
            )
            try:
                await self.store.delete_social_post(post.post_id)
            except Exception as cleanup_exc:
                logger.error(
                    "Could not remove orphan post %s for alert %s: %s",
                    post.post_id, alert.alert_id, cleanup_exc,
                    extra={"alert_id": alert.alert_id},
                )
            await self._mark_failed(alert)
            return CrossPostOutcome(status=SocialStatus.FAILED, error=str(exc))

        logger.info(
            "Cross-posted alert %s as post %s", alert.alert_id, post.post_id,
            extra={"alert_id": alert.alert_id},
        )
        return CrossPostOutcome(status=SocialStatus.POSTED, post_id=post.post_id)

    async def _mark_failed(self, alert: BroadcastAlert) -> None:
        try:
            await self.store.set_social_link(
                alert.alert_id, post_id=None, status=SocialStatus.FAILED,
            )
        except Exception as exc:
            logger.error(
                "Could not record failed cross-post on alert %s: %s",
                alert.alert_id, exc, extra={"alert_id": alert.alert_id},
            )
