"""
sql.py — SQLAlchemy 2.0 async implementation of `BroadcastStore`.

Every public method runs in its own transaction. Counter maintenance is
done with SQL-side arithmetic (`count = count + 1`) inside the same
transaction as the ledger insert/delete, and the uniqueness constraint
on (alert_id, user_id, interaction_type) is the only guard against
duplicate supports/reports from retried requests.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pawmesh.app.broadcasts.models import (
    AddOnCredit,
    AlertType,
    BroadcastAlert,
    DispatchStatus,
    Interaction,
    InteractionType,
    NotificationDispatchRecord,
    SocialPost,
    SocialStatus,
    Tier,
    UserProfile,
)
from pawmesh.app.core.errors import DuplicateInteraction, NotFoundError
from pawmesh.app.spatial.radius_utils import (
    Coordinate,
    bounding_box,
    is_strictly_inside,
)
from pawmesh.app.storage.base import COUNTER_FIELDS, BroadcastStore
from pawmesh.app.storage.tables import (
    AddOnCreditRow,
    AlertRow,
    DispatchRecordRow,
    InteractionRow,
    SocialPostRow,
    UserRow,
)

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back; every stored timestamp is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_user(row: UserRow) -> UserProfile:
    return UserProfile(
        user_id=row.id,
        tier=Tier.parse(row.tier),
        family_inviter_id=row.family_inviter_id,
        vouch_score=row.vouch_score,
        push_token=row.push_token,
        latitude=row.latitude,
        longitude=row.longitude,
    )


def _to_alert(row: AlertRow) -> BroadcastAlert:
    return BroadcastAlert(
        alert_id=row.id,
        creator_id=row.creator_id,
        latitude=row.latitude,
        longitude=row.longitude,
        alert_type=AlertType(row.alert_type),
        title=row.title,
        description=row.description,
        photo_ref=row.photo_ref,
        location_label=row.location_label,
        range_km=row.range_km,
        duration_hours=row.duration_hours,
        created_at=_aware(row.created_at),
        is_active=row.is_active,
        support_count=row.support_count,
        report_count=row.report_count,
        social_post_id=row.social_post_id,
        social_status=SocialStatus(row.social_status),
    )


class SqlStore(BroadcastStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    # ── Users & entitlements ──

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        async with self._sessions() as session:
            row = await session.get(UserRow, user_id)
            return _to_user(row) if row else None

    async def upsert_user(self, user: UserProfile) -> UserProfile:
        async with self._sessions() as session, session.begin():
            await session.merge(UserRow(
                id=user.user_id,
                tier=user.tier.value,
                family_inviter_id=user.family_inviter_id,
                vouch_score=user.vouch_score,
                push_token=user.push_token,
                latitude=user.latitude,
                longitude=user.longitude,
            ))
        return user

    async def get_addon_credit(self, user_id: str) -> Optional[AddOnCredit]:
        async with self._sessions() as session:
            row = await session.get(AddOnCreditRow, user_id)
            if row is None:
                return None
            return AddOnCredit(
                user_id=row.user_id,
                remaining=row.remaining,
                expires_at=_aware(row.expires_at),
                kind=row.kind,
            )

    async def upsert_addon_credit(self, credit: AddOnCredit) -> AddOnCredit:
        async with self._sessions() as session, session.begin():
            await session.merge(AddOnCreditRow(
                user_id=credit.user_id,
                kind=credit.kind,
                remaining=credit.remaining,
                expires_at=credit.expires_at,
            ))
        return credit

    async def consume_addon_credit(self, user_id: str, now: datetime) -> bool:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(AddOnCreditRow)
                .where(
                    AddOnCreditRow.user_id == user_id,
                    AddOnCreditRow.remaining > 0,
                    or_(
                        AddOnCreditRow.expires_at.is_(None),
                        AddOnCreditRow.expires_at > now,
                    ),
                )
                .values(remaining=AddOnCreditRow.remaining - 1)
            )
            return result.rowcount == 1

    # ── Alerts ──

    async def insert_alert(self, alert: BroadcastAlert) -> BroadcastAlert:
        async with self._sessions() as session, session.begin():
            session.add(AlertRow(
                id=alert.alert_id,
                creator_id=alert.creator_id,
                latitude=alert.latitude,
                longitude=alert.longitude,
                alert_type=alert.alert_type.value,
                title=alert.title,
                description=alert.description,
                photo_ref=alert.photo_ref,
                location_label=alert.location_label,
                range_km=alert.range_km,
                range_meters=alert.range_meters,
                duration_hours=alert.duration_hours,
                created_at=alert.created_at,
                expires_at=alert.expires_at,
                is_active=alert.is_active,
                support_count=alert.support_count,
                report_count=alert.report_count,
                social_post_id=alert.social_post_id,
                social_status=alert.social_status.value,
            ))
        return alert

    async def get_alert(self, alert_id: str) -> Optional[BroadcastAlert]:
        async with self._sessions() as session:
            row = await session.get(AlertRow, alert_id)
            return _to_alert(row) if row else None

    async def update_alert_content(
        self, alert_id: str, *, title: Optional[str], description: Optional[str],
    ) -> Optional[BroadcastAlert]:
        async with self._sessions() as session, session.begin():
            row = await session.get(AlertRow, alert_id)
            if row is None:
                return None
            row.title = title
            row.description = description
            await session.flush()
            return _to_alert(row)

    async def set_social_link(
        self, alert_id: str, *, post_id: Optional[str], status: SocialStatus,
    ) -> None:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(AlertRow)
                .where(AlertRow.id == alert_id)
                .values(social_post_id=post_id, social_status=status.value)
            )
            if result.rowcount == 0:
                raise NotFoundError("Alert", alert_id=alert_id)

    async def deactivate_alert(self, alert_id: str) -> bool:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(AlertRow)
                .where(AlertRow.id == alert_id, AlertRow.is_active.is_(True))
                .values(is_active=False)
            )
            if result.rowcount == 1:
                return True
            exists = await session.scalar(
                select(AlertRow.id).where(AlertRow.id == alert_id)
            )
            if exists is None:
                raise NotFoundError("Alert", alert_id=alert_id)
            return False

    async def list_active_alerts(self, now: datetime) -> List[BroadcastAlert]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(AlertRow)
                .where(AlertRow.is_active.is_(True), AlertRow.expires_at > now)
                .order_by(AlertRow.created_at.desc())
            )
            return [_to_alert(r) for r in rows]

    # ── Interaction ledger ──

    async def add_interaction(self, interaction: Interaction) -> int:
        counter = getattr(AlertRow, COUNTER_FIELDS[interaction.interaction_type])
        async with self._sessions() as session, session.begin():
            exists = await session.scalar(
                select(AlertRow.id).where(AlertRow.id == interaction.alert_id)
            )
            if exists is None:
                raise NotFoundError("Alert", alert_id=interaction.alert_id)

            session.add(InteractionRow(
                alert_id=interaction.alert_id,
                user_id=interaction.user_id,
                interaction_type=interaction.interaction_type.value,
                created_at=interaction.created_at,
            ))
            try:
                await session.flush()
            except IntegrityError as exc:
                raise DuplicateInteraction(
                    alert_id=interaction.alert_id,
                    user_id=interaction.user_id,
                    interaction_type=interaction.interaction_type.value,
                ) from exc

            await session.execute(
                update(AlertRow)
                .where(AlertRow.id == interaction.alert_id)
                .values({counter: counter + 1})
            )
            return await session.scalar(
                select(counter).where(AlertRow.id == interaction.alert_id)
            )

    async def remove_interaction(
        self, alert_id: str, user_id: str, interaction_type: InteractionType,
    ) -> Optional[int]:
        counter = getattr(AlertRow, COUNTER_FIELDS[interaction_type])
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                delete(InteractionRow).where(
                    InteractionRow.alert_id == alert_id,
                    InteractionRow.user_id == user_id,
                    InteractionRow.interaction_type == interaction_type.value,
                )
            )
            if result.rowcount == 0:
                return None

            await session.execute(
                update(AlertRow)
                .where(AlertRow.id == alert_id)
                .values({counter: case((counter > 0, counter - 1), else_=0)})
            )
            return await session.scalar(
                select(counter).where(AlertRow.id == alert_id)
            )

    async def has_interaction(
        self, alert_id: str, user_id: str, interaction_type: InteractionType,
    ) -> bool:
        async with self._sessions() as session:
            found = await session.scalar(
                select(InteractionRow.id).where(
                    InteractionRow.alert_id == alert_id,
                    InteractionRow.user_id == user_id,
                    InteractionRow.interaction_type == interaction_type.value,
                )
            )
            return found is not None

    # ── Social posts ──

    async def insert_social_post(self, post: SocialPost) -> SocialPost:
        async with self._sessions() as session, session.begin():
            session.add(SocialPostRow(
                id=post.post_id,
                author_id=post.author_id,
                alert_id=post.alert_id,
                title=post.title,
                content=post.content,
                tags=list(post.tags),
                images=list(post.images),
                created_at=post.created_at,
            ))
        return post

    async def delete_social_post(self, post_id: str) -> None:
        async with self._sessions() as session, session.begin():
            await session.execute(
                delete(SocialPostRow).where(SocialPostRow.id == post_id)
            )

    # ── Dispatch audit ──

    async def insert_dispatch_record(
        self, record: NotificationDispatchRecord,
    ) -> None:
        async with self._sessions() as session, session.begin():
            session.add(DispatchRecordRow(
                id=record.record_id,
                alert_id=record.alert_id,
                status=record.status.value,
                recipients_count=record.recipient_count,
                success_count=record.success_count,
                failure_count=record.failure_count,
                batch_count=record.batch_count,
                radius_meters=record.radius_meters,
                error=record.error,
                created_at=record.created_at,
            ))

    async def list_dispatch_records(
        self, alert_id: str,
    ) -> List[NotificationDispatchRecord]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(DispatchRecordRow)
                .where(DispatchRecordRow.alert_id == alert_id)
                .order_by(DispatchRecordRow.created_at)
            )
            return [
                NotificationDispatchRecord(
                    record_id=r.id,
                    alert_id=r.alert_id,
                    status=DispatchStatus(r.status),
                    recipient_count=r.recipients_count,
                    success_count=r.success_count,
                    failure_count=r.failure_count,
                    batch_count=r.batch_count,
                    radius_meters=r.radius_meters,
                    error=r.error,
                    created_at=_aware(r.created_at),
                )
                for r in rows
            ]

    # ── Proximity ──

    async def find_nearby_users(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        min_vouch_score: int,
        exclude_user_id: Optional[str] = None,
    ) -> List[UserProfile]:
        center = Coordinate(latitude, longitude)
        bbox = bounding_box(center, radius_meters)

        stmt = select(UserRow).where(
            UserRow.latitude.is_not(None),
            UserRow.longitude.is_not(None),
            UserRow.latitude.between(bbox.min_lat, bbox.max_lat),
            or_(*(UserRow.longitude.between(lo, hi) for lo, hi in bbox.lon_ranges)),
            UserRow.vouch_score >= min_vouch_score,
        )
        if exclude_user_id is not None:
            stmt = stmt.where(UserRow.id != exclude_user_id)

        async with self._sessions() as session:
            rows = list(await session.scalars(stmt))

        matched: List[UserProfile] = []
        for row in rows:
            inside, _ = is_strictly_inside(
                center, Coordinate(row.latitude, row.longitude), radius_meters,
            )
            if inside:
                matched.append(_to_user(row))
        return matched

    # ── Health ──

    async def ping(self) -> bool:
        async with self._sessions() as session:
            await session.execute(select(1))
        return True
