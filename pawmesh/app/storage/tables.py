"""
tables.py — SQLAlchemy ORM tables backing `SqlStore`.

Column types are kept portable (no PostGIS / JSONB) so the same schema
runs on PostgreSQL in production and SQLite in tests. Proximity uses a
plain lat/lon range predicate backed by `ix_profiles_lat_lon`, then a
precise Haversine check in Python.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from pawmesh.app.core.database import Base


class UserRow(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tier: Mapped[str] = mapped_column(String(16), default="free", nullable=False)
    family_inviter_id: Mapped[Optional[str]] = mapped_column(String(64))
    vouch_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    push_token: Mapped[Optional[str]] = mapped_column(Text)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        Index("ix_profiles_lat_lon", "latitude", "longitude"),
    )


class AddOnCreditRow(Base):
    __tablename__ = "addon_credits"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), default="extra_broadcast_72h")
    remaining: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("remaining >= 0", name="ck_addon_remaining_non_negative"),
    )


class AlertRow(Base):
    __tablename__ = "broadcast_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    alert_type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(String(500))
    photo_ref: Mapped[Optional[str]] = mapped_column(Text)
    location_label: Mapped[Optional[str]] = mapped_column(String(200))
    range_km: Mapped[float] = mapped_column(Float, nullable=False)
    range_meters: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    support_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    report_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    social_post_id: Mapped[Optional[str]] = mapped_column(String(36))
    social_status: Mapped[str] = mapped_column(String(16), default="none", nullable=False)

    __table_args__ = (
        CheckConstraint("support_count >= 0", name="ck_alert_support_non_negative"),
        CheckConstraint("report_count >= 0", name="ck_alert_report_non_negative"),
        Index("ix_broadcast_alerts_active_expiry", "is_active", "expires_at"),
    )


class InteractionRow(Base):
    __tablename__ = "alert_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("broadcast_alerts.id"), nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    interaction_type: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "alert_id", "user_id", "interaction_type",
            name="uq_alert_interactions_alert_user_type",
        ),
    )


class SocialPostRow(Base):
    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    alert_id: Mapped[Optional[str]] = mapped_column(String(36))
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list)
    images: Mapped[List[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class DispatchRecordRow(Base):
    __tablename__ = "notification_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    alert_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    notification_type: Mapped[str] = mapped_column(String(32), default="mesh_alert")
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    recipients_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batch_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    radius_meters: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
