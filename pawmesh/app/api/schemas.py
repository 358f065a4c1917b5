"""
Pydantic schemas for the broadcast API.

Separated from the route handlers so they are reusable across the
codebase (background workers, tests).
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from pawmesh.app.broadcasts.models import BroadcastAlert, DispatchResult


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AlertTypeIn(str, Enum):
    STRAY  = "Stray"
    LOST   = "Lost"
    OTHERS = "Others"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LocationInput(BaseModel):
    """Pinned alert location; `label` is the human-readable place name."""
    latitude: float = Field(
        ..., ge=-90.0, le=90.0,
        description="Latitude in decimal degrees",
        examples=[40.7128],
    )
    longitude: float = Field(
        ..., ge=-180.0, le=180.0,
        description="Longitude in decimal degrees",
        examples=[-74.0060],
    )
    label: Optional[str] = Field(
        default=None, max_length=200,
        examples=["Prospect Park, Brooklyn"],
    )


class CreateBroadcastRequest(BaseModel):
    """Request body for POST /api/v1/broadcasts."""
    location: LocationInput
    alert_type: AlertTypeIn = Field(..., examples=["Lost"])
    range_km: float = Field(
        ..., gt=0,
        description="Requested visible radius; checked against the tier cap",
        examples=[10.0],
    )
    duration_hours: float = Field(
        ..., gt=0,
        description="Requested lifetime; checked against the tier cap",
        examples=[12.0],
    )
    title: Optional[str] = Field(default=None, max_length=100, examples=["Lost beagle"])
    description: Optional[str] = Field(default=None, max_length=500)
    photo_ref: Optional[str] = Field(
        default=None, description="Reference returned by the photo upload",
    )
    post_to_social: bool = Field(
        default=False,
        description="Also publish a companion post (Stray / Lost only)",
    )


class UpdateBroadcastRequest(BaseModel):
    """Owner edit. Omitted fields are left unchanged, empty strings clear."""
    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class LocationOut(BaseModel):
    latitude: float
    longitude: float
    label: Optional[str] = None


class AlertOut(BaseModel):
    alert_id: str
    creator_id: str
    alert_type: str
    title: Optional[str] = None
    description: Optional[str] = None
    photo_ref: Optional[str] = None
    location: LocationOut
    range_km: float
    range_meters: int
    duration_hours: float
    created_at: str
    expires_at: str
    is_active: bool
    support_count: int
    report_count: int
    social_post_id: Optional[str] = None
    social_status: str

    @classmethod
    def from_alert(cls, alert: BroadcastAlert) -> "AlertOut":
        return cls(**alert.to_dict())


class CreateBroadcastResponse(BaseModel):
    alert_id: str
    social_status: str
    social_error: Optional[str] = None
    partial_success: bool = Field(
        False, description="True when the alert is live but the social post failed",
    )
    alert: AlertOut


class AlertListResponse(BaseModel):
    count: int
    alerts: List[AlertOut]


class RemoveBroadcastResponse(BaseModel):
    alert_id: str
    is_active: bool = False
    changed: bool = Field(..., description="False when the alert was already inactive")


class SupportResponse(BaseModel):
    alert_id: str
    support_count: int
    liked: bool


class ReportResponse(BaseModel):
    alert_id: str
    report_count: int
    auto_hidden: bool


class DispatchResponse(BaseModel):
    alert_id: str
    status: str
    notified: int
    failed: int
    radius_meters: int
    eligible_count: int
    batches: int

    @classmethod
    def from_result(cls, result: DispatchResult) -> "DispatchResponse":
        return cls(**result.to_dict())


class CapsOut(BaseModel):
    max_range_km: float
    max_duration_hours: float


class CapsResponse(BaseModel):
    user_id: str
    tier: str
    effective_tier: str
    inherited_from: Optional[str] = None
    override_active: bool
    caps: CapsOut
    base_caps: CapsOut
    upgrade_path: str = "/premium"
