"""
FastAPI routes: tiered geo-broadcast alerts.

Provides endpoints to:
    POST   /api/v1/broadcasts                 — create (cap-checked)
    GET    /api/v1/broadcasts                 — list visible alerts
    GET    /api/v1/broadcasts/caps            — caller's caps (upsell UX)
    GET    /api/v1/broadcasts/{id}            — single alert
    PATCH  /api/v1/broadcasts/{id}            — owner edit
    DELETE /api/v1/broadcasts/{id}            — owner remove (idempotent)
    POST   /api/v1/broadcasts/{id}/support    — toggle support
    POST   /api/v1/broadcasts/{id}/report     — report (add-only)
    POST   /api/v1/broadcasts/{id}/dispatch   — creator re-runs the fan-out

The acting user arrives in the X-User-ID header, set by the upstream
auth gateway. Domain errors are rendered by the handlers in core.errors.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Header, Query, Request

from pawmesh.app.api.schemas import (
    AlertListResponse,
    AlertOut,
    CapsResponse,
    CreateBroadcastRequest,
    CreateBroadcastResponse,
    DispatchResponse,
    RemoveBroadcastResponse,
    ReportResponse,
    SupportResponse,
    UpdateBroadcastRequest,
)
from pawmesh.app.broadcasts.service import BroadcastService
from pawmesh.app.core.middleware import USER_HEADER

router = APIRouter(prefix="/api/v1/broadcasts", tags=["broadcasts"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_service(request: Request) -> BroadcastService:
    return request.app.state.service


def acting_user(user_id: str = Header(..., alias=USER_HEADER, min_length=1)) -> str:
    return user_id


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    status_code=201,
    response_model=CreateBroadcastResponse,
    summary="Create a broadcast alert",
    description=(
        "Validates range and duration against the creator's effective tier "
        "(family plan and add-on credits included), stores the alert, "
        "optionally cross-posts it and schedules the push fan-out."
    ),
)
async def create_broadcast(
    body: CreateBroadcastRequest,
    user_id: str = Depends(acting_user),
    service: BroadcastService = Depends(get_service),
):
    result = await service.create_broadcast(
        user_id,
        latitude=body.location.latitude,
        longitude=body.location.longitude,
        location_label=body.location.label,
        alert_type=body.alert_type.value,
        range_km=body.range_km,
        duration_hours=body.duration_hours,
        title=body.title,
        description=body.description,
        photo_ref=body.photo_ref,
        post_to_social=body.post_to_social,
    )
    return CreateBroadcastResponse(
        alert_id=result.alert_id,
        social_status=result.social_status.value,
        social_error=result.social_error,
        partial_success=result.partial_success,
        alert=AlertOut.from_alert(result.alert),
    )


@router.get(
    "",
    response_model=AlertListResponse,
    summary="List visible alerts",
    description="Active, unexpired alerts, newest first, minus the caller's hidden/blocked lists.",
)
async def list_broadcasts(
    hidden: List[str] = Query(default=[], description="Alert ids hidden by the viewer"),
    blocked: List[str] = Query(default=[], description="User ids blocked by the viewer"),
    service: BroadcastService = Depends(get_service),
):
    alerts = await service.list_visible(hidden_ids=hidden, blocked_user_ids=blocked)
    return AlertListResponse(
        count=len(alerts),
        alerts=[AlertOut.from_alert(a) for a in alerts],
    )


@router.get(
    "/caps",
    response_model=CapsResponse,
    summary="Caller's broadcast caps",
)
async def get_caps(
    user_id: str = Depends(acting_user),
    service: BroadcastService = Depends(get_service),
):
    return CapsResponse(**await service.caps_for(user_id))


@router.get("/{alert_id}", response_model=AlertOut, summary="Get one alert")
async def get_broadcast(
    alert_id: str,
    service: BroadcastService = Depends(get_service),
):
    return AlertOut.from_alert(await service.get_broadcast(alert_id))


@router.patch(
    "/{alert_id}",
    response_model=AlertOut,
    summary="Edit title/description (owner only, active alerts only)",
)
async def update_broadcast(
    alert_id: str,
    body: UpdateBroadcastRequest,
    user_id: str = Depends(acting_user),
    service: BroadcastService = Depends(get_service),
):
    alert = await service.update_broadcast(
        alert_id, user_id, title=body.title, description=body.description,
    )
    return AlertOut.from_alert(alert)


@router.delete(
    "/{alert_id}",
    response_model=RemoveBroadcastResponse,
    summary="Remove an alert (owner only, idempotent)",
)
async def remove_broadcast(
    alert_id: str,
    user_id: str = Depends(acting_user),
    service: BroadcastService = Depends(get_service),
):
    changed = await service.remove_broadcast(alert_id, user_id)
    return RemoveBroadcastResponse(alert_id=alert_id, changed=changed)


@router.post(
    "/{alert_id}/support",
    response_model=SupportResponse,
    summary="Toggle support",
)
async def support_broadcast(
    alert_id: str,
    user_id: str = Depends(acting_user),
    service: BroadcastService = Depends(get_service),
):
    outcome = await service.support(alert_id, user_id)
    return SupportResponse(
        alert_id=alert_id,
        support_count=outcome.support_count,
        liked=outcome.liked,
    )


@router.post(
    "/{alert_id}/report",
    response_model=ReportResponse,
    summary="Report an alert",
    description="Add-only. More than 10 distinct reports hide the alert immediately.",
)
async def report_broadcast(
    alert_id: str,
    user_id: str = Depends(acting_user),
    service: BroadcastService = Depends(get_service),
):
    outcome = await service.report(alert_id, user_id)
    return ReportResponse(
        alert_id=alert_id,
        report_count=outcome.report_count,
        auto_hidden=outcome.auto_hidden,
    )


@router.post(
    "/{alert_id}/dispatch",
    response_model=DispatchResponse,
    summary="Run the notification fan-out for an alert",
    description="Creator only. Re-notifies the current eligible audience.",
)
async def dispatch_broadcast(
    alert_id: str,
    user_id: str = Depends(acting_user),
    service: BroadcastService = Depends(get_service),
):
    result = await service.dispatch_notifications(alert_id, requested_by=user_id)
    return DispatchResponse.from_result(result)
