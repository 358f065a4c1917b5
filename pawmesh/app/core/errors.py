"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Hard invariant violations (cap exceeded, not owner, duplicate report) are
raised to the caller. The best-effort failures (cross-post, batch send,
provider unavailable) are recorded on result objects by the code that
catches them and never reach an HTTP handler.

Usage:
    from pawmesh.app.core.errors import CapExceeded, NotOwner

    raise NotOwner(alert_id="8c1f...", user_id="u-42")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pawmesh.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class PawMeshError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(PawMeshError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(PawMeshError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class CapExceeded(PawMeshError):
    """
    Requested range/duration is above the tier or add-on ceiling (403).

    User-correctable: the client renders the allowed maximum and an
    upgrade path instead of a generic error.
    """

    UPGRADE_PATH = "/premium"

    def __init__(self, violations: List[Any], *, tier: str):
        self.violations = list(violations)
        self.tier = tier
        first = self.violations[0]
        super().__init__(
            message=(
                f"Requested {first.field} {first.requested_value:g} exceeds "
                f"the {tier} limit of {first.allowed_max:g}"
            ),
            status_code=403,
            error_code="CAP_EXCEEDED",
            details={
                "tier": tier,
                "violations": [v.to_dict() for v in self.violations],
                "upgrade_path": self.UPGRADE_PATH,
            },
        )

    @property
    def fields(self) -> List[str]:
        return [v.field for v in self.violations]


class NotOwner(PawMeshError):
    """Only the alert creator may perform this action (403)."""

    def __init__(self, *, alert_id: str, user_id: str):
        super().__init__(
            message="Only the creator can modify this alert",
            status_code=403,
            error_code="NOT_OWNER",
            details={"alert_id": alert_id, "user_id": user_id},
        )


class AlertInactive(PawMeshError):
    """Alert was removed or auto-hidden and cannot be edited (409)."""

    def __init__(self, alert_id: str):
        super().__init__(
            message="Alert is no longer active",
            status_code=409,
            error_code="ALERT_INACTIVE",
            details={"alert_id": alert_id},
        )


class DuplicateInteraction(PawMeshError):
    """The (alert, user, type) interaction already exists (409)."""

    def __init__(self, *, alert_id: str, user_id: str, interaction_type: str):
        super().__init__(
            message=f"{interaction_type.capitalize()} already recorded",
            status_code=409,
            error_code="DUPLICATE_INTERACTION",
            details={
                "alert_id": alert_id,
                "user_id": user_id,
                "interaction_type": interaction_type,
            },
        )


class AlreadyReported(DuplicateInteraction):
    """User already reported this alert; reports cannot be repeated."""

    def __init__(self, *, alert_id: str, user_id: str):
        super().__init__(
            alert_id=alert_id, user_id=user_id, interaction_type="report",
        )
        self.error_code = "ALREADY_REPORTED"


class CrossPostFailed(PawMeshError):
    """Companion social post could not be created (non-fatal)."""

    def __init__(self, alert_id: str, message: str = ""):
        super().__init__(
            message=f"Cross-post for alert {alert_id} failed: {message}",
            status_code=502,
            error_code="CROSS_POST_FAILED",
            details={"alert_id": alert_id},
        )


class DispatchProviderUnavailable(PawMeshError):
    """Push provider is not configured or could not be initialised."""

    def __init__(self, provider: str, message: str = ""):
        super().__init__(
            message=f"Push provider '{provider}' unavailable: {message}",
            status_code=503,
            error_code="DISPATCH_PROVIDER_UNAVAILABLE",
            details={"provider": provider},
        )


class BatchSendFailed(PawMeshError):
    """A single multicast batch failed as a whole (non-fatal)."""

    def __init__(self, alert_id: str, batch_index: int, message: str = ""):
        super().__init__(
            message=f"Batch {batch_index} for alert {alert_id} failed: {message}",
            status_code=502,
            error_code="BATCH_SEND_FAILED",
            details={"alert_id": alert_id, "batch": batch_index},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(PawMeshError)
    async def handle_pawmesh_error(request: Request, exc: PawMeshError):
        # Caller mistakes are expected traffic; keep them out of ERROR
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(
            500, "INTERNAL_ERROR", message, request=request,
        )
