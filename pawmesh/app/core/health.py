"""
Health check aggregation — deep health probe for the broadcast service.

Checks:
    • Entity store connectivity (in-memory or SQL)
    • Push provider availability
    • Background dispatch backlog

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks

A missing push provider only degrades the service: alerts can still be
created and every dispatch is recorded as `provider_unavailable`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from pawmesh.app.core.config import settings

if TYPE_CHECKING:
    from pawmesh.app.broadcasts.service import BroadcastService

logger = logging.getLogger(__name__)

# Pending background dispatches above this count degrade readiness
DISPATCH_BACKLOG_WARNING = 100


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


async def check_store(service: "BroadcastService") -> ComponentHealth:
    comp = ComponentHealth(name="entity_store")
    start = time.monotonic()
    try:
        await service.store.ping()
        comp.message = "Store reachable"
        comp.details = {"backend": type(service.store).__name__}
    except Exception as e:
        logger.error("Store health check failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_push_provider(service: "BroadcastService") -> ComponentHealth:
    comp = ComponentHealth(name="push_provider")
    provider = service.provider
    enabled = service.dispatcher.config.enabled
    comp.details = {
        "configured": settings.PUSH_PROVIDER,
        "notifications_enabled": enabled,
    }
    if not enabled:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Notifications disabled"
    elif provider is None:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No push provider available"
    else:
        comp.message = f"Using {provider.name}"
    return comp


async def check_dispatch_backlog(service: "BroadcastService") -> ComponentHealth:
    comp = ComponentHealth(name="dispatch_backlog")
    pending = service.pending_dispatches
    comp.details = {"pending": pending}
    if pending > DISPATCH_BACKLOG_WARNING:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{pending} dispatches pending"
    return comp


async def run_health_check(service: "BroadcastService") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    for check in (check_store, check_push_provider, check_dispatch_backlog):
        report.components.append(await check(service))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
