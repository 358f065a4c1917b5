"""
FastAPI application entry point.

Run with:
    uvicorn pawmesh.app.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from pawmesh.app.core.config import settings
from pawmesh.app.core.logging_config import setup_logging, get_logger
from pawmesh.app.core.errors import register_error_handlers
from pawmesh.app.core.middleware import RequestLoggingMiddleware
from pawmesh.app.core.health import HealthStatus, run_health_check
from pawmesh.app.core.database import close_db, init_db

# ── Domain ──
from pawmesh.app.broadcasts.service import BroadcastService
from pawmesh.app.storage import build_store

# ── API routers ──
from pawmesh.app.api.v1.broadcasts import router as broadcast_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the store and service on startup, drain dispatches on shutdown."""
    logger.info(
        "Starting %s v%s [%s] store=%s push=%s",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.STORE_BACKEND, settings.PUSH_PROVIDER,
    )
    if settings.STORE_BACKEND == "sql":
        await init_db()

    service = BroadcastService.from_settings(build_store(settings), settings)
    app.state.service = service
    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    await app.state.service.close()
    if settings.STORE_BACKEND == "sql":
        await close_db()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Tiered geo-broadcast alerts for a pet-social platform: "
        "tier and add-on cap enforcement, alert lifecycle with optional "
        "social cross-post, support/report moderation with auto-hide, "
        "and batched push fan-out with an audit record per dispatch."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (last added runs first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(broadcast_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Store reachability, push provider state and dispatch backlog."""
    report = await run_health_check(request.app.state.service)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Liveness probe."""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(request: Request):
    """Readiness probe; 503 when the store is unreachable."""
    report = await run_health_check(request.app.state.service)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
