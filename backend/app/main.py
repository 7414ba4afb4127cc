"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 3001

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.database import close_db, init_db
from backend.app.core.cache import close_redis
from backend.app.dependencies import get_workers, shutdown_services

# ── API routers ──
from backend.app.api.v1.locations import router as locations_router
from backend.app.api.v1.admin import router as admin_router
from backend.app.api.v1.integrations import router as integrations_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background workers; stop them and release connections on exit."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    if settings.is_development:
        try:
            await init_db()
        except Exception as e:
            logger.warning("Database table setup skipped: %s", e)
    for worker in get_workers():
        worker.start()
    yield
    logger.info("Shutting down %s", settings.APP_NAME)
    await shutdown_services()
    await close_redis()
    await close_db()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Pool care backend. Serves cached daily weather per saved location "
        "with Tomorrow.io refresh and rate-limit fallback, accepts sensor "
        "integration webhooks with a dead-letter retry queue, and runs "
        "background retry and sensor retention workers."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After", "X-Request-ID"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(locations_router)
app.include_router(admin_router)
app.include_router(integrations_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "location-weather",
            "integration-webhooks",
            "integration-retry-worker",
            "sensor-retention-worker",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(workers=Depends(get_workers)):
    """Deep health probe — checks all subsystems."""
    report = await run_health_check(workers)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(workers=Depends(get_workers)):
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check(workers)
    if report.status is HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
