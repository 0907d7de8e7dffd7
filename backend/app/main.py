import asyncio
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.limiter import limiter
from backend.app.api import admin, auth, finance, notifications, orders, payments, products, withdrawals
from backend.app.api.deps import get_session
from backend.app.core.auth import require_admin
from backend.app.core.database import async_session
from backend.app.core.logging import setup_logging, get_logger
from backend.app.core.metrics import PrometheusMiddleware, get_metrics_response
from backend.app.core.settings import get_settings
from backend.app.services.cache import CacheService
from backend.app.services.ledger import LedgerService

VERSION = "1.0.0"

try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.is_production)
logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    redis_host=settings.REDIS_HOST,
    payments_configured=bool(settings.MP_ACCESS_TOKEN),
    ledger_audit_hours=settings.LEDGER_AUDIT_INTERVAL_HOURS,
)


async def run_ledger_audit() -> int:
    """Scan every profile for ledger drift; returns the number of drifting profiles."""
    async with async_session() as session:
        drift = await LedgerService(session).find_drift()
    for row in drift:
        logger.error("Ledger drift detected", **row)
    logger.info("Ledger audit finished", drifting_profiles=len(drift))
    return len(drift)


async def _ledger_audit_scheduler(interval_hours: float):
    """Background task: periodic ledger drift scan. Read-only; never corrects balances."""
    while True:
        await asyncio.sleep(interval_hours * 3600)
        try:
            await run_ledger_audit()
        except SQLAlchemyError as e:
            logger.error("Ledger audit failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: start the ledger audit scheduler (unless disabled).
    Shutdown: stop it and close Redis.
    """
    logger.info("Application starting up", version=VERSION)
    audit_task = None
    if settings.LEDGER_AUDIT_INTERVAL_HOURS > 0:
        audit_task = asyncio.create_task(_ledger_audit_scheduler(settings.LEDGER_AUDIT_INTERVAL_HOURS))
    yield
    if audit_task is not None:
        audit_task.cancel()
    logger.info("Application shutting down")
    await CacheService.close()


app = FastAPI(title="Affiliate Ledger Backend", version=VERSION, lifespan=lifespan)

# Shared limiter; routers decorate with @limiter.limit
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS first (runs last on the response)
cors_origins = settings.allowed_origins_list
if not cors_origins:
    if settings.is_production:
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    cors_origins = ["*"]
    logger.warning("CORS: allowing all origins (development mode)")
logger.info("CORS configuration", allowed_origins=cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)

for router, prefix in (
    (auth.router, "/auth"),
    (products.router, "/products"),
    (orders.router, "/orders"),
    (finance.router, "/finance"),
    (withdrawals.router, "/withdrawals"),
    (notifications.router, "/notifications"),
    (payments.router, "/payments"),
):
    app.include_router(router, prefix=prefix, tags=[prefix.strip("/")])

# Real admin sessions only; impersonation tokens never pass
app.include_router(admin.router, prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@app.get("/")
async def root():
    return {"status": "ok", "service": "affiliate-ledger"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """Database and Redis connectivity."""
    checks = {"database": "ok", "redis": "ok"}

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database health check failed", error=str(e))
        checks["database"] = f"error: {e}"

    try:
        redis = await CacheService.get_redis()
        await redis.ping()
    except (RedisError, OSError) as e:
        logger.error("Redis health check failed", error=str(e))
        checks["redis"] = f"error: {e}"

    healthy = all(value == "ok" for value in checks.values())
    return {"status": "healthy" if healthy else "unhealthy", "version": VERSION, "checks": checks}


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """Prometheus scrape endpoint; openmetrics=true switches the exposition format."""
    return get_metrics_response(openmetrics=openmetrics)
