import asyncio
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.api import zones, riders, deliveries, tracking
from courier.app.api.deps import get_session, require_api_key
from courier.app.core.logging import setup_logging, get_logger
from courier.app.core.settings import get_settings
from courier.app.core.metrics import PrometheusMiddleware, get_metrics_response

# Load and validate settings
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

# Use JSON format in production
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    commission_rate=str(settings.RIDER_COMMISSION_RATE),
)


async def _reconcile_loop():
    """Background task: release riders left busy without an open delivery."""
    from courier.app.core.database import async_session
    from courier.app.services.riders import RiderService

    while True:
        try:
            await asyncio.sleep(settings.RECONCILE_INTERVAL_SECONDS)
            async with async_session() as session:
                try:
                    released = await RiderService(session).reconcile_stuck_riders()
                    await session.commit()
                    if released:
                        logger.info("Reconcile: released stuck riders", count=len(released))
                except Exception as e:
                    await session.rollback()
                    logger.error("Reconcile: stuck rider sweep failed", error=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Reconcile: unexpected error", error=str(e))
            await asyncio.sleep(60)  # Wait before retrying


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    - Startup: start the stuck-rider reconciliation loop
    - Shutdown: stop it
    """
    logger.info("Application starting up", version="1.0.0")
    reconcile_task = asyncio.create_task(_reconcile_loop())
    yield
    reconcile_task.cancel()
    logger.info("Application shutting down")


app = FastAPI(title="Courier Dispatch", lifespan=lifespan)

ALLOWED_ORIGINS = settings.allowed_origins_list
logger.info("CORS configuration", allowed_origins=ALLOWED_ORIGINS, is_production=settings.is_production)
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    # Development fallback
    ALLOWED_ORIGINS = ["*"]
    logger.warning("CORS: Allowing all origins (development mode). Set ALLOWED_ORIGINS in production!")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Added after CORS so it runs first on the way in
app.add_middleware(PrometheusMiddleware)

_staff = [Depends(require_api_key)]
app.include_router(zones.router, prefix="/stores", tags=["zones"], dependencies=_staff)
app.include_router(riders.router, prefix="/stores", tags=["riders"], dependencies=_staff)
app.include_router(deliveries.router, prefix="/stores", tags=["deliveries"], dependencies=_staff)
# Public tracking page, no key
app.include_router(tracking.router, prefix="/track", tags=["tracking"])


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """
    Health check endpoint for monitoring and orchestration.
    Checks database connectivity.
    """
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "checks": {
            "database": "ok",
        }
    }

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    return health_status


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """
    Prometheus metrics endpoint.

    Args:
        openmetrics: If True, return OpenMetrics format
    """
    return get_metrics_response(openmetrics=openmetrics)
