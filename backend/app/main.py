"""lifesync Backend API - remote store for dataset sync and backups."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .database import check_connection, get_supabase_client
from .logging_config import get_logger, setup_logging
from .models import HealthResponse
from .rate_limit import limiter
from .routes import backup_router, cron_router, sync_router

logger = get_logger("lifesync.app")

SERVICE_NAME = "lifesync-backend"
API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info(
        f"Starting {SERVICE_NAME} (payload limit {settings.max_payload_bytes} bytes, "
        f"push limit {settings.sync_rate_limit}, keep {settings.keep_backups} backups)"
    )
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not set; /cron routes will reject every request")
    yield
    logger.info(f"Shutting down {SERVICE_NAME}")


app = FastAPI(
    title="lifesync Backend API",
    description="Revisioned dataset sync and backup snapshots for lifesync clients",
    version=API_VERSION,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

settings = get_settings()
# Clients only ever send bearer-authenticated JSON to /sync and /backup
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(sync_router)
app.include_router(backup_router)
app.include_router(cron_router)


@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": API_VERSION,
        "endpoints": ["/sync", "/backup", "/cron/backup", "/health"],
    }


@app.get("/health", response_model=HealthResponse)
async def health():
    """Unauthenticated probe used by clients to decide whether they are online."""
    try:
        await check_connection(get_supabase_client())
        database = "connected"
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        database = f"error: {str(e)[:50]}"

    return HealthResponse(
        status="healthy" if database == "connected" else "degraded",
        database=database,
        max_payload_bytes=get_settings().max_payload_bytes,
    )
