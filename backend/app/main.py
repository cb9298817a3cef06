"""
Event Check-In API - application entry point.

Door check-in and capacity-safe registration for events:
- Idempotent scanner check-in by access token, with undo
- Slot capacity admitted by a single conditional UPDATE (no overbooking)
- Phone verification by one-time passcode (WhatsApp / SMS)
- Per-event roster snapshots cached in Redis
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.middleware import RequestLoggingMiddleware
from app.api.router import api_router
from app.core.config import get_settings
from app.core.errors import DomainError, domain_error_handler
from app.core.logging import get_logger, setup_logging
from app.core.metrics import metrics_endpoint
from app.db.session import get_db
from app.infrastructure.messaging import MessagingGateway, get_messaging_gateway
from app.infrastructure.redis_client import close_redis, get_redis
from app.services.cache_service import get_cache_stats

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        rate_limit_backend=settings.RATE_LIMIT_BACKEND,
        messaging_method=settings.MESSAGING_METHOD,
    )
    if not get_messaging_gateway().is_configured:
        logger.warning("messaging_not_configured", message="Registrations will stay unverified")

    if await get_redis():
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Roster served straight from the database")

    yield

    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Event check-in, capacity-safe registration and OTP verification API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.add_exception_handler(DomainError, domain_error_handler)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check(
    db: AsyncSession = Depends(get_db),
    gateway: MessagingGateway = Depends(get_messaging_gateway),
):
    """
    Liveness plus the dependencies a door shift relies on. Only the
    database is fatal; a missing cache or messaging gateway degrades.
    """
    try:
        await db.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError as e:
        get_logger(__name__).error("health_database_error", error=str(e))
        database = "error"

    body = {
        "status": "healthy" if database == "connected" else "unhealthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
        "cache": await get_cache_stats(),
        "messaging": "configured" if gateway.is_configured else "not_configured",
        "rate_limit_backend": settings.RATE_LIMIT_BACKEND,
    }
    return JSONResponse(status_code=200 if database == "connected" else 503, content=body)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_endpoint()
