from contextlib import asynccontextmanager
import uuid

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
import structlog

from antipodes.api.routes import router as api_router
from antipodes.core.config import settings
from antipodes.core.middleware import AnonIdMiddleware
from antipodes.logging import configure_logging
from antipodes.middleware.logging import LoggingMiddleware
from antipodes.services.explorer import ExplorerRegistry
from antipodes.services.geocoding import NominatimClient
from antipodes.services.quota_repository import QuotaRepository

configure_logging()
logger = structlog.get_logger(__name__)

# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_startup", version=settings.VERSION, nominatim=settings.NOMINATIM_BASE_URL)
    client = NominatimClient()
    app.state.explorers = ExplorerRegistry(client)

    redis_client = None
    if settings.ENABLE_REDIS and settings.REDIS_URL:
        redis_client = Redis.from_url(settings.REDIS_URL)
        logger.info("quota_enforcement_enabled", limit=settings.MAX_DAILY_GEOCODE_ACTIONS)
    elif settings.ENABLE_REDIS:
        logger.warning("quota_enforcement_misconfigured", reason="ENABLE_REDIS set without REDIS_URL")
    app.state.quota = QuotaRepository(redis_client)

    yield

    logger.info("application_shutdown")
    await client.aclose()
    if redis_client is not None:
        await redis_client.aclose()

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.BRIEF_DESCRIPTION,
    lifespan=lifespan,
)

# Added last runs first: request logging wraps session resolution
app.add_middleware(AnonIdMiddleware)
app.add_middleware(LoggingMiddleware)

app.include_router(api_router, prefix="/api")

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    explorers = getattr(request.app.state, "explorers", None)
    return {
        "status": "ok",
        "active_sessions": len(explorers) if explorers is not None else 0,
        "quota_enforced": settings.ENABLE_REDIS,
    }

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.error("unhandled_exception", error_id=error_id, error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": {
                "error": "INTERNAL_SERVER_ERROR",
                "detail": "An unexpected error occurred. Please report this error ID.",
                "error_id": error_id
            }
        }
    )
