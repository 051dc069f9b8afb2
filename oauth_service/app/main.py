# main.py

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional
import asyncio
import structlog

from common.config import Settings, get_settings
from common.database import db_manager, utcnow
from common.exceptions import OAuthError
from common.logging_config import setup_logging
from common.rate_limiter import limiter

# Register every table on Base.metadata before create_all
from oauth_service.app import models  # noqa: F401

from oauth_service.app.middlewares.cors import PublicEndpointCORSMiddleware
from oauth_service.app.routers.v1.oauth import router as oauth_router
from oauth_service.app.routers.v1.well_known import router as well_known_router
from oauth_service.app.services.oauth_service import OAuthService

logger = structlog.get_logger("crm.oauth")


async def periodic_cleanup(service: OAuthService, interval_seconds: int):
    """Delete expired codes and refresh tokens. Lookups reject them regardless."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with db_manager.async_session() as session:
                await service.cleanup_expired_grants(session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Periodic cleanup error", error=str(e))


def create_app(settings: Optional[Settings] = None, clock: Callable[[], datetime] = utcnow) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    db_manager.initialize(
        settings.database_url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.debug,
    )
    oauth_service = OAuthService(settings, clock=clock)

    # ================================
    # LIFESPAN MANAGEMENT
    # ================================
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cleanup_task = None
        try:
            await db_manager.create_all()
            if settings.cleanup_interval_seconds > 0:
                cleanup_task = asyncio.create_task(
                    periodic_cleanup(oauth_service, settings.cleanup_interval_seconds)
                )
            logger.info("OAuth Service Started", environment=settings.environment)
            yield
        finally:
            if cleanup_task is not None:
                cleanup_task.cancel()
                try:
                    await cleanup_task
                except asyncio.CancelledError:
                    pass
            await db_manager.close()
            logger.info("OAuth Service Shutdown")

    # ================================
    # FASTAPI APP SETUP
    # ================================
    app = FastAPI(
        title="CRM OAuth Authorization Server",
        description="OAuth 2.1 authorization server for external CRM clients",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.oauth_service = oauth_service

    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        PublicEndpointCORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # ================================
    # EXCEPTION HANDLERS
    # ================================
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = [str(err.get("loc", [""])[-1]) for err in exc.errors()]
        logger.warning("Validation error", path=request.url.path, fields=fields)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid_request", "error_description": f"Invalid parameters: {', '.join(fields)}"},
        )

    @app.exception_handler(OAuthError)
    async def oauth_exception_handler(request: Request, exc: OAuthError):
        logger.info("OAuth error", path=request.url.path, kind=exc.kind)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "server_error", "error_description": "Internal server error"},
        )

    # ================================
    # HEALTH CHECK ENDPOINT
    # ================================
    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check(response: Response):
        """Returns 200 when the database answers, 503 otherwise."""
        db_ok = await db_manager.ping()
        if not db_ok:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "ok" if db_ok else "degraded", "database": "ok" if db_ok else "unavailable"}

    app.include_router(oauth_router)
    app.include_router(well_known_router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
