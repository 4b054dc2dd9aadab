from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from src.api.routes import ROUTERS
from src.config import settings
from src.services import CoreServices, build_services
from src.utils.database import Database
from src.utils.errors import MatchCoreError, RateLimitError
from src.utils.logging import configure_logging, get_logger, log_error
from src.utils.rate_limiter import RateLimiter, create_redis_client

API_VERSION = "1.0.0"

configure_logging()
logger = get_logger(__name__)


def init_sentry() -> bool:
    """Start Sentry when a DSN is configured. Returns whether it is active."""
    if not settings.SENTRY_DSN:
        return False

    sample_rate = 1.0 if settings.DEBUG else 0.1
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=f"matchcore@{API_VERSION}",
            traces_sample_rate=sample_rate,
            profiles_sample_rate=sample_rate,
            send_default_pii=False,
            integrations=[
                FastApiIntegration(transaction_style="url"),
                SqlalchemyIntegration(),
                RedisIntegration(),
            ],
        )
    except Exception as e:
        # A bad DSN must not keep the API from serving
        logger.error("Sentry disabled", error=str(e))
        return False

    logger.info("Sentry enabled", environment=settings.ENVIRONMENT)
    return True


init_sentry()


def init_services() -> CoreServices:
    """Build the database and every service once for the whole process."""
    database = Database(settings.DATABASE_URL, echo=settings.DEBUG, max_retries=settings.DB_MAX_RETRIES)
    database.create_tables()
    rate_limiter = RateLimiter(create_redis_client(settings.REDIS_URL))
    return build_services(database, settings, rate_limiter=rate_limiter)


async def handle_core_error(request: Request, exc: MatchCoreError) -> JSONResponse:
    """Render a core error as ``{"success": false, "error", "code"}``."""
    path = request.url.path
    if exc.status_code < 500:
        logger.info("Request rejected", path=path, code=exc.code, status_code=exc.status_code)
    else:
        log_error(logger, exc, "Request failed", {"path": path})
        sentry_sdk.capture_exception(exc)

    retry_after = exc.details.get("retry_after") if isinstance(exc, RateLimitError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
        headers={"Retry-After": str(retry_after)} if retry_after is not None else None,
    )


def create_app(services: Optional[CoreServices] = None) -> FastAPI:
    """
    Create the API application.

    When ``services`` is given they are used as is and left open on
    shutdown; otherwise they are built from settings during startup and
    their database is disposed afterwards.
    """
    owns_services = services is None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("API starting", owns_services=owns_services)
        if owns_services:
            try:
                app.state.services = init_services()
            except Exception as e:
                logger.error("Failed to initialize database", error=str(e), details=getattr(e, "details", {}))
                raise
        else:
            app.state.services = services

        yield

        logger.info("API stopping")
        if owns_services:
            app.state.services.database.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Matching and conversation API",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.add_exception_handler(MatchCoreError, handle_core_error)  # type: ignore[arg-type]
    for router in ROUTERS:
        app.include_router(router)

    @app.get("/health")
    async def health_check() -> dict:
        return {"status": "ok", "app": settings.APP_NAME, "environment": settings.ENVIRONMENT}

    return app


app = create_app()
