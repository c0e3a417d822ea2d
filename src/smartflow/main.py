"""FastAPI application factory.

create_app() returns a configured FastAPI instance: middleware, CORS,
routers, the push registry on app.state, and a handler that turns
database errors into a generic 500. Lifespan manages startup and
shutdown (tables, Redis, open streams, engine).
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from smartflow import __version__
from smartflow.api import api_router
from smartflow.config import settings
from smartflow.realtime.registry import PushRegistry

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "smartflow.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from smartflow.db.engine import create_tables, engine

    if settings.auto_create_tables:
        await create_tables()
        logger.info("smartflow.tables_ready")

    from smartflow.redis_client import close_redis, init_redis
    try:
        await init_redis()
        logger.info("smartflow.redis_connected", url=settings.redis_url)
    except Exception as e:
        # Redis is optional: only rate limiting depends on it
        logger.warning("smartflow.redis_unavailable", error=str(e))

    yield

    logger.info("smartflow.shutdown")

    # End open SSE streams so uvicorn can finish in-flight responses
    app.state.push_registry.close_all()

    await close_redis()
    await engine.dispose()


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    """Log the detail server-side; the client only sees a generic error."""
    logger.error(
        "db.error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(status_code=500, content={"detail": "Database error"})


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="SmartFlow Notifications",
        description="In-app notifications with live SSE delivery for SmartFlow AI",
        version=__version__,
        lifespan=lifespan,
    )

    # One registry per app: handlers reach it via get_push_registry
    app.state.push_registry = PushRegistry()

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from smartflow.middleware.rate_limit import RateLimitMiddleware
    from smartflow.middleware.request_id import RequestIdMiddleware
    from smartflow.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RateLimitMiddleware, rpm=settings.rate_limit_rpm)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    # Mount API routes
    app.include_router(api_router)

    # SSE stream: token in the query string, so outside the header-auth routers
    from smartflow.realtime.stream import router as stream_router
    app.include_router(stream_router, tags=["notifications"])

    return app


# Default app instance (used by uvicorn: smartflow.main:app)
app = create_app()
