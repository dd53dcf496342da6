"""
Chirpline Backend — FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() assembles settings, the ingress middleware chain, the
       route table and the catch-all fallback. Everything process-wide
       (settings, security policy, route table, media provider, database)
       is built here once and attached to app.state.
Who:   chirpline.server builds the app and hands it to uvicorn; tests call
       create_app() directly with their own Settings and routers. For
       reload-style development: uvicorn --factory chirpline.main:create_app

Application Architecture:
    ┌─────────────────────────────────────────────────────────────┐
    │                         FastAPI App                         │
    │                                                             │
    │  Middleware Chain (per request, in order):                  │
    │  Request ID → Logging → Security Headers → Body/Cookie Parse │
    │                                                             │
    │  Dispatch:                                                  │
    │  /api/auth │ /api/users │ /api/posts │ /api/notifications   │
    │          └────── anything else → SPAFallback ──────┘        │
    └─────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → media provider → asset check → schedule DB connect
    Shutdown: cancel a pending DB connect → dispose engine
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator, Mapping, Optional

from fastapi import APIRouter, FastAPI, Request

from chirpline import __version__
from chirpline.config import Settings, get_settings
from chirpline.database import Database
from chirpline.exceptions import ChirplineError, error_response, internal_error_response
from chirpline.media import MediaProvider
from chirpline.middleware.body_parser import BodyParsingMiddleware
from chirpline.middleware.logging import RequestLoggingMiddleware
from chirpline.middleware.request_id import RequestIDMiddleware, request_id_var
from chirpline.middleware.security_headers import SecurityHeadersMiddleware, SecurityPolicy
from chirpline.routes import default_routers
from chirpline.routing import RouteTable
from chirpline.spa import SPAFallback

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logging once for the whole process.

    Format: 2024-01-15T12:00:00 [INFO] chirpline.access: GET / 200 1.2ms ...
    """
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Our access log replaces uvicorn's
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("cloudinary").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Database Connect Task
# ══════════════════════════════════════════════════════════════════════════

def _log_connect_outcome(task: "asyncio.Task[None]") -> None:
    if task.cancelled():
        logger.info("Database connect cancelled during shutdown")
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Database connect task failed: %s", exc)


def schedule_database_connect(app: FastAPI) -> "asyncio.Task[None]":
    """
    Start the database connection in the background, at most once per app.

    The task is not awaited: the server keeps serving while the database
    comes up, and a failure is logged rather than stopping the process.
    """
    task = getattr(app.state, "db_connect_task", None)
    if task is not None:
        return task
    task = asyncio.create_task(app.state.db.connect(), name="database-connect")
    task.add_done_callback(_log_connect_outcome)
    app.state.db_connect_task = task
    return task


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings

    # ── Startup ───────────────────────────────────────────────────────────
    # chirpline.server configures logging before binding; cover `uvicorn --factory`
    if not logging.getLogger().handlers:
        setup_logging(settings.log_level)
    logger.info("Chirpline backend %s starting in %s mode", __version__, settings.environment)

    app.state.media.configure()
    app.state.fallback.check_assets()

    logger.info("Server is running on port %d", settings.port)
    schedule_database_connect(app)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Chirpline backend shutting down...")
    task = app.state.db_connect_task
    if task is not None and not task.done():
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    await app.state.db.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application errors to JSON responses.

    ChirplineError subclasses carry their own status and error code; 5xx
    ones are logged with context and answered with a generic message.
    Anything else becomes a 500 with the traceback in the log only. Route
    errors are already rendered by SecurityHeadersMiddleware so they keep
    the policy headers; this handler covers the outer middleware.
    """

    @app.exception_handler(ChirplineError)
    async def handle_app_error(request: Request, exc: ChirplineError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        else:
            logger.debug("[%s] %s: %s", rid, type(exc).__name__, exc.message)
        return error_response(exc, rid)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return internal_error_response(rid)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    route_groups: Optional[Mapping[str, APIRouter]] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings:     Process settings; read from the environment if omitted.
        route_groups: name → router overrides for auth/users/posts/
                      notifications. Groups not listed keep their default
                      router from chirpline.routes.
    """
    settings = settings or get_settings()

    # API docs would shadow SPA routes in production
    docs_enabled = not settings.is_production
    app = FastAPI(
        title="Chirpline API",
        version=__version__,
        docs_url="/api/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )

    routers = {**default_routers(), **(route_groups or {})}
    route_table = RouteTable.from_routers(routers)
    policy = SecurityPolicy.from_settings(settings)
    fallback = SPAFallback(settings, route_table)

    app.state.settings = settings
    app.state.route_table = route_table
    app.state.security_policy = policy
    app.state.fallback = fallback
    app.state.media = MediaProvider(settings)
    app.state.db = Database(settings)
    app.state.db_connect_task = None

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → SecurityHeaders → BodyParsing
    app.add_middleware(BodyParsingMiddleware, settings=settings)
    app.add_middleware(SecurityHeadersMiddleware, policy=policy)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    for group in route_table:
        app.include_router(group.router, prefix=group.prefix)

    # Must stay last: matches every path
    app.add_api_route(
        "/{full_path:path}",
        fallback.handle,
        methods=ALL_METHODS,
        include_in_schema=False,
    )

    return app
