"""FastAPI application entry point for the Escrow Exchange.

Lifecycle:
    1. Startup: Initialize logging, database (tables + reference data in dev), Redis.
    2. Running: Serve REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Close database and Redis connections gracefully.

The MCP server is mounted at /mcp so agents can discover tools
alongside the REST API at /api/v1/*.

Run with:
    uvicorn escrow_exchange.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.exceptions import RedisError

from escrow_exchange.api.middleware import setup_middleware
from escrow_exchange.api.routes.accounts import router as accounts_router
from escrow_exchange.api.routes.escrow import router as escrow_router
from escrow_exchange.api.routes.health import router as health_router
from escrow_exchange.api.routes.providers import router as providers_router
from escrow_exchange.config import get_settings
from escrow_exchange.infrastructure.database.engine import (
    close_db,
    init_db,
    session_scope,
)
from escrow_exchange.infrastructure.database.seed import seed_reference_data
from escrow_exchange.infrastructure.redis_client import close_redis, init_redis
from escrow_exchange.logging_config import get_logger, setup_logging
from escrow_exchange.mcp_server.tools import mcp


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    await init_db()
    if settings.is_development:
        async with session_scope() as session:
            await seed_reference_data(
                session, settings.platform_org_id, settings.default_platform_fee_percent
            )

    # 3. Initialize Redis (optional: only creation idempotency depends on it)
    try:
        await init_redis()
    except (RedisError, OSError) as exc:
        logger.warning("app.redis_unavailable", error=str(exc))
        await close_redis()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory - creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Escrow Exchange",
        description=(
            "Two-party escrow between organizations with a double-entry account ledger, "
            "delivery obligations and arbiter resolution."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    setup_middleware(app)

    app.include_router(health_router)
    app.include_router(escrow_router)
    app.include_router(accounts_router)
    app.include_router(providers_router)

    # --- MCP Server (mounted as sub-application) ---
    app.mount("/mcp", mcp.sse_app())

    return app


# The app instance used by Uvicorn
app = create_app()
