"""Async database engine, session management and the unit of work.

Provides:
    - build_engine: Create an async engine for a URL (PostgreSQL or SQLite).
    - use_engine: Install an already-built engine as the application engine.
    - get_session_factory: A sessionmaker bound to the application engine.
    - get_async_session: FastAPI dependency that yields a session per request.
    - session_scope: Async context manager yielding a standalone session.
    - atomic: One unit of work. Commits on success, rolls back on any error and
      translates lock timeouts, deadlocks and lost connections to
      TransientStoreError.
    - init_db / close_db: Lifecycle hooks for FastAPI's lifespan.

Usage in a service:
    async with atomic(session):
        escrow = await escrows.get_for_update(escrow_id)
        ...
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from escrow_exchange.config import get_settings
from escrow_exchange.domain.exceptions import TransientStoreError
from escrow_exchange.logging_config import get_logger

logger = get_logger(__name__)

# deadlock_detected, serialization_failure, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40P01", "40001", "55P03"})

# Module-level singletons (initialized lazily or by init_db)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with settings appropriate for the backend."""
    settings = get_settings()
    kwargs: dict = {"echo": echo, "pool_pre_ping": True}

    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, **kwargs)

    kwargs.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
    )
    if "+asyncpg" in database_url:
        # A blocked FOR UPDATE fails with lock_not_available instead of hanging
        kwargs["connect_args"] = {
            "server_settings": {"lock_timeout": str(settings.db_lock_timeout_ms)}
        }
    return create_async_engine(database_url, **kwargs)


def _get_engine() -> AsyncEngine:
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, echo=settings.db_echo_sql)
        logger.info(
            "database.engine_created",
            backend=_engine.dialect.name,
            pool_size=settings.db_pool_size,
        )
    return _engine


def use_engine(engine: AsyncEngine) -> None:
    """Install an engine built elsewhere (tests, the simulation) as the application engine."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = make_session_factory(engine)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory (lazy singleton)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(_get_engine())
    return _session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    Services own their transaction boundaries through atomic(); this only
    guarantees the session is closed and nothing is left half-open.
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Standalone session for tools, sweeps and scripts."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


def is_transient(exc: DBAPIError) -> bool:
    """True if a DB error is worth retrying (the whole unit of work)."""
    if exc.connection_invalidated or isinstance(exc, OperationalError):
        return True
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in TRANSIENT_SQLSTATES


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block as exactly one transaction.

    Commits when the block completes; on any exception rolls back so no partial
    effect is visible, then re-raises. Transient DB failures are re-raised as
    TransientStoreError so callers can decide to retry.
    """
    try:
        yield session
        await session.commit()
    except DBAPIError as exc:
        await session.rollback()
        if is_transient(exc):
            logger.warning("database.transient_failure", error=str(exc.orig))
            raise TransientStoreError(f"Transient store failure: {exc.orig}") from exc
        raise
    except Exception:
        await session.rollback()
        raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize the database engine and create tables if they don't exist.

    Called during FastAPI's lifespan startup. In production, use Alembic
    migrations instead of create_all.
    """
    from escrow_exchange.infrastructure.database.orm_models import Base

    settings = get_settings()
    if engine is None and not settings.is_development:
        _get_engine()
        logger.info("database.skipping_create_all", reason="not in development mode")
        return

    engine = engine or _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.tables_created", backend=engine.dialect.name)


async def close_db() -> None:
    """Dispose of the database engine. Called during FastAPI's lifespan shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
