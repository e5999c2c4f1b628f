"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
services, the acting user and configuration.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_exchange.config import Settings, get_settings
from escrow_exchange.infrastructure.database.engine import get_async_session
from escrow_exchange.services.escrow_service import EscrowService
from escrow_exchange.services.ledger_service import AccountService
from escrow_exchange.services.provider_settings import ProviderSettingsService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> uuid.UUID:
    """The acting user, as asserted by the upstream auth layer in X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    try:
        return uuid.UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="X-User-Id must be a UUID") from exc


async def get_escrow_service(
    session: AsyncSession = Depends(get_db_session),
) -> EscrowService:
    """Provide an EscrowService bound to the current session."""
    return EscrowService(session)


async def get_account_service(
    session: AsyncSession = Depends(get_db_session),
) -> AccountService:
    """Provide an AccountService bound to the current session."""
    return AccountService(session)


async def get_provider_settings_service(
    session: AsyncSession = Depends(get_db_session),
) -> ProviderSettingsService:
    return ProviderSettingsService(session)


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
