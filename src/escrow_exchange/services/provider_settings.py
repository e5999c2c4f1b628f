"""Provider settings - which service types a provider serves and auto-accepts.

A provider keeps one row per service type. With auto-accept on, the escrow
service accepts newly published escrows of that type on the provider's behalf
when the amount is inside the configured range (see EscrowService.auto_accept).
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from escrow_exchange.config import Settings, get_settings
from escrow_exchange.domain.exceptions import (
    InvalidServiceTypeError,
    ProviderSettingNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from escrow_exchange.domain.money import parse_amount
from escrow_exchange.infrastructure.database.engine import atomic
from escrow_exchange.infrastructure.database.orm_models import ProviderSetting, ServiceType
from escrow_exchange.infrastructure.database.repositories import (
    DirectoryRepository,
    ProviderSettingsRepository,
    ServiceTypeRepository,
)
from escrow_exchange.logging_config import get_logger

logger = get_logger(__name__)


class ProviderSettingsService:
    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._repo = ProviderSettingsRepository(session)
        self._directory = DirectoryRepository(session)
        self._service_types = ServiceTypeRepository(session)

    async def list_service_types(self) -> list[ServiceType]:
        """Service types escrows can currently be created from."""
        return await self._service_types.list_active()

    async def list_settings(self, user_id: uuid.UUID) -> list[ProviderSetting]:
        return await self._repo.list_for_user(user_id)

    async def get_setting(self, user_id: uuid.UUID, service_type_id: str) -> ProviderSetting:
        setting = await self._repo.get(user_id, service_type_id)
        if setting is None:
            raise ProviderSettingNotFoundError(str(user_id), service_type_id)
        return setting

    async def set_setting(
        self,
        user_id: uuid.UUID,
        service_type_id: str,
        auto_accept_enabled: bool = False,
        min_amount: Decimal | str | None = None,
        max_amount: Decimal | str | None = None,
        capabilities: dict | None = None,
    ) -> ProviderSetting:
        """Create or replace the user's setting for one service type.

        Amount bounds are inclusive and either may be left open. They are
        compared against the escrow amount regardless of currency.

        Raises:
            UserNotFoundError, InvalidServiceTypeError, InvalidAmountError,
            ValidationError.
        """
        low = self._bound(min_amount)
        high = self._bound(max_amount)
        if low is not None and high is not None and low > high:
            raise ValidationError("min_amount cannot exceed max_amount")
        if capabilities is not None and not isinstance(capabilities, dict):
            raise ValidationError("capabilities must be an object")

        async with atomic(self._session):
            if await self._directory.get_user(user_id) is None:
                raise UserNotFoundError(str(user_id))
            service_type = await self._service_types.get(service_type_id)
            if service_type is None or not service_type.is_active:
                raise InvalidServiceTypeError(service_type_id)
            setting = await self._repo.upsert(
                user_id,
                service_type_id,
                auto_accept_enabled=auto_accept_enabled,
                min_amount=low,
                max_amount=high,
                capabilities=capabilities,
            )

        logger.info(
            "provider_settings.updated",
            user_id=str(user_id),
            service_type=service_type_id,
            auto_accept=auto_accept_enabled,
            min_amount=low,
            max_amount=high,
        )
        return setting

    async def delete_setting(self, user_id: uuid.UUID, service_type_id: str) -> None:
        async with atomic(self._session):
            if not await self._repo.delete(user_id, service_type_id):
                raise ProviderSettingNotFoundError(str(user_id), service_type_id)
        logger.info(
            "provider_settings.deleted", user_id=str(user_id), service_type=service_type_id
        )

    def _bound(self, value: Decimal | str | None) -> Decimal | None:
        if value is None:
            return None
        return parse_amount(value, self._settings.default_currency)
