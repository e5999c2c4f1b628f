"""Service type catalogue and provider settings REST API routes.

Routes:
    GET    /api/v1/service-types                          - Active service types
    GET    /api/v1/provider-settings                      - The caller's settings
    GET    /api/v1/provider-settings/{service_type_id}    - One setting
    PUT    /api/v1/provider-settings/{service_type_id}    - Create or replace a setting
    DELETE /api/v1/provider-settings/{service_type_id}    - Remove a setting
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response

from escrow_exchange.api.deps import get_current_user_id, get_provider_settings_service
from escrow_exchange.schemas.provider import (
    ProviderSettingRequest,
    ProviderSettingResponse,
    ServiceTypeResponse,
)
from escrow_exchange.services.provider_settings import ProviderSettingsService
from escrow_exchange.services.retry import run_with_retry

router = APIRouter(prefix="/api/v1", tags=["Providers"])


@router.get(
    "/service-types", response_model=list[ServiceTypeResponse], summary="Active service types"
)
async def list_service_types(
    svc: ProviderSettingsService = Depends(get_provider_settings_service),
) -> list[ServiceTypeResponse]:
    return [ServiceTypeResponse.model_validate(t) for t in await svc.list_service_types()]


@router.get(
    "/provider-settings",
    response_model=list[ProviderSettingResponse],
    summary="My provider settings",
)
async def list_settings(
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: ProviderSettingsService = Depends(get_provider_settings_service),
) -> list[ProviderSettingResponse]:
    settings = await svc.list_settings(user_id)
    return [ProviderSettingResponse.model_validate(s) for s in settings]


@router.get(
    "/provider-settings/{service_type_id}",
    response_model=ProviderSettingResponse,
    summary="One provider setting",
)
async def get_setting(
    service_type_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: ProviderSettingsService = Depends(get_provider_settings_service),
) -> ProviderSettingResponse:
    return ProviderSettingResponse.model_validate(await svc.get_setting(user_id, service_type_id))


@router.put(
    "/provider-settings/{service_type_id}",
    response_model=ProviderSettingResponse,
    summary="Create or replace a provider setting",
)
async def put_setting(
    service_type_id: str,
    request: ProviderSettingRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: ProviderSettingsService = Depends(get_provider_settings_service),
) -> ProviderSettingResponse:
    """With auto_accept_enabled, new escrows of this type within the range are accepted for you."""
    setting = await run_with_retry(
        lambda: svc.set_setting(
            user_id,
            service_type_id,
            auto_accept_enabled=request.auto_accept_enabled,
            min_amount=request.min_amount,
            max_amount=request.max_amount,
            capabilities=request.capabilities,
        )
    )
    return ProviderSettingResponse.model_validate(setting)


@router.delete(
    "/provider-settings/{service_type_id}",
    status_code=204,
    summary="Remove a provider setting",
)
async def delete_setting(
    service_type_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    svc: ProviderSettingsService = Depends(get_provider_settings_service),
) -> Response:
    await run_with_retry(lambda: svc.delete_setting(user_id, service_type_id))
    return Response(status_code=204)
