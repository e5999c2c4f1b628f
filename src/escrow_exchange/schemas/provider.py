"""Pydantic schemas for provider settings and the service type catalogue."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProviderSettingRequest(BaseModel):
    """Replace the caller's setting for one service type."""

    auto_accept_enabled: bool = False
    min_amount: Decimal | None = Field(default=None, gt=0, examples=["10.00"])
    max_amount: Decimal | None = Field(default=None, gt=0, examples=["500.00"])
    capabilities: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _ordered_bounds(self) -> ProviderSettingRequest:
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError("min_amount cannot exceed max_amount")
        return self


class ProviderSettingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    service_type_id: str
    auto_accept_enabled: bool
    min_amount: Decimal | None
    max_amount: Decimal | None
    capabilities: dict | None = None
    created_at: datetime
    updated_at: datetime


class ServiceTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    party_a_delivers: dict
    party_b_delivers: dict
    platform_fee_percent: Decimal
