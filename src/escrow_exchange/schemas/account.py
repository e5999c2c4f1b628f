"""Pydantic schemas for the account and ledger API."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field


class DepositRequest(BaseModel):
    """Credit an account after an external payment has settled."""

    amount: Decimal = Field(..., gt=0, examples=["200.00"])
    currency: str | None = Field(default=None, min_length=3, max_length=10)
    org_id: uuid.UUID | None = Field(
        default=None,
        description="Credit this organization's account instead of the caller's own",
    )
    reference_id: str | None = Field(default=None, max_length=64)
    description: str | None = Field(default=None, max_length=500)


class WithdrawRequest(DepositRequest):
    pass


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID | None
    org_id: uuid.UUID | None
    currency: str
    available_balance: Decimal
    in_contract_balance: Decimal
    updated_at: datetime

    @computed_field
    @property
    def total_balance(self) -> Decimal:
        return self.available_balance + self.in_contract_balance


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    account_id: uuid.UUID
    amount: Decimal
    bucket: str
    entry_type: str
    reference_type: str | None
    reference_id: str | None
    description: str | None
    created_at: datetime


class ReconciliationResponse(BaseModel):
    account_id: uuid.UUID
    currency: str
    is_balanced: bool
    stored_available: Decimal
    stored_in_contract: Decimal
    ledger_available: Decimal
    ledger_in_contract: Decimal
    differences: dict[str, str]
