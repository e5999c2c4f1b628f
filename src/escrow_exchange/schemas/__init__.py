"""Pydantic API schemas."""

from escrow_exchange.schemas.account import (
    AccountResponse,
    DepositRequest,
    LedgerEntryResponse,
    ReconciliationResponse,
    WithdrawRequest,
)
from escrow_exchange.schemas.escrow import (
    AdminCancelRequest,
    AdminCompleteRequest,
    ArbiterIn,
    CancelEscrowRequest,
    CounterpartyIn,
    CreateEscrowRequest,
    EscrowEventResponse,
    EscrowMessageResponse,
    EscrowResponse,
    EscrowStatusResponse,
    HealthResponse,
    LinkAttachmentRequest,
    ObligationResponse,
    PostMessageRequest,
    RaiseDisputeRequest,
)
from escrow_exchange.schemas.provider import (
    ProviderSettingRequest,
    ProviderSettingResponse,
    ServiceTypeResponse,
)

__all__ = [
    "AccountResponse",
    "AdminCancelRequest",
    "AdminCompleteRequest",
    "ArbiterIn",
    "CancelEscrowRequest",
    "CounterpartyIn",
    "CreateEscrowRequest",
    "DepositRequest",
    "EscrowEventResponse",
    "EscrowMessageResponse",
    "EscrowResponse",
    "EscrowStatusResponse",
    "HealthResponse",
    "LedgerEntryResponse",
    "LinkAttachmentRequest",
    "ObligationResponse",
    "PostMessageRequest",
    "ProviderSettingRequest",
    "ProviderSettingResponse",
    "RaiseDisputeRequest",
    "ReconciliationResponse",
    "ServiceTypeResponse",
    "WithdrawRequest",
]
