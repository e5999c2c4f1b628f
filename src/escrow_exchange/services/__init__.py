"""Application services - use case orchestration."""

from escrow_exchange.services.escrow_service import EscrowService
from escrow_exchange.services.ledger_service import (
    AccountLedger,
    AccountService,
    ReconciliationReport,
)
from escrow_exchange.services.obligation_tracker import ObligationTracker
from escrow_exchange.services.provider_settings import ProviderSettingsService
from escrow_exchange.services.retry import run_with_retry

__all__ = [
    "AccountLedger",
    "AccountService",
    "EscrowService",
    "ObligationTracker",
    "ProviderSettingsService",
    "ReconciliationReport",
    "run_with_retry",
]
