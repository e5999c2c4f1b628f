"""Domain layer - pure business logic with zero framework dependencies."""

from escrow_exchange.domain.acceptance import AcceptanceDecision, AcceptancePolicy
from escrow_exchange.domain.arbiter import is_authorized
from escrow_exchange.domain.enums import (
    EscrowStatus,
    EventType,
    LedgerBucket,
    LedgerEntryType,
    Party,
)
from escrow_exchange.domain.exceptions import (
    EscrowExchangeError,
    EscrowNotFoundError,
    StateConflictError,
)
from escrow_exchange.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)
from escrow_exchange.domain.values import (
    AccountOwner,
    Actor,
    ArbiterDesignation,
    Counterparty,
    EscrowTerms,
)

__all__ = [
    "AcceptanceDecision",
    "AcceptancePolicy",
    "is_authorized",
    "EscrowStatus",
    "EventType",
    "LedgerBucket",
    "LedgerEntryType",
    "Party",
    "EscrowExchangeError",
    "EscrowNotFoundError",
    "StateConflictError",
    "EscrowStateMachine",
    "validate_transition",
    "AccountOwner",
    "Actor",
    "ArbiterDesignation",
    "Counterparty",
    "EscrowTerms",
]
