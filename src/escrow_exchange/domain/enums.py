"""Domain enumerations for the escrow exchange.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    CREATED = "CREATED"
    PENDING_ACCEPTANCE = "PENDING_ACCEPTANCE"
    PENDING_FUNDING = "PENDING_FUNDING"
    FUNDED = "FUNDED"
    PARTY_B_CONFIRMED = "PARTY_B_CONFIRMED"
    PARTY_A_CONFIRMED = "PARTY_A_CONFIRMED"
    DISPUTED = "DISPUTED"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset(
    {EscrowStatus.COMPLETED, EscrowStatus.CANCELED, EscrowStatus.EXPIRED}
)

# Party A's amount + fee sits in its in_contract bucket in exactly these states.
FUNDS_LOCKED_STATUSES = frozenset(
    {
        EscrowStatus.FUNDED,
        EscrowStatus.PARTY_B_CONFIRMED,
        EscrowStatus.PARTY_A_CONFIRMED,
        EscrowStatus.DISPUTED,
    }
)

PRE_FUNDING_STATUSES = frozenset(
    {
        EscrowStatus.CREATED,
        EscrowStatus.PENDING_ACCEPTANCE,
        EscrowStatus.PENDING_FUNDING,
    }
)


class EventType(enum.StrEnum):
    """Types of audit events recorded in the escrow_events table.

    Every state transition produces exactly one transition event; settlement
    adds a COMPLETED event carrying the released amounts.
    """

    CREATED = "CREATED"
    ACCEPTED = "ACCEPTED"
    FUNDED = "FUNDED"
    PARTY_B_CONFIRMED = "PARTY_B_CONFIRMED"
    PARTY_A_CONFIRMED = "PARTY_A_CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    DISPUTED = "DISPUTED"
    EXPIRED = "EXPIRED"

    # Arbiter overrides
    ADMIN_CANCELED = "ADMIN_CANCELED"
    ADMIN_COMPLETED = "ADMIN_COMPLETED"

    # Evidence and conversation
    ATTACHMENT_LINKED = "ATTACHMENT_LINKED"
    MESSAGE_ADDED = "MESSAGE_ADDED"


class Party(enum.StrEnum):
    """The two sides of an escrow."""

    A = "A"
    B = "B"

    @property
    def other(self) -> "Party":
        return Party.B if self is Party.A else Party.A


class ObligationStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    DISPUTED = "disputed"


class LedgerBucket(enum.StrEnum):
    """Balance partition of an account."""

    AVAILABLE = "available"
    IN_CONTRACT = "in_contract"


class LedgerEntryType(enum.StrEnum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    ESCROW_LOCK = "ESCROW_LOCK"
    ESCROW_RELEASE = "ESCROW_RELEASE"
    ESCROW_RECEIVE = "ESCROW_RECEIVE"
    PLATFORM_FEE = "PLATFORM_FEE"
    REFUND = "REFUND"


class ArbiterType(enum.StrEnum):
    """Who besides a platform admin may force-resolve a funded escrow."""

    PLATFORM_ONLY = "platform_only"
    PERSON = "person"
    ORGANIZATION = "organization"
    PLATFORM_AI = "platform_ai"  # reserved, never authorizes anyone


class UserRole(enum.StrEnum):
    USER = "user"
    PLATFORM_ADMIN = "platform_admin"


class OrgRole(enum.StrEnum):
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class AcceptanceRoute(enum.StrEnum):
    """Which clause of the acceptance policy admitted the acceptor."""

    ASSIGNED_USER = "assigned_user"
    ASSIGNED_ORG = "assigned_org"
    INVITED_EMAIL = "invited_email"
    OPEN = "open"
