"""Database infrastructure - engine, ORM models, and repositories."""

from escrow_exchange.infrastructure.database.engine import (
    atomic,
    close_db,
    get_async_session,
    init_db,
    session_scope,
    use_engine,
)
from escrow_exchange.infrastructure.database.orm_models import (
    Account,
    Base,
    Escrow,
    EscrowEvent,
    LedgerEntry,
    Organization,
    OrgMember,
    ServiceType,
    User,
)
from escrow_exchange.infrastructure.database.repositories import (
    AccountRepository,
    DirectoryRepository,
    EscrowRepository,
    EventRepository,
    LedgerEntryRepository,
    ServiceTypeRepository,
)

__all__ = [
    "Base",
    "Account",
    "Escrow",
    "EscrowEvent",
    "LedgerEntry",
    "Organization",
    "OrgMember",
    "ServiceType",
    "User",
    "AccountRepository",
    "DirectoryRepository",
    "EscrowRepository",
    "EventRepository",
    "LedgerEntryRepository",
    "ServiceTypeRepository",
    "atomic",
    "get_async_session",
    "session_scope",
    "init_db",
    "close_db",
    "use_engine",
]
