"""SQLAlchemy 2.0 ORM models for the escrow exchange.

Tables:
    1. organizations / users / org_members - minimal directory the core reads.
    2. service_types   - escrow templates (delivery descriptors + fee percent).
    3. accounts        - two-bucket balances per (owner, currency).
    4. ledger_entries  - append-only log; per bucket it sums to the stored balance.
    5. escrows         - the transaction record, with its two obligations embedded.
    6. escrow_events   - append-only audit log of every lifecycle transition.
    7. escrow_messages - conversation between the parties (and system notes).
    8. provider_settings - per-provider auto-accept rules by service type.

Design decisions:
    - UUIDs as primary keys (no sequential leakage).
    - NUMERIC(20, 8) for every amount (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for obligations, metadata and event details.
    - CHECK constraints mirror the domain invariants at the DB level.
    - ledger_entries and escrow_events are append-only: no UPDATE or DELETE at the
      application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from escrow_exchange.domain.enums import (
    ArbiterType,
    EscrowStatus,
    LedgerBucket,
    LedgerEntryType,
    OrgRole,
    UserRole,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(20, 8, asdecimal=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_clause(column: str, values: type) -> str:
    quoted = ", ".join(f"'{v.value}'" for v in values)
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. directory
# ---------------------------------------------------------------------------
class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER.value)
    primary_org_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        comment="Organization the user acts for when creating escrows",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_clause("role", UserRole), name="ck_user_valid_role"),
        Index("idx_user_email", "email"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"


class OrgMember(Base):
    __tablename__ = "org_members"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=OrgRole.MEMBER.value)

    __table_args__ = (
        CheckConstraint(_in_clause("role", OrgRole), name="ck_member_valid_role"),
        Index("idx_member_user", "user_id"),
    )


# ---------------------------------------------------------------------------
# 2. service_types
# ---------------------------------------------------------------------------
class ServiceType(Base):
    """Template an escrow is created from."""

    __tablename__ = "service_types"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    party_a_delivers: Mapped[dict] = mapped_column(
        JSONType, nullable=False, comment='e.g. {"type": "FIAT_USD", "label": "Payment"}'
    )
    party_b_delivers: Mapped[dict] = mapped_column(JSONType, nullable=False)
    platform_fee_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("15.00")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "platform_fee_percent >= 0 AND platform_fee_percent <= 100",
            name="ck_service_type_fee_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<ServiceType id={self.id} fee={self.platform_fee_percent}%>"


# ---------------------------------------------------------------------------
# 3. accounts
# ---------------------------------------------------------------------------
class Account(Base):
    """Two-bucket balance of one owner in one currency.

    Balances are only ever changed through the account ledger, which writes one
    ledger entry per bucket change.
    """

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    org_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=True
    )
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    available_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    in_contract_balance: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NOT NULL AND org_id IS NULL) OR (user_id IS NULL AND org_id IS NOT NULL)",
            name="ck_account_single_owner",
        ),
        CheckConstraint("available_balance >= 0", name="ck_account_available_non_negative"),
        CheckConstraint("in_contract_balance >= 0", name="ck_account_in_contract_non_negative"),
        UniqueConstraint("user_id", "currency", name="uq_account_user_currency"),
        UniqueConstraint("org_id", "currency", name="uq_account_org_currency"),
    )

    @property
    def total_balance(self) -> Decimal:
        return self.available_balance + self.in_contract_balance

    def __repr__(self) -> str:
        owner = f"user={self.user_id}" if self.user_id else f"org={self.org_id}"
        return (
            f"<Account id={self.id} {owner} available={self.available_balance} "
            f"in_contract={self.in_contract_balance} {self.currency}>"
        )


# ---------------------------------------------------------------------------
# 4. ledger_entries (Append-Only)
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    """Immutable signed movement on one bucket of one account."""

    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("accounts.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, comment="Signed amount")
    bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(_in_clause("bucket", LedgerBucket), name="ck_entry_valid_bucket"),
        CheckConstraint(_in_clause("entry_type", LedgerEntryType), name="ck_entry_valid_type"),
        CheckConstraint("amount <> 0", name="ck_entry_non_zero"),
        Index("idx_entry_account", "account_id", "created_at"),
        Index("idx_entry_reference", "reference_type", "reference_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} account={self.account_id} "
            f"{self.entry_type} {self.bucket}:{self.amount}>"
        )


# ---------------------------------------------------------------------------
# 5. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """A two-party escrow.

    Party A is an organization (created_by_user_id is the acting user). Party B is
    filled in on acceptance. obligation_a / obligation_b hold the two embedded
    obligations as JSON objects; they are replaced whole, never patched in place.
    """

    __tablename__ = "escrows"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    service_type_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("service_types.id"), nullable=False
    )

    # --- Participants ---
    party_a_org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    created_by_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    party_b_org_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=True
    )
    party_b_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    counterparty_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    accepted_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True
    )

    # --- Financials ---
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(
        Money, nullable=False, comment="Fixed at creation, never recomputed"
    )
    currency: Mapped[str] = mapped_column(String(10), nullable=False)

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=EscrowStatus.CREATED.value,
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )

    # --- Terms ---
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )

    # --- Arbiter ---
    arbiter_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ArbiterType.PLATFORM_ONLY.value
    )
    arbiter_org_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=True
    )
    arbiter_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    arbiter_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # --- Obligations ---
    obligation_a: Mapped[dict] = mapped_column(JSONType, nullable=False)
    obligation_b: Mapped[dict] = mapped_column(JSONType, nullable=False)

    # --- Audit sequence counter (incremented under the row lock) ---
    event_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # --- Resolution details ---
    canceled_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    party_b_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    party_a_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(_in_clause("status", EscrowStatus), name="ck_escrow_valid_status"),
        CheckConstraint(_in_clause("arbiter_type", ArbiterType), name="ck_escrow_valid_arbiter"),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        CheckConstraint("platform_fee >= 0", name="ck_escrow_fee_non_negative"),
        CheckConstraint(
            "party_b_org_id IS NULL OR party_b_org_id <> party_a_org_id",
            name="ck_escrow_distinct_orgs",
        ),
        CheckConstraint("event_count >= 0", name="ck_escrow_event_count"),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_party_a_org", "party_a_org_id"),
        Index("idx_escrow_party_b_org", "party_b_org_id"),
        Index("idx_escrow_party_b_user", "party_b_user_id"),
        Index("idx_escrow_created_by", "created_by_user_id"),
        Index("idx_escrow_expires_at", "status", "expires_at"),
        Index("idx_escrow_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Escrow id={self.id} status={self.status} "
            f"amount={self.amount} fee={self.platform_fee} {self.currency}>"
        )


# ---------------------------------------------------------------------------
# 6. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of every transition in an escrow's lifecycle.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. `sequence` is allocated from the escrow's
    event_count while the escrow row is locked, so it is gapless per escrow.
    """

    __tablename__ = "escrow_events"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # --- Foreign Key ---
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("escrows.id"),
        nullable=False,
        comment="The escrow this event belongs to",
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Event Details ---
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., FUNDED, ADMIN_CANCELED)",
    )
    old_status: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        comment="Escrow status before this event (null for creation)",
    )
    new_status: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        comment="Escrow status after this event",
    )
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Who triggered this event (null for system-generated)",
    )
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)

    # --- Timestamp ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    # --- Indexes ---
    __table_args__ = (
        UniqueConstraint("escrow_id", "sequence", name="uq_event_escrow_sequence"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent id={self.id} seq={self.sequence} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 7. escrow_messages
# ---------------------------------------------------------------------------
class EscrowMessage(Base):
    """A message on an escrow's thread. System messages have no author."""

    __tablename__ = "escrow_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("escrows.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_system_message: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "is_system_message OR user_id IS NOT NULL", name="ck_message_has_author"
        ),
        Index("idx_message_escrow", "escrow_id", "created_at"),
    )

    def __repr__(self) -> str:
        author = "system" if self.is_system_message else self.user_id
        return f"<EscrowMessage id={self.id} escrow={self.escrow_id} by={author}>"


# ---------------------------------------------------------------------------
# 8. provider_settings
# ---------------------------------------------------------------------------
class ProviderSetting(Base):
    """A provider's standing offer for one service type.

    With auto_accept_enabled, a new escrow of that service type whose amount
    falls within [min_amount, max_amount] (either bound may be open) is
    accepted on the provider's behalf as soon as it is published.
    """

    __tablename__ = "provider_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    service_type_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("service_types.id"), nullable=False
    )
    auto_accept_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    min_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    max_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    capabilities: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "service_type_id", name="uq_provider_user_service_type"),
        CheckConstraint(
            "min_amount IS NULL OR max_amount IS NULL OR min_amount <= max_amount",
            name="ck_provider_amount_range",
        ),
        Index("idx_provider_auto_accept", "service_type_id", "auto_accept_enabled"),
    )

    def __repr__(self) -> str:
        return (
            f"<ProviderSetting user={self.user_id} service_type={self.service_type_id} "
            f"auto_accept={self.auto_accept_enabled}>"
        )


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
event.listen(Escrow, "before_update", _set_updated_at)
event.listen(Account, "before_update", _set_updated_at)
event.listen(ProviderSetting, "before_update", _set_updated_at)
