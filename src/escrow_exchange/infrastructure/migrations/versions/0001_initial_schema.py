"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
Money = sa.Numeric(20, 8)


def _in(column: str, *values: str) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


ESCROW_STATUSES = (
    "CREATED",
    "PENDING_ACCEPTANCE",
    "PENDING_FUNDING",
    "FUNDED",
    "PARTY_B_CONFIRMED",
    "PARTY_A_CONFIRMED",
    "DISPUTED",
    "COMPLETED",
    "CANCELED",
    "EXPIRED",
)
ENTRY_TYPES = (
    "DEPOSIT",
    "WITHDRAW",
    "ESCROW_LOCK",
    "ESCROW_RELEASE",
    "ESCROW_RECEIVE",
    "PLATFORM_FEE",
    "REFUND",
)


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("display_name", sa.String(200), nullable=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column(
            "primary_org_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(_in("role", "user", "platform_admin"), name="ck_user_valid_role"),
    )
    op.create_index("idx_user_email", "users", ["email"])

    op.create_table(
        "org_members",
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("role", sa.String(20), nullable=False),
        sa.CheckConstraint(_in("role", "admin", "member", "viewer"), name="ck_member_valid_role"),
    )
    op.create_index("idx_member_user", "org_members", ["user_id"])

    op.create_table(
        "service_types",
        sa.Column("id", sa.String(50), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("party_a_delivers", JSONType, nullable=False),
        sa.Column("party_b_delivers", JSONType, nullable=False),
        sa.Column("platform_fee_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.CheckConstraint(
            "platform_fee_percent >= 0 AND platform_fee_percent <= 100",
            name="ck_service_type_fee_range",
        ),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("available_balance", Money, nullable=False),
        sa.Column("in_contract_balance", Money, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "(user_id IS NOT NULL AND org_id IS NULL) OR (user_id IS NULL AND org_id IS NOT NULL)",
            name="ck_account_single_owner",
        ),
        sa.CheckConstraint("available_balance >= 0", name="ck_account_available_non_negative"),
        sa.CheckConstraint("in_contract_balance >= 0", name="ck_account_in_contract_non_negative"),
        sa.UniqueConstraint("user_id", "currency", name="uq_account_user_currency"),
        sa.UniqueConstraint("org_id", "currency", name="uq_account_org_currency"),
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("amount", Money, nullable=False),
        sa.Column("bucket", sa.String(20), nullable=False),
        sa.Column("entry_type", sa.String(30), nullable=False),
        sa.Column("reference_type", sa.String(30), nullable=True),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(_in("bucket", "available", "in_contract"), name="ck_entry_valid_bucket"),
        sa.CheckConstraint(_in("entry_type", *ENTRY_TYPES), name="ck_entry_valid_type"),
        sa.CheckConstraint("amount <> 0", name="ck_entry_non_zero"),
    )
    op.create_index("idx_entry_account", "ledger_entries", ["account_id", "created_at"])
    op.create_index("idx_entry_reference", "ledger_entries", ["reference_type", "reference_id"])

    op.create_table(
        "escrows",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "service_type_id", sa.String(50), sa.ForeignKey("service_types.id"), nullable=False
        ),
        sa.Column("party_a_org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("created_by_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("party_b_org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("party_b_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("counterparty_email", sa.String(320), nullable=True),
        sa.Column("is_open", sa.Boolean(), nullable=False),
        sa.Column("accepted_by_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("amount", Money, nullable=False),
        sa.Column("platform_fee", Money, nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("arbiter_type", sa.String(20), nullable=False),
        sa.Column("arbiter_org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("arbiter_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("arbiter_email", sa.String(320), nullable=True),
        sa.Column("obligation_a", JSONType, nullable=False),
        sa.Column("obligation_b", JSONType, nullable=False),
        sa.Column("event_count", sa.Integer(), nullable=False),
        sa.Column("canceled_by_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("party_b_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("party_a_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(_in("status", *ESCROW_STATUSES), name="ck_escrow_valid_status"),
        sa.CheckConstraint(
            _in("arbiter_type", "platform_only", "person", "organization", "platform_ai"),
            name="ck_escrow_valid_arbiter",
        ),
        sa.CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        sa.CheckConstraint("platform_fee >= 0", name="ck_escrow_fee_non_negative"),
        sa.CheckConstraint(
            "party_b_org_id IS NULL OR party_b_org_id <> party_a_org_id",
            name="ck_escrow_distinct_orgs",
        ),
        sa.CheckConstraint("event_count >= 0", name="ck_escrow_event_count"),
    )
    op.create_index("idx_escrow_status", "escrows", ["status"])
    op.create_index("idx_escrow_party_a_org", "escrows", ["party_a_org_id"])
    op.create_index("idx_escrow_party_b_org", "escrows", ["party_b_org_id"])
    op.create_index("idx_escrow_party_b_user", "escrows", ["party_b_user_id"])
    op.create_index("idx_escrow_created_by", "escrows", ["created_by_user_id"])
    op.create_index("idx_escrow_expires_at", "escrows", ["status", "expires_at"])
    op.create_index("idx_escrow_created_at", "escrows", ["created_at"])

    op.create_table(
        "escrow_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("escrow_id", sa.Uuid(), sa.ForeignKey("escrows.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("old_status", sa.String(30), nullable=True),
        sa.Column("new_status", sa.String(30), nullable=True),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("details", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("escrow_id", "sequence", name="uq_event_escrow_sequence"),
    )
    op.create_index("idx_event_type", "escrow_events", ["event_type"])
    op.create_index("idx_event_created_at", "escrow_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("escrow_events")
    op.drop_table("escrows")
    op.drop_table("ledger_entries")
    op.drop_table("accounts")
    op.drop_table("service_types")
    op.drop_table("org_members")
    op.drop_table("users")
    op.drop_table("organizations")
