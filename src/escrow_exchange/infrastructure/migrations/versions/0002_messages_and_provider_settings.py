"""escrow messages and provider settings

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-17 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
Money = sa.Numeric(20, 8)


def upgrade() -> None:
    op.create_table(
        "escrow_messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "escrow_id",
            sa.Uuid(),
            sa.ForeignKey("escrows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_system_message", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "is_system_message OR user_id IS NOT NULL", name="ck_message_has_author"
        ),
    )
    op.create_index("idx_message_escrow", "escrow_messages", ["escrow_id", "created_at"])

    op.create_table(
        "provider_settings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "service_type_id", sa.String(50), sa.ForeignKey("service_types.id"), nullable=False
        ),
        sa.Column("auto_accept_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("min_amount", Money, nullable=True),
        sa.Column("max_amount", Money, nullable=True),
        sa.Column("capabilities", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "service_type_id", name="uq_provider_user_service_type"),
        sa.CheckConstraint(
            "min_amount IS NULL OR max_amount IS NULL OR min_amount <= max_amount",
            name="ck_provider_amount_range",
        ),
    )
    op.create_index(
        "idx_provider_auto_accept",
        "provider_settings",
        ["service_type_id", "auto_accept_enabled"],
    )


def downgrade() -> None:
    op.drop_table("provider_settings")
    op.drop_table("escrow_messages")
