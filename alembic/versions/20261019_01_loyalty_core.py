"""Loyalty core tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


program_type_enum = sa.Enum("stamp", "points", name="loyalty_program_type")
expiration_type_enum = sa.Enum("days", "months", "years", "fixed_date", name="loyalty_expiration_type")
card_status_enum = sa.Enum("active", "suspended", "expired", name="loyalty_card_status")
transaction_type_enum = sa.Enum(
    "stamp_issued",
    "points_added",
    "reward_redeemed",
    "stamp_redeemed",
    "points_redeemed",
    name="loyalty_transaction_type",
)


def _uuid() -> sa.types.TypeEngine:
    return sa.dialects.postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (program_type_enum, expiration_type_enum, card_status_enum, transaction_type_enum):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "brands",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "stores",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("brand_id", _uuid(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address_line", sa.String(), nullable=True),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("country", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_stores_brand_id", "stores", ["brand_id"])

    op.create_table(
        "customers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_customers_email", "customers", ["email"], unique=True)

    op.create_table(
        "loyalty_programs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("brand_id", _uuid(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.Enum(name="loyalty_program_type", create_type=False), nullable=False),
        sa.Column("stamp_threshold", sa.Integer(), nullable=True),
        sa.Column("points_conversion_rate", sa.Numeric(12, 4), nullable=True),
        sa.Column("daily_stamp_limit", sa.Integer(), nullable=True),
        sa.Column("minimum_transaction_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expiration_type", sa.Enum(name="loyalty_expiration_type", create_type=False), nullable=True),
        sa.Column("expiration_value", sa.Integer(), nullable=True),
        sa.Column("expiration_day", sa.Integer(), nullable=True),
        sa.Column("expiration_month", sa.Integer(), nullable=True),
        sa.Column("terms_and_conditions", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["brand_id"], ["brands.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_loyalty_programs_brand_id", "loyalty_programs", ["brand_id"])

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("program_id", _uuid(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("required_value", sa.Integer(), nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["program_id"], ["loyalty_programs.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_loyalty_rewards_program_id", "loyalty_rewards", ["program_id"])

    op.create_table(
        "loyalty_cards",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("program_id", _uuid(), nullable=False),
        sa.Column("customer_id", _uuid(), nullable=False),
        sa.Column("type", sa.Enum(name="loyalty_program_type", create_type=False), nullable=False),
        sa.Column("stamps_collected", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(name="loyalty_card_status", create_type=False),
            nullable=False,
            server_default="active",
        ),
        sa.Column("qr_code", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["program_id"], ["loyalty_programs.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.UniqueConstraint("customer_id", "program_id", name="uq_loyalty_cards_customer_program"),
    )
    op.create_index("ix_loyalty_cards_program_id", "loyalty_cards", ["program_id"])
    op.create_index("ix_loyalty_cards_customer_id", "loyalty_cards", ["customer_id"])
    op.create_index("ix_loyalty_cards_status", "loyalty_cards", ["status"])
    op.create_index("ix_loyalty_cards_qr_code", "loyalty_cards", ["qr_code"], unique=True)

    op.create_table(
        "transactions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("card_id", _uuid(), nullable=False),
        sa.Column("type", sa.Enum(name="loyalty_transaction_type", create_type=False), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("points_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("transaction_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("reward_id", _uuid(), nullable=True),
        sa.Column("store_id", _uuid(), nullable=False),
        sa.Column("staff_id", _uuid(), nullable=True),
        sa.Column("pos_transaction_id", sa.String(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["card_id"], ["loyalty_cards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reward_id"], ["loyalty_rewards.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
    )
    op.create_index("ix_transactions_card_id", "transactions", ["card_id"])
    op.create_index("ix_transactions_store_id", "transactions", ["store_id"])
    op.create_index("ix_transactions_timestamp", "transactions", ["timestamp"])

    op.create_table(
        "loyalty_outbox_events",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("aggregate_id", _uuid(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
    )
    op.create_index("ix_loyalty_outbox_events_event_type", "loyalty_outbox_events", ["event_type"])
    op.create_index("ix_loyalty_outbox_events_aggregate_id", "loyalty_outbox_events", ["aggregate_id"])
    op.create_index("ix_loyalty_outbox_events_dispatched_at", "loyalty_outbox_events", ["dispatched_at"])


def downgrade() -> None:
    op.drop_table("loyalty_outbox_events")
    op.drop_table("transactions")
    op.drop_table("loyalty_cards")
    op.drop_table("loyalty_rewards")
    op.drop_table("loyalty_programs")
    op.drop_table("customers")
    op.drop_table("stores")
    op.drop_table("brands")

    bind = op.get_bind()
    for enum_type in (transaction_type_enum, card_status_enum, expiration_type_enum, program_type_enum):
        enum_type.drop(bind, checkfirst=True)
