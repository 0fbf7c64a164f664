"""Points configuration, program window and tiers.

Revision ID: 20261019_02
Revises: 20261019_01
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_02"
down_revision: Union[str, None] = "20261019_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


points_rounding_enum = sa.Enum("round_down", "round_up", "round_to_nearest", name="loyalty_points_rounding")


def _uuid() -> sa.types.TypeEngine:
    return sa.dialects.postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    bind = op.get_bind()
    points_rounding_enum.create(bind, checkfirst=True)

    with op.batch_alter_table("loyalty_programs") as batch_op:
        batch_op.add_column(
            sa.Column("points_rounding", sa.Enum(name="loyalty_points_rounding", create_type=False), nullable=True)
        )
        batch_op.add_column(sa.Column("minimum_points_for_redemption", sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column("enrollment_bonus_points", sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column("has_tiers", sa.Boolean(), nullable=False, server_default=sa.false()))
        batch_op.add_column(sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True))

    op.execute("UPDATE loyalty_programs SET points_rounding = 'round_down' WHERE type = 'points'")

    op.create_table(
        "loyalty_tiers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("program_id", _uuid(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("point_threshold", sa.Integer(), nullable=False),
        sa.Column("point_multiplier", sa.Numeric(6, 3), nullable=False, server_default="1"),
        sa.Column("tier_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("benefits", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["program_id"], ["loyalty_programs.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("program_id", "tier_order", name="uq_loyalty_tiers_program_order"),
    )
    op.create_index("ix_loyalty_tiers_program_id", "loyalty_tiers", ["program_id"])

    # enrollment bonus entries carry no store
    with op.batch_alter_table("transactions") as batch_op:
        batch_op.alter_column("store_id", existing_type=_uuid(), nullable=True)


def downgrade() -> None:
    op.execute("DELETE FROM transactions WHERE store_id IS NULL")
    with op.batch_alter_table("transactions") as batch_op:
        batch_op.alter_column("store_id", existing_type=_uuid(), nullable=False)

    op.drop_index("ix_loyalty_tiers_program_id", table_name="loyalty_tiers")
    op.drop_table("loyalty_tiers")

    with op.batch_alter_table("loyalty_programs") as batch_op:
        batch_op.drop_column("ends_at")
        batch_op.drop_column("starts_at")
        batch_op.drop_column("has_tiers")
        batch_op.drop_column("enrollment_bonus_points")
        batch_op.drop_column("minimum_points_for_redemption")
        batch_op.drop_column("points_rounding")

    points_rounding_enum.drop(op.get_bind(), checkfirst=True)
