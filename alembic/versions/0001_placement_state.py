"""placement state tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

placement_state = sa.Enum("UNPLACED", "PLACING", "PLACED", "REPLACING", name="placement_state")


def upgrade() -> None:
    op.create_table(
        "placements",
        sa.Column("placement_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("host_id", sa.String(length=255), nullable=False),
        sa.Column("unit_id", sa.String(length=255), nullable=False),
        sa.Column("volume_id", sa.String(length=255), nullable=True),
        sa.Column("host_address", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_placements_host_id", "placements", ["host_id"])
    op.create_index("idx_placements_active", "placements", ["superseded_at"])

    op.create_table(
        "scheduler_state",
        sa.Column("scheduler_name", sa.String(length=64), primary_key=True),
        sa.Column("state", placement_state, nullable=False),
        sa.Column("active_placement_id", sa.String(length=36), nullable=True),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False),
        sa.Column("placing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("placed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("replacing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("scheduler_state")
    op.drop_index("idx_placements_active", table_name="placements")
    op.drop_index("ix_placements_host_id", table_name="placements")
    op.drop_table("placements")
    placement_state.drop(op.get_bind(), checkfirst=True)
