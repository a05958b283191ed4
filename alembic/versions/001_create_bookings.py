"""Create bookings table.

Revision ID: 001_create_bookings
Revises: None
Create Date: 2026-10-18

Creates the bookings table with:
- Distinct-parties and positive-duration check constraints
- Partial unique index: one pending/accepted booking per pair of users
"""

from typing import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers
revision: str = "001_create_bookings"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'accepted')"


def upgrade() -> None:
    """Create the bookings table and its indexes."""
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("requester_id", sa.String(36), nullable=False),
        sa.Column("provider_id", sa.String(36), nullable=False),
        sa.Column("pair_key", sa.String(80), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("booking_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_hours", sa.Float, nullable=False, server_default="1"),
        sa.Column("location", sa.Text),
        sa.Column("lat", sa.Float),
        sa.Column("lng", sa.Float),
        sa.Column("notes", sa.Text),
        sa.Column("topic_id", sa.String(36)),
        sa.Column("extension_requested_hours", sa.Integer),
        sa.Column("extension_requested_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("requester_id <> provider_id", name="ck_bookings_distinct_parties"),
        sa.CheckConstraint("duration_hours > 0", name="ck_bookings_positive_duration"),
    )

    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_requester_status", "bookings", ["requester_id", "status"])
    op.create_index("ix_bookings_provider_status", "bookings", ["provider_id", "status"])
    op.create_index(
        "uq_bookings_active_pair",
        "bookings",
        ["pair_key"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_CLAUSE),
    )


def downgrade() -> None:
    """Drop the bookings table."""
    op.drop_index("uq_bookings_active_pair", table_name="bookings")
    op.drop_index("ix_bookings_provider_status", table_name="bookings")
    op.drop_index("ix_bookings_requester_status", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_table("bookings")
