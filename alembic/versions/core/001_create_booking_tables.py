"""create_booking_tables

Revision ID: core_001
Revises:
Create Date: 2026-09-14 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS bookings (
            booking_id BIGINT PRIMARY KEY,
            title TEXT NOT NULL,
            resource_id BIGINT NOT NULL,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            CONSTRAINT bookings_interval_check CHECK (start_time < end_time)
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_bookings_resource_start
        ON bookings (resource_id, start_time)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS booking_store_state (
            id SMALLINT PRIMARY KEY CHECK (id = 1),
            version BIGINT NOT NULL DEFAULT 0,
            applied_at TIMESTAMPTZ
        )
    """)

    op.execute("""
        INSERT INTO booking_store_state (id, version, applied_at)
        VALUES (1, 0, NULL)
        ON CONFLICT (id) DO NOTHING
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS booking_store_state")
    op.execute("DROP INDEX IF EXISTS idx_bookings_resource_start")
    op.execute("DROP TABLE IF EXISTS bookings")
