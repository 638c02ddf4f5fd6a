"""Crisis communication schema.

Creates the crisis room aggregate table plus the read-only event and
profile inputs.

Revision ID: crisis_rooms_001
Revises:
Create Date: 2026-10-17
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "crisis_rooms_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ──────────────────────────────────────────────────────────────────────
    # Crisis rooms (one JSONB document per aggregate)
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS crisis_rooms (
        id              VARCHAR(64) PRIMARY KEY,
        event_id        VARCHAR(64) NOT NULL,
        status          VARCHAR(20) NOT NULL,
        severity        VARCHAR(20) NOT NULL,
        created_at      TIMESTAMPTZ NOT NULL,
        updated_at      TIMESTAMPTZ DEFAULT NOW(),
        version         INTEGER NOT NULL DEFAULT 0,
        document        JSONB NOT NULL
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_crisis_rooms_status ON crisis_rooms(status)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_crisis_rooms_severity ON crisis_rooms(severity)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_crisis_rooms_created_at ON crisis_rooms(created_at)")

    # ──────────────────────────────────────────────────────────────────────
    # Inputs owned by other systems
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS geopolitical_events (
        id              VARCHAR(64) PRIMARY KEY,
        title           VARCHAR(500) NOT NULL,
        description     TEXT,
        severity        VARCHAR(20),
        regions         JSONB NOT NULL DEFAULT '[]',
        created_at      TIMESTAMPTZ DEFAULT NOW()
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS user_profiles (
        id              VARCHAR(64) PRIMARY KEY,
        profile         JSONB NOT NULL DEFAULT '{}',
        created_at      TIMESTAMPTZ DEFAULT NOW()
    )
    """)


def downgrade() -> None:
    for tbl in ("user_profiles", "geopolitical_events", "crisis_rooms"):
        op.execute(f"DROP TABLE IF EXISTS {tbl}")
