"""Initial schema: tier catalog, transactions, entitlements, vote records.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Tier catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS vip_tiers (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(64) UNIQUE NOT NULL,
            price NUMERIC(12, 2) NOT NULL,
            duration_days INTEGER NOT NULL,
            reward_coins INTEGER NOT NULL DEFAULT 0
        )
    """)

    # --- Transactions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            kind VARCHAR(16) NOT NULL,
            amount NUMERIC(12, 2) NOT NULL,
            external_payment_ref VARCHAR(255) UNIQUE,
            status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
            tier_id VARCHAR(64),
            product_name VARCHAR(128),
            description VARCHAR(256),
            is_auto_renewal BOOLEAN NOT NULL DEFAULT false,
            metadata JSON NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_transactions_user_id
        ON transactions(user_id)
    """)

    # --- Entitlements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS entitlements (
            user_id VARCHAR(64) PRIMARY KEY,
            is_vip BOOLEAN NOT NULL DEFAULT false,
            tier_name VARCHAR(64) NOT NULL DEFAULT 'null',
            expiry_instant BIGINT NOT NULL DEFAULT -1,
            auto_renew BOOLEAN NOT NULL DEFAULT false,
            reward_balance BIGINT NOT NULL DEFAULT 0,
            renewal_transaction_id VARCHAR(36),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_entitlements_expiry_instant
        ON entitlements(expiry_instant)
    """)

    # --- Vote records ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS vote_records (
            user_id VARCHAR(64) PRIMARY KEY,
            has_voted BOOLEAN NOT NULL DEFAULT false,
            has_collected BOOLEAN NOT NULL DEFAULT false,
            kind VARCHAR(32),
            query TEXT,
            voted_at TIMESTAMPTZ NOT NULL
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS vote_records")
    op.execute("DROP TABLE IF EXISTS entitlements")
    op.execute("DROP TABLE IF EXISTS transactions")
    op.execute("DROP TABLE IF EXISTS vip_tiers")
