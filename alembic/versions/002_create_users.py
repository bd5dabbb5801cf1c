"""002: create users table

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE users (
            id              UUID            PRIMARY KEY DEFAULT gen_random_uuid(),
            username        VARCHAR(64)     NOT NULL,
            role            VARCHAR(20)     NOT NULL DEFAULT 'USER',
            parent_id       UUID            REFERENCES users (id),
            balance         NUMERIC(18, 2)  NOT NULL DEFAULT 0,
            status          VARCHAR(20)     NOT NULL DEFAULT 'ACTIVE',
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_users_username    UNIQUE (username),
            CONSTRAINT ck_users_role        CHECK (role IN ('SUPER_ADMIN', 'ADMIN', 'USER')),
            CONSTRAINT ck_users_status      CHECK (status IN ('ACTIVE', 'INACTIVE', 'SUSPENDED'))
        );
    """)
    op.execute("CREATE INDEX idx_users_parent ON users (parent_id) WHERE parent_id IS NOT NULL;")
    op.execute("""
        CREATE TRIGGER trg_users_updated_at
            BEFORE UPDATE ON users
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute("COMMENT ON COLUMN users.balance IS 'Cached ledger balance; recomputed from account_flows, never used for gating';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS users CASCADE;")
