"""004: create virtual_cards table

Revision ID: 004
Revises: 003
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE virtual_cards (
            id              BIGSERIAL       PRIMARY KEY,
            card_id         VARCHAR(64)     NOT NULL,
            card_no         VARCHAR(32)     NOT NULL,
            cvv             VARCHAR(8),
            exp_date        VARCHAR(16),
            currency        VARCHAR(8)      NOT NULL DEFAULT 'USD',
            status          VARCHAR(20)     NOT NULL DEFAULT 'ACTIVE',
            balance         NUMERIC(18, 2)  NOT NULL DEFAULT 0,
            created_by      VARCHAR(64)     NOT NULL,
            remark          VARCHAR(500),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_virtual_cards_card_id UNIQUE (card_id),
            CONSTRAINT ck_virtual_cards_status CHECK (
                status IN ('ACTIVE', 'FROZEN', 'RELEASED', 'EXPIRED', 'LOCKED', 'PENDING')
            )
        );
    """)
    op.execute("CREATE INDEX idx_virtual_cards_owner ON virtual_cards (created_by, status);")
    op.execute("""
        CREATE TRIGGER trg_virtual_cards_updated_at
            BEFORE UPDATE ON virtual_cards
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS virtual_cards CASCADE;")
