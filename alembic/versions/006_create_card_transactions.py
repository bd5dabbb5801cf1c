"""006: create card_transactions table

Revision ID: 006
Revises: 005
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE card_transactions (
            id                  BIGSERIAL       PRIMARY KEY,
            card_id             VARCHAR(64)     NOT NULL,
            user_id             VARCHAR(64)     NOT NULL,
            username            VARCHAR(64),
            txn_id              VARCHAR(64)     NOT NULL,
            origin_txn_id       VARCHAR(64)     NOT NULL DEFAULT '0',
            auth_txn_id         VARCHAR(64),
            settle_txn_id       VARCHAR(64),
            txn_type            VARCHAR(20)     NOT NULL,
            txn_status          VARCHAR(1)      NOT NULL,
            auth_txn_amt        NUMERIC(18, 2),
            auth_txn_ccy        VARCHAR(8),
            auth_bill_amt       NUMERIC(18, 2),
            auth_bill_ccy       VARCHAR(8),
            settle_bill_amt     NUMERIC(18, 2),
            settle_bill_ccy     VARCHAR(8),
            final_amt           NUMERIC(18, 2)  NOT NULL,
            final_ccy           VARCHAR(8)      NOT NULL,
            merchant_name       VARCHAR(255),
            merchant_country    VARCHAR(8),
            mcc                 VARCHAR(8),
            auth_code           VARCHAR(32),
            decline_reason      VARCHAR(255),
            txn_time            TIMESTAMPTZ,
            clearing_date       TIMESTAMPTZ,
            is_settled          BOOLEAN         NOT NULL DEFAULT FALSE,
            withdrawal_status   VARCHAR(20),
            raw_callback_data   JSONB,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_card_transactions_txn_id UNIQUE (txn_id),
            CONSTRAINT ck_card_transactions_type CHECK (
                txn_type IN ('AUTH', 'AUTH_CANCEL', 'SETTLEMENT', 'REFUND', 'CANCEL')
            ),
            CONSTRAINT ck_card_transactions_status CHECK (txn_status IN ('0', '1')),
            CONSTRAINT ck_card_transactions_withdrawal CHECK (
                withdrawal_status IS NULL
                OR withdrawal_status IN ('PENDING', 'PROCESSING', 'SUCCESS', 'FAILED')
            )
        );
    """)
    # a replayed settlement that was merged into its auth row must still collide
    op.execute("""
        CREATE UNIQUE INDEX uq_card_transactions_settle_txn_id
        ON card_transactions (settle_txn_id)
        WHERE settle_txn_id IS NOT NULL;
    """)
    op.execute("CREATE INDEX idx_card_transactions_user ON card_transactions (user_id, id DESC);")
    op.execute("CREATE INDEX idx_card_transactions_card ON card_transactions (card_id, id DESC);")
    op.execute("""
        CREATE INDEX idx_card_transactions_withdrawal
        ON card_transactions (withdrawal_status, updated_at)
        WHERE withdrawal_status IN ('PENDING', 'PROCESSING');
    """)
    op.execute("""
        CREATE TRIGGER trg_card_transactions_updated_at
            BEFORE UPDATE ON card_transactions
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS card_transactions CASCADE;")
