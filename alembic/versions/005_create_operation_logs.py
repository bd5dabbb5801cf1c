"""005: create operation_logs table

Revision ID: 005
Revises: 004
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE operation_logs (
            id              BIGSERIAL       PRIMARY KEY,
            card_id         VARCHAR(64)     NOT NULL,
            card_no         VARCHAR(32),
            operation_type  VARCHAR(20)     NOT NULL,
            amount          NUMERIC(18, 2)  NOT NULL,
            currency        VARCHAR(8)      NOT NULL DEFAULT 'USD',
            operator_id     VARCHAR(64)     NOT NULL,
            operator_name   VARCHAR(64),
            description     VARCHAR(500),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_operation_logs_type CHECK (
                operation_type IN (
                    'CREATE_CARD', 'DELETE_CARD', 'RECHARGE', 'WITHDRAW', 'FREEZE', 'UNFREEZE'
                )
            ),
            CONSTRAINT ck_operation_logs_sign CHECK (
                (operation_type IN ('CREATE_CARD', 'RECHARGE') AND amount >= 0)
                OR (operation_type IN ('DELETE_CARD', 'WITHDRAW') AND amount <= 0)
                OR (operation_type IN ('FREEZE', 'UNFREEZE') AND amount = 0)
            )
        );
    """)
    op.execute("CREATE INDEX idx_operation_logs_card ON operation_logs (card_id, created_at DESC);")
    op.execute("CREATE INDEX idx_operation_logs_created ON operation_logs (created_at);")
    op.execute("COMMENT ON TABLE operation_logs IS 'Append-only card provisioning log; sum per card = funds locked in the card';")
    op.execute("""
        CREATE TRIGGER trg_operation_logs_append_only
            BEFORE UPDATE OR DELETE ON operation_logs
            FOR EACH ROW EXECUTE FUNCTION fn_reject_ledger_mutation();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS operation_logs CASCADE;")
