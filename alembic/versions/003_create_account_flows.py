"""003: create account_flows table

Revision ID: 003
Revises: 002
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE account_flows (
            id              BIGSERIAL       PRIMARY KEY,
            operator_id     VARCHAR(64)     NOT NULL,
            target_user_id  VARCHAR(64)     NOT NULL,
            operation_type  VARCHAR(20)     NOT NULL,
            amount          NUMERIC(18, 2)  NOT NULL,
            currency        VARCHAR(8)      NOT NULL DEFAULT 'USD',
            description     VARCHAR(500),
            business_type   VARCHAR(40),
            business_id     VARCHAR(64),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_account_flows_type CHECK (operation_type IN ('RECHARGE', 'WITHDRAW')),
            CONSTRAINT ck_account_flows_sign CHECK (
                (operation_type = 'RECHARGE' AND amount > 0)
                OR (operation_type = 'WITHDRAW' AND amount < 0)
            )
        );
    """)
    op.execute("CREATE INDEX idx_account_flows_target ON account_flows (target_user_id, id DESC);")
    op.execute("CREATE INDEX idx_account_flows_operator ON account_flows (operator_id, id DESC);")
    op.execute("COMMENT ON TABLE account_flows IS 'Append-only money movements; balance(U) = sum(target=U) - sum(operator=U)';")
    op.execute("""
        CREATE TRIGGER trg_account_flows_append_only
            BEFORE UPDATE OR DELETE ON account_flows
            FOR EACH ROW EXECUTE FUNCTION fn_reject_ledger_mutation();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS account_flows CASCADE;")
