"""001: create extensions and trigger functions

fn_touch_updated_at keeps updated_at current on mutable tables.
fn_reject_ledger_mutation makes account_flows and operation_logs append-only:
every balance is a sum over their rows, so an edited row would silently
change balances.

Revision ID: 001
Revises: 
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # gen_random_uuid() for users.id
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_touch_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_reject_ledger_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only: % of row % rejected',
                TG_TABLE_NAME, TG_OP, OLD.id
                USING ERRCODE = 'restrict_violation';
        END;
        $$ LANGUAGE plpgsql;
    """)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS fn_reject_ledger_mutation();")
    op.execute("DROP FUNCTION IF EXISTS fn_touch_updated_at();")
