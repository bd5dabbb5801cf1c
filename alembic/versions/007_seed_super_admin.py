"""007: seed the root super admin

Revision ID: 007
Revises: 006
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op

revision: str = "007"
down_revision: Union[str, None] = "006"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Root of the money float: deposits by the super admin need no prior balance
    op.execute("""
        INSERT INTO users (username, role, status)
        VALUES ('root', 'SUPER_ADMIN', 'ACTIVE')
        ON CONFLICT (username) DO NOTHING;
    """)


def downgrade() -> None:
    op.execute("DELETE FROM users WHERE username = 'root' AND role = 'SUPER_ADMIN';")
