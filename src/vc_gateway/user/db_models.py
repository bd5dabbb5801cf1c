"""SQLAlchemy ORM model for the users table.

Table is created by Alembic migration: alembic/versions/002_create_users.py
Credentials live with the external auth service; this table carries only
what the ledger needs (role, hierarchy, cached balance, status).
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Numeric, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.vc_common.database import Base
from src.vc_ledger.domain.models import User


class UserModel(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="USER")
    parent_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )

    def to_domain(self) -> User:
        return User(
            id=str(self.id),
            username=self.username,
            role=self.role,
            status=self.status,
            parent_id=str(self.parent_id) if self.parent_id else None,
            balance=self.balance,
            created_at=self.created_at,
        )
