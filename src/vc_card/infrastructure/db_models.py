"""SQLAlchemy ORM model for virtual_cards.

Maps to the table created by alembic/versions/004_create_virtual_cards.py.
DO NOT add/remove columns here without a corresponding migration.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.vc_common.database import Base


class VirtualCardORM(Base):
    __tablename__ = "virtual_cards"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    card_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    card_no: Mapped[str] = mapped_column(String(32), nullable=False)
    cvv: Mapped[str | None] = mapped_column(String(8), nullable=True)
    exp_date: Mapped[str | None] = mapped_column(String(16), nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    remark: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
