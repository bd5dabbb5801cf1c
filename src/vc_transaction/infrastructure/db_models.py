"""SQLAlchemy ORM model for card_transactions.

Maps to the table created by alembic/versions/006_create_card_transactions.py.
DO NOT add/remove columns here without a corresponding migration.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import BigInteger, Boolean, DateTime, Numeric, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.vc_common.database import Base


class CardTransactionORM(Base):
    __tablename__ = "card_transactions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    card_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    txn_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    origin_txn_id: Mapped[str] = mapped_column(String(64), nullable=False, default="0")
    auth_txn_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    settle_txn_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    txn_type: Mapped[str] = mapped_column(String(20), nullable=False)
    txn_status: Mapped[str] = mapped_column(String(1), nullable=False)
    auth_txn_amt: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    auth_txn_ccy: Mapped[str | None] = mapped_column(String(8), nullable=True)
    auth_bill_amt: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    auth_bill_ccy: Mapped[str | None] = mapped_column(String(8), nullable=True)
    settle_bill_amt: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    settle_bill_ccy: Mapped[str | None] = mapped_column(String(8), nullable=True)
    final_amt: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    final_ccy: Mapped[str] = mapped_column(String(8), nullable=False)
    merchant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    merchant_country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    mcc: Mapped[str | None] = mapped_column(String(8), nullable=True)
    auth_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    txn_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clearing_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    withdrawal_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    raw_callback_data: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
