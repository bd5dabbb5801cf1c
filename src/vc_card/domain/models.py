"""Domain models for vc_card — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from src.vc_common.enums import CardStatus
from src.vc_common.money import ZERO


@dataclass
class VirtualCard:
    card_id: str                     # provider-assigned, unique
    card_no: str
    currency: str
    status: str                      # CardStatus value
    created_by: str                  # owning user id
    cvv: str | None = None
    exp_date: str | None = None
    balance: Decimal = ZERO          # cached display value, see BalanceProjector
    remark: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_released(self) -> bool:
        return self.status == CardStatus.RELEASED

    @property
    def masked_card_no(self) -> str:
        if len(self.card_no) <= 8:
            return self.card_no
        return f"{self.card_no[:4]}{'*' * (len(self.card_no) - 8)}{self.card_no[-4:]}"
