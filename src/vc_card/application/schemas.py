"""Pydantic schemas for vc_card API."""

from decimal import Decimal

from pydantic import BaseModel, Field

from src.vc_card.domain.models import VirtualCard
from src.vc_common.money import format_amount


class CreateCardRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)
    exp_date: str | None = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$", description="YYYY-MM-DD")
    product_code: str | None = None
    remark: str | None = Field(None, max_length=500)


class CardAmountRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)


class CardResponse(BaseModel):
    card_id: str
    card_no: str  # masked
    currency: str
    status: str
    balance: str
    created_by: str
    remark: str | None
    exp_date: str | None

    @classmethod
    def from_domain(cls, card: VirtualCard) -> "CardResponse":
        return cls(
            card_id=card.card_id,
            card_no=card.masked_card_no,
            currency=card.currency,
            status=card.status,
            balance=format_amount(card.balance),
            created_by=card.created_by,
            remark=card.remark,
            exp_date=card.exp_date,
        )


class CardOperationResponse(BaseModel):
    card: CardResponse
    operation_type: str
    amount: str
    operation_log_id: int
