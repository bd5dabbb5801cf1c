"""Result types returned by the card provider client — pure dataclasses."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class CreatedCard:
    card_id: str
    card_no: str
    cvv: str
    exp_date: str
    card_bal: Decimal
    cur_id: str


@dataclass(frozen=True)
class BalanceChange:
    """Result of recharge/withdraw: moved amount and the card balance afterwards."""

    amount: Decimal
    card_bal: Decimal
    cur_id: str


@dataclass(frozen=True)
class ReleasedCard:
    release_bal: Decimal


@dataclass(frozen=True)
class CardStatusChange:
    card_id: str
    status: str


@dataclass
class ListPage:
    """One page of auth_list/settle_list. Rows are positional arrays described by key_list."""

    items: list[list[Any]] = field(default_factory=list)
    total_count: int = 0
    key_list: list[str] | None = None
