"""Port for the card provider — services depend on this, tests inject an AsyncMock."""

from decimal import Decimal
from typing import Protocol

from src.vc_provider.models import (
    BalanceChange,
    CardStatusChange,
    CreatedCard,
    ListPage,
    ReleasedCard,
)


class CardProviderProtocol(Protocol):
    async def create_card(
        self,
        amount: Decimal,
        currency: str,
        exp_date: str,
        product_code: str,
        request_id: str,
        remark: str | None = None,
    ) -> CreatedCard: ...

    async def recharge_card(
        self, card_id: str, amount: Decimal, request_id: str
    ) -> BalanceChange: ...

    async def withdraw_card(
        self, card_id: str, amount: Decimal, request_id: str
    ) -> BalanceChange: ...

    async def release_card(self, card_id: str, request_id: str) -> ReleasedCard: ...

    async def freeze_card(self, card_id: str) -> CardStatusChange: ...

    async def activate_card(self, card_id: str) -> CardStatusChange: ...

    async def get_auth_list(
        self, date_start: str, date_end: str, page: int, card_id: str | None = None
    ) -> ListPage: ...

    async def get_settle_list(self, date_start: str, date_end: str, page: int) -> ListPage: ...
