"""Repository Protocol for virtual cards.

Shared by the card service and the transaction reconciler (card lookup and
cached balance adjustments).
"""

from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_card.domain.models import VirtualCard


class CardRepositoryProtocol(Protocol):
    async def get_card(self, db: AsyncSession, card_id: str) -> VirtualCard | None: ...

    async def lock_card(self, db: AsyncSession, card_id: str) -> VirtualCard | None: ...

    async def insert_card(self, db: AsyncSession, card: VirtualCard) -> VirtualCard: ...

    async def update_status(
        self, db: AsyncSession, card_id: str, status: str
    ) -> VirtualCard | None: ...

    async def set_balance(
        self, db: AsyncSession, card_id: str, balance: Decimal
    ) -> VirtualCard | None: ...

    async def adjust_balance(
        self, db: AsyncSession, card_id: str, delta: Decimal
    ) -> Decimal | None:
        """balance += delta; returns the new cached balance (None if card missing)."""
        ...

    async def mark_released(self, db: AsyncSession, card_id: str) -> VirtualCard | None: ...
