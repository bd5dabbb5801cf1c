"""CardApplicationService — the card operations that move money.

Each operation is one DB transaction:
  lock owner row -> policy -> balance gate -> provider call -> card row + OperationLog -> commit

The provider call happens while the owner row is locked, which serialises
spends per user. If the provider succeeded but the local commit fails the
mismatch is logged at ERROR with the provider references for manual repair.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.vc_card.application.schemas import CardOperationResponse, CardResponse
from src.vc_card.domain.models import VirtualCard
from src.vc_card.domain.repository import CardRepositoryProtocol
from src.vc_card.infrastructure.persistence import CardRepository
from src.vc_common.enums import CardOperationType, CardStatus
from src.vc_common.errors import (
    CardNotFoundError,
    CardNotOperableError,
    InsufficientBalanceError,
    UserNotFoundError,
)
from src.vc_common.id_generator import (
    CREATE_PREFIX,
    RECHARGE_PREFIX,
    RELEASE_PREFIX,
    WITHDRAW_PREFIX,
    new_request_id,
)
from src.vc_common.money import ZERO, format_amount, to_amount
from src.vc_ledger.application.projector import BalanceProjector
from src.vc_ledger.domain.models import OperationLog, User
from src.vc_ledger.domain.policy import Action, require
from src.vc_ledger.domain.repository import LedgerRepositoryProtocol
from src.vc_ledger.infrastructure.persistence import LedgerRepository
from src.vc_provider.client import get_card_provider
from src.vc_provider.protocol import CardProviderProtocol

logger = logging.getLogger(__name__)

_DEFAULT_VALIDITY = timedelta(days=365 * 3)


class CardApplicationService:
    def __init__(
        self,
        cards: CardRepositoryProtocol | None = None,
        ledger_repo: LedgerRepositoryProtocol | None = None,
        projector: BalanceProjector | None = None,
        provider: CardProviderProtocol | None = None,
    ) -> None:
        self._cards: CardRepositoryProtocol = cards or CardRepository()
        self._ledger_repo: LedgerRepositoryProtocol = ledger_repo or LedgerRepository()
        self._projector = projector or BalanceProjector(self._ledger_repo)
        self._provider = provider

    @property
    def provider(self) -> CardProviderProtocol:
        return self._provider or get_card_provider()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_card(
        self,
        db: AsyncSession,
        actor: User,
        amount: Decimal,
        currency: str | None = None,
        exp_date: str | None = None,
        product_code: str | None = None,
        remark: str | None = None,
    ) -> CardOperationResponse:
        amount = to_amount(amount)
        currency = (currency or settings.DEFAULT_CARD_CURRENCY).upper()
        exp_date = exp_date or (date.today() + _DEFAULT_VALIDITY).isoformat()
        request_id = new_request_id(CREATE_PREFIX)
        issued_card_id: str | None = None
        try:
            owner = await self._ledger_repo.lock_user(db, actor.id)
            if owner is None:
                raise UserNotFoundError(actor.id)
            require(actor, owner, Action.CARD_OPERATE)
            await self._projector.ensure_available(db, owner.id, amount)

            created = await self.provider.create_card(
                amount=amount,
                currency=currency,
                exp_date=exp_date,
                product_code=product_code or settings.DEFAULT_CARD_PRODUCT_CODE,
                request_id=request_id,
                remark=remark,
            )
            issued_card_id = created.card_id
            card = await self._cards.insert_card(
                db,
                VirtualCard(
                    card_id=created.card_id,
                    card_no=created.card_no,
                    cvv=created.cvv,
                    exp_date=created.exp_date,
                    currency=created.cur_id or currency,
                    status=CardStatus.ACTIVE.value,
                    balance=created.card_bal,
                    created_by=owner.id,
                    remark=remark,
                ),
            )
            log = await self._log(
                db, card, CardOperationType.CREATE_CARD, amount, actor,
                f"Card created with {format_amount(amount)} {currency}",
            )
            await db.commit()
        except Exception:
            await db.rollback()
            if issued_card_id is not None:
                logger.error(
                    "Provider issued card %s (request %s) but it was not recorded locally",
                    issued_card_id,
                    request_id,
                )
            raise
        logger.info("Card %s created for user %s", card.card_id, owner.id)
        return self._operation_response(card, log)

    async def recharge_card(
        self, db: AsyncSession, actor: User, card_id: str, amount: Decimal
    ) -> CardOperationResponse:
        amount = to_amount(amount)
        request_id = new_request_id(RECHARGE_PREFIX)
        provider_done = False
        try:
            card, owner = await self._load_for_operation(db, actor, card_id, lock_owner=True)
            await self._projector.ensure_available(db, owner.id, amount)

            result = await self.provider.recharge_card(card.card_id, amount, request_id)
            provider_done = True
            card = await self._cards.set_balance(db, card.card_id, result.card_bal) or card
            log = await self._log(
                db, card, CardOperationType.RECHARGE, amount, actor,
                f"Card recharged {format_amount(amount)}",
            )
            await db.commit()
        except Exception:
            await db.rollback()
            self._report_unrecorded(provider_done, "recharge", card_id, request_id)
            raise
        return self._operation_response(card, log)

    async def withdraw_card(
        self, db: AsyncSession, actor: User, card_id: str, amount: Decimal
    ) -> CardOperationResponse:
        amount = to_amount(amount)
        request_id = new_request_id(WITHDRAW_PREFIX)
        provider_done = False
        try:
            card, _owner = await self._load_for_operation(db, actor, card_id, lock_owner=False)
            if card.balance < amount:
                raise InsufficientBalanceError(amount, card.balance)

            result = await self.provider.withdraw_card(card.card_id, amount, request_id)
            provider_done = True
            card = await self._cards.set_balance(db, card.card_id, result.card_bal) or card
            log = await self._log(
                db, card, CardOperationType.WITHDRAW, amount, actor,
                f"Card withdrawal {format_amount(amount)}",
            )
            await db.commit()
        except Exception:
            await db.rollback()
            self._report_unrecorded(provider_done, "withdraw", card_id, request_id)
            raise
        return self._operation_response(card, log)

    async def toggle_card_status(
        self, db: AsyncSession, actor: User, card_id: str
    ) -> CardOperationResponse:
        try:
            card, _owner = await self._load_for_operation(db, actor, card_id, lock_owner=False)
            if card.status == CardStatus.ACTIVE:
                await self.provider.freeze_card(card.card_id)
                new_status, op = CardStatus.FROZEN, CardOperationType.FREEZE
            elif card.status == CardStatus.FROZEN:
                await self.provider.activate_card(card.card_id)
                new_status, op = CardStatus.ACTIVE, CardOperationType.UNFREEZE
            else:
                raise CardNotOperableError(card.card_id, card.status)

            card = await self._cards.update_status(db, card.card_id, new_status.value) or card
            log = await self._log(db, card, op, ZERO, actor, f"Card {new_status.value.lower()}")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return self._operation_response(card, log)

    async def release_card(
        self, db: AsyncSession, actor: User, card_id: str
    ) -> CardOperationResponse:
        """Close the card at the provider; its residual leaves cardLocked with it."""
        request_id = new_request_id(RELEASE_PREFIX)
        provider_done = False
        try:
            card, _owner = await self._load_for_operation(db, actor, card_id, lock_owner=True)
            result = await self.provider.release_card(card.card_id, request_id)
            provider_done = True
            card = await self._cards.mark_released(db, card.card_id) or card
            log = await self._log(
                db, card, CardOperationType.DELETE_CARD, result.release_bal, actor,
                f"Card released, returned {format_amount(result.release_bal)}",
            )
            await db.commit()
        except Exception:
            await db.rollback()
            self._report_unrecorded(provider_done, "release", card_id, request_id)
            raise
        return self._operation_response(card, log)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_for_operation(
        self, db: AsyncSession, actor: User, card_id: str, lock_owner: bool
    ) -> tuple[VirtualCard, User]:
        card = await self._cards.lock_card(db, card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        if card.is_released:
            raise CardNotOperableError(card_id, card.status)
        if lock_owner:
            owner = await self._ledger_repo.lock_user(db, card.created_by)
        else:
            owner = await self._ledger_repo.get_user(db, card.created_by)
        if owner is None:
            raise UserNotFoundError(card.created_by)
        require(actor, owner, Action.CARD_OPERATE)
        return card, owner

    async def _log(
        self,
        db: AsyncSession,
        card: VirtualCard,
        op: CardOperationType,
        amount: Decimal,
        actor: User,
        description: str,
    ) -> OperationLog:
        return await self._ledger_repo.insert_operation_log(
            db,
            card_id=card.card_id,
            card_no=card.card_no,
            operation_type=op.value,
            amount=amount,
            currency=card.currency,
            operator_id=actor.id,
            operator_name=actor.username,
            description=description,
        )

    @staticmethod
    def _report_unrecorded(provider_done: bool, what: str, card_id: str, request_id: str) -> None:
        if provider_done:
            logger.error(
                "Provider %s on card %s (request %s) succeeded but was not recorded locally",
                what,
                card_id,
                request_id,
            )

    @staticmethod
    def _operation_response(card: VirtualCard, log: OperationLog) -> CardOperationResponse:
        return CardOperationResponse(
            card=CardResponse.from_domain(card),
            operation_type=log.operation_type,
            amount=format_amount(log.amount),
            operation_log_id=log.id,
        )
