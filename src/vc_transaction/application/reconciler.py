"""CardTransactionReconciler — absorbs provider transaction events exactly once.

State per provider txn_id:
    (none)        --AUTH-->                       AUTH recorded, card debited
    AUTH          --SETTLEMENT/REFUND (auth id)-> merged in place, delta applied
    (none)        --SETTLEMENT/REFUND-->          standalone settled row
    standalone    --AUTH (its auth id)-->         auth fields filled in, no card effect
    (none)        --AUTH_CANCEL success-->        row with withdrawal_status=PENDING,
                                                  compensation handed to the dispatcher

Every ingest is one DB transaction. Duplicates are detected twice: a cheap
existence check up front and the ON CONFLICT insert / conditional merge that
actually decides. Webhooks and batch sync share this class.
"""

import logging
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_card.domain.models import VirtualCard
from src.vc_card.domain.repository import CardRepositoryProtocol
from src.vc_card.infrastructure.persistence import CardRepository
from src.vc_common.datetime_utils import local_day_range, parse_provider_time, utc_now
from src.vc_common.enums import TxnStatus, TxnType, UserStatus, WithdrawalStatus
from src.vc_common.errors import (
    AlreadySettledError,
    CardNotFoundError,
    DuplicateTransactionError,
    InvalidRequestError,
    TransactionNotFoundError,
    UserInactiveError,
)
from src.vc_common.money import ZERO, to_amount, to_optional_amount
from src.vc_common.pagination import cursor_decode, cursor_encode
from src.vc_ledger.application.ledger import resolve_view_scope
from src.vc_ledger.domain.models import User
from src.vc_ledger.domain.policy import Action, require
from src.vc_ledger.domain.repository import LedgerRepositoryProtocol
from src.vc_ledger.infrastructure.persistence import LedgerRepository
from src.vc_transaction.application.schemas import (
    TransactionItem,
    TransactionListResponse,
    TransactionSummaryResponse,
    WithdrawalStatusResponse,
)
from src.vc_transaction.domain.models import (
    AuthorizationEvent,
    CardTransaction,
    IngestOutcome,
    IngestResult,
    SettlementEvent,
    SyncStats,
)
from src.vc_transaction.domain.repository import TransactionRepositoryProtocol
from src.vc_transaction.domain.rules import (
    AUTH_LIST_KEYS,
    SETTLE_LIST_KEYS,
    card_balance_effect,
    decode_list_row,
    normalize_auth_type,
    normalize_settle_type,
    settlement_merge_delta,
    signed_final_amount,
)
from src.vc_transaction.infrastructure.persistence import TransactionRepository

logger = logging.getLogger(__name__)


class CompensationSink(Protocol):
    def submit(self, txn_id: str) -> None: ...


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text_value = str(value).strip()
    return text_value or None


def _link_id(value: Any) -> str | None:
    """authTxnId / originTxnId: the provider uses '' or '0' for 'no link'."""
    text_value = _opt_str(value)
    return None if text_value in (None, "0") else text_value


def auth_event_from_row(row: dict[str, Any]) -> AuthorizationEvent:
    return AuthorizationEvent(
        card_id=str(row["card_id"]),
        txn_id=str(row["txn_id"]),
        txn_type=str(row["txn_type"]),
        txn_status=str(row["txn_status"]),
        txn_amt=to_amount(row.get("txn_amt")),
        txn_ccy=_opt_str(row.get("txn_ccy")),
        bill_amt=to_optional_amount(row.get("bill_amt")),
        bill_ccy=_opt_str(row.get("bill_ccy")),
        txn_time=parse_provider_time(_opt_str(row.get("txn_time"))),
        mcc=_opt_str(row.get("mcc")),
        merchant_name=_opt_str(row.get("merch_name")),
        merchant_country=_opt_str(row.get("merch_ctry")),
        origin_txn_id=_opt_str(row.get("origin_txn_id")),
        decline_reason=_opt_str(row.get("decline_reason")),
        raw=row,
    )


def settle_event_from_row(row: dict[str, Any]) -> SettlementEvent:
    return SettlementEvent(
        txn_id=str(row["txn_id"]),
        txn_type=str(row["txn_type"]),
        bill_amt=to_amount(row.get("bill_amt")),
        bill_ccy=_opt_str(row.get("bill_ccy")),
        card_id=_opt_str(row.get("card_id")),
        auth_txn_id=_link_id(row.get("auth_txn_id")),
        txn_status=TxnStatus.SUCCESS.value,
        txn_amt=to_optional_amount(row.get("txn_amt")),
        txn_ccy=_opt_str(row.get("txn_ccy")),
        clearing_date=parse_provider_time(_opt_str(row.get("clearing_date"))),
        mcc=_opt_str(row.get("mcc")),
        merchant_name=_opt_str(row.get("merch_name")),
        merchant_country=_opt_str(row.get("merch_ctry")),
        auth_code=_opt_str(row.get("auth_code")),
        raw=row,
    )


class CardTransactionReconciler:
    def __init__(
        self,
        repo: TransactionRepositoryProtocol | None = None,
        cards: CardRepositoryProtocol | None = None,
        ledger_repo: LedgerRepositoryProtocol | None = None,
        dispatcher: CompensationSink | None = None,
    ) -> None:
        self._repo: TransactionRepositoryProtocol = repo or TransactionRepository()
        self._cards: CardRepositoryProtocol = cards or CardRepository()
        self._ledger_repo: LedgerRepositoryProtocol = ledger_repo or LedgerRepository()
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> CompensationSink:
        if self._dispatcher is not None:
            return self._dispatcher
        # late import: the dispatcher module builds a compensator that uses this package
        from src.vc_transaction.application.dispatcher import get_compensation_dispatcher

        return get_compensation_dispatcher()

    # ------------------------------------------------------------------
    # Single events
    # ------------------------------------------------------------------

    async def ingest_authorization(
        self, db: AsyncSession, event: AuthorizationEvent
    ) -> IngestResult:
        txn_type = normalize_auth_type(event.txn_type)
        amount = to_amount(event.bill_amt or event.txn_amt)
        currency = (event.bill_ccy or event.txn_ccy or "USD").upper()
        compensate = txn_type == TxnType.AUTH_CANCEL and event.txn_status == TxnStatus.SUCCESS
        try:
            if txn_type == TxnType.AUTH:
                late = await self._attach_to_settlement(db, event)
                if late is not None:
                    await db.commit()
                    logger.info(
                        "AUTH %s arrived after its settlement %s; attached without card effect",
                        event.txn_id, late.txn_id,
                    )
                    return IngestResult(IngestOutcome.MERGED, late)
            if await self._repo.exists(db, event.txn_id):
                raise DuplicateTransactionError(event.txn_id)
            card, owner = await self._resolve_owner(db, event.card_id)

            txn = await self._repo.insert_if_absent(
                db,
                CardTransaction(
                    card_id=card.card_id,
                    user_id=owner.id,
                    username=owner.username,
                    txn_id=event.txn_id,
                    origin_txn_id=_link_id(event.origin_txn_id) or "0",
                    txn_type=txn_type.value,
                    txn_status=event.txn_status,
                    auth_txn_amt=to_amount(event.txn_amt),
                    auth_txn_ccy=event.txn_ccy,
                    auth_bill_amt=to_optional_amount(event.bill_amt),
                    auth_bill_ccy=event.bill_ccy,
                    final_amt=signed_final_amount(txn_type, amount),
                    final_ccy=currency,
                    merchant_name=event.merchant_name,
                    merchant_country=event.merchant_country,
                    mcc=event.mcc,
                    auth_code=event.auth_code,
                    decline_reason=event.decline_reason,
                    txn_time=event.txn_time or utc_now(),
                    withdrawal_status=WithdrawalStatus.PENDING.value if compensate else None,
                    raw_callback_data=event.raw or None,
                ),
            )
            if txn is None:
                raise DuplicateTransactionError(event.txn_id)

            delta = card_balance_effect(txn_type, event.txn_status, amount)
            applied, skipped = await self._apply_card_effect(db, card, delta, None, txn.txn_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        queued = self._hand_off(txn.txn_id) if compensate else False
        logger.info(
            "Recorded %s %s on card %s (%s %s, status %s)",
            txn.txn_type, txn.txn_id, txn.card_id, amount, currency, txn.txn_status,
        )
        return IngestResult(IngestOutcome.INSERTED, txn, applied, skipped, queued)

    async def ingest_settlement(self, db: AsyncSession, event: SettlementEvent) -> IngestResult:
        txn_type = normalize_settle_type(event.txn_type)
        amount = to_amount(event.final_amt if event.final_amt is not None else event.bill_amt)
        currency = (event.final_ccy or event.bill_ccy or event.txn_ccy or "USD").upper()
        try:
            if await self._repo.exists(db, event.txn_id):
                raise DuplicateTransactionError(event.txn_id)

            auth = None
            if event.auth_txn_id:
                auth = await self._repo.lock_by_txn_id(db, event.auth_txn_id)
            if auth is not None and auth.is_settled:
                raise AlreadySettledError(auth.txn_id)

            if auth is not None and auth.txn_type == TxnType.AUTH:
                result = await self._merge(db, auth, event, txn_type, amount, currency)
            else:
                card_id = event.card_id or (auth.card_id if auth is not None else None)
                if card_id is None:
                    raise TransactionNotFoundError(event.auth_txn_id or event.txn_id)
                result = await self._insert_standalone(
                    db, card_id, event, txn_type, amount, currency
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "%s %s %s on card %s (%s %s, card delta %s)",
            result.outcome.value.capitalize(), txn_type.value, event.txn_id,
            result.transaction.card_id, amount, currency, result.balance_delta,
        )
        return result

    # ------------------------------------------------------------------
    # Batch (sync) variants
    # ------------------------------------------------------------------

    async def process_auth_list(
        self, db: AsyncSession, items: Sequence[Any], key_list: Sequence[str] | None = None
    ) -> SyncStats:
        stats = SyncStats()
        for item in items:
            stats.total += 1
            try:
                event = auth_event_from_row(decode_list_row(item, key_list, AUTH_LIST_KEYS))
                result = await self.ingest_authorization(db, event)
                if result.outcome == IngestOutcome.MERGED:
                    stats.merged += 1
                else:
                    stats.inserted += 1
            except (DuplicateTransactionError, AlreadySettledError):
                stats.skipped += 1
            except Exception:
                stats.errors += 1
                logger.exception("Failed to ingest auth list item %r", item)
        return stats

    async def process_settle_list(
        self, db: AsyncSession, items: Sequence[Any], key_list: Sequence[str] | None = None
    ) -> SyncStats:
        stats = SyncStats()
        for item in items:
            stats.total += 1
            try:
                event = settle_event_from_row(decode_list_row(item, key_list, SETTLE_LIST_KEYS))
                result = await self.ingest_settlement(db, event)
                if result.outcome == IngestOutcome.MERGED:
                    stats.merged += 1
                else:
                    stats.inserted += 1
            except (DuplicateTransactionError, AlreadySettledError):
                stats.skipped += 1
            except Exception:
                stats.errors += 1
                logger.exception("Failed to ingest settle list item %r", item)
        return stats

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def list_transactions(
        self,
        db: AsyncSession,
        viewer: User,
        user_id: str | None = None,
        cursor: str | None = None,
        limit: int = 20,
        card_id: str | None = None,
        txn_type: str | None = None,
        withdrawal_status: str | None = None,
    ) -> TransactionListResponse:
        """Super admins see everything when no user is named; others see what policy allows."""
        scope = await resolve_view_scope(self._ledger_repo, db, viewer, user_id)
        rows = await self._repo.list_transactions(
            db, scope, cursor_decode(cursor), limit + 1, card_id, txn_type, withdrawal_status
        )
        has_more = len(rows) > limit
        page = rows[:limit]
        next_cursor = cursor_encode(page[-1].id) if has_more and page and page[-1].id else None
        return TransactionListResponse(
            items=[TransactionItem.from_domain(t) for t in page],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def get_summary(
        self,
        db: AsyncSession,
        viewer: User,
        start_date: date,
        end_date: date,
        tz_name: str,
        user_id: str | None = None,
    ) -> TransactionSummaryResponse:
        if end_date < start_date:
            raise InvalidRequestError("end_date must not be before start_date")
        scope = await resolve_view_scope(self._ledger_repo, db, viewer, user_id)
        start_at, end_at = local_day_range(start_date, end_date, tz_name)
        summary = await self._repo.summarize(db, scope, start_at, end_at)
        return TransactionSummaryResponse.from_domain(scope, start_date, end_date, summary)

    async def get_withdrawal_status(
        self, db: AsyncSession, viewer: User, txn_id: str
    ) -> WithdrawalStatusResponse:
        txn = await self._repo.get_by_txn_id(db, txn_id)
        if txn is None:
            raise TransactionNotFoundError(txn_id)
        owner = await self._ledger_repo.get_user(db, txn.user_id)
        require(viewer, owner, Action.VIEW_BALANCE)
        return WithdrawalStatusResponse.from_domain(txn)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_owner(self, db: AsyncSession, card_id: str) -> tuple[VirtualCard, User]:
        # card status is not checked: events keep arriving after a card is released
        card = await self._cards.get_card(db, card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        owner = await self._ledger_repo.get_user(db, card.created_by)
        if owner is None or owner.status != UserStatus.ACTIVE:
            raise UserInactiveError(card.created_by)
        return card, owner

    async def _attach_to_settlement(
        self, db: AsyncSession, event: AuthorizationEvent
    ) -> CardTransaction | None:
        # the standalone settlement already moved the card balance
        return await self._repo.attach_authorization(
            db,
            auth_txn_id=event.txn_id,
            auth_txn_amt=to_amount(event.txn_amt),
            auth_txn_ccy=event.txn_ccy,
            auth_bill_amt=to_optional_amount(event.bill_amt),
            auth_bill_ccy=event.bill_ccy,
            txn_time=event.txn_time,
            merchant_name=event.merchant_name,
            merchant_country=event.merchant_country,
            mcc=event.mcc,
            auth_code=event.auth_code,
            raw=event.raw,
        )

    async def _merge(
        self,
        db: AsyncSession,
        auth: CardTransaction,
        event: SettlementEvent,
        txn_type: TxnType,
        amount: Decimal,
        currency: str,
    ) -> IngestResult:
        merged = await self._repo.merge_settlement(
            db,
            auth_txn_id=auth.txn_id,
            settle_txn_id=event.txn_id,
            settle_bill_amt=to_amount(event.bill_amt),
            settle_bill_ccy=(event.bill_ccy or currency).upper(),
            final_amt=signed_final_amount(txn_type, amount),
            final_ccy=currency,
            clearing_date=event.clearing_date,
            merchant_name=event.merchant_name,
            merchant_country=event.merchant_country,
            mcc=event.mcc,
            auth_code=event.auth_code,
            raw=event.raw,
            txn_type=txn_type.value,
        )
        if merged is None:
            raise AlreadySettledError(auth.txn_id)

        delta = settlement_merge_delta(
            auth.txn_type, auth.txn_status, auth.final_amt, txn_type, amount
        )
        card = await self._cards.get_card(db, auth.card_id)
        if card is None:
            logger.warning(
                "Card %s of settled auth %s no longer exists; balance untouched",
                auth.card_id, auth.txn_id,
            )
            return IngestResult(IngestOutcome.MERGED, merged, ZERO, balance_skipped=delta != ZERO)
        applied, skipped = await self._apply_card_effect(db, card, delta, currency, event.txn_id)
        return IngestResult(IngestOutcome.MERGED, merged, applied, skipped)

    async def _insert_standalone(
        self,
        db: AsyncSession,
        card_id: str,
        event: SettlementEvent,
        txn_type: TxnType,
        amount: Decimal,
        currency: str,
    ) -> IngestResult:
        card, owner = await self._resolve_owner(db, card_id)
        txn = await self._repo.insert_if_absent(
            db,
            CardTransaction(
                card_id=card.card_id,
                user_id=owner.id,
                username=owner.username,
                txn_id=event.txn_id,
                auth_txn_id=event.auth_txn_id,
                settle_txn_id=event.txn_id,
                txn_type=txn_type.value,
                txn_status=event.txn_status,
                auth_txn_amt=to_optional_amount(event.txn_amt),
                auth_txn_ccy=event.txn_ccy,
                settle_bill_amt=to_amount(event.bill_amt),
                settle_bill_ccy=(event.bill_ccy or currency).upper(),
                final_amt=signed_final_amount(txn_type, amount),
                final_ccy=currency,
                merchant_name=event.merchant_name,
                merchant_country=event.merchant_country,
                mcc=event.mcc,
                auth_code=event.auth_code,
                txn_time=event.clearing_date or utc_now(),
                clearing_date=event.clearing_date,
                is_settled=True,
                raw_callback_data=event.raw or None,
            ),
        )
        if txn is None:
            raise DuplicateTransactionError(event.txn_id)
        delta = card_balance_effect(txn_type, event.txn_status, amount)
        applied, skipped = await self._apply_card_effect(db, card, delta, currency, txn.txn_id)
        return IngestResult(IngestOutcome.INSERTED, txn, applied, skipped)

    async def _apply_card_effect(
        self,
        db: AsyncSession,
        card: VirtualCard,
        delta: Decimal,
        currency: str | None,
        txn_id: str,
    ) -> tuple[Decimal, bool]:
        """Returns (applied delta, skipped). `currency` None means no currency check."""
        if delta == ZERO:
            return ZERO, False
        if currency is not None and card.currency and currency.upper() != card.currency.upper():
            logger.warning(
                "Currency mismatch on %s: billed %s, card %s is %s; balance untouched",
                txn_id, currency, card.card_id, card.currency,
            )
            return ZERO, True
        await self._cards.adjust_balance(db, card.card_id, delta)
        return delta, False

    def _hand_off(self, txn_id: str) -> bool:
        # the PENDING marker is already committed; a failed hand-off is picked up by recovery
        try:
            self.dispatcher.submit(txn_id)
        except Exception:
            logger.exception("Could not queue auto-withdrawal for %s; left for recovery", txn_id)
            return False
        return True
