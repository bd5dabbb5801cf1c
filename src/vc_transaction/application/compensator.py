"""AutoWithdrawalCompensator — returns cancelled-authorization funds from the card.

withdrawal_status on an AUTH_CANCEL row:

    PENDING --claim--> PROCESSING --provider ok--> SUCCESS
       ^                ^   |
       |                |   +--error/timeout--> FAILED
       |                +------ retry / compensation recharge --+
       +-- written at ingestion (outbox marker), re-dispatched by recovery

The claim is a single conditional UPDATE, so concurrent deliveries of the same
cancellation reach the provider at most once. Operator remediation goes
through the same claim, which also limits it to successful AUTH_CANCEL rows.
Provider failures end as FAILED state for an operator to act on; they never
propagate out of `process`.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.vc_card.domain.repository import CardRepositoryProtocol
from src.vc_card.infrastructure.persistence import CardRepository
from src.vc_common.enums import CardOperationType, TxnStatus, TxnType, WithdrawalStatus
from src.vc_common.errors import (
    AppError,
    ProviderError,
    TransactionNotCompensableError,
    TransactionNotFoundError,
    WithdrawalInProgressError,
)
from src.vc_common.id_generator import (
    COMPENSATION_RECHARGE_PREFIX,
    WITHDRAW_PREFIX,
    new_request_id,
)
from src.vc_common.money import format_amount
from src.vc_ledger.domain.repository import LedgerRepositoryProtocol
from src.vc_ledger.infrastructure.persistence import LedgerRepository
from src.vc_provider.client import get_card_provider
from src.vc_provider.models import BalanceChange
from src.vc_provider.protocol import CardProviderProtocol
from src.vc_transaction.domain.models import CardTransaction, CompensationOutcome
from src.vc_transaction.domain.repository import TransactionRepositoryProtocol
from src.vc_transaction.infrastructure.persistence import TransactionRepository

logger = logging.getLogger(__name__)

SYSTEM_OPERATOR_ID = "SYSTEM"
SYSTEM_OPERATOR_NAME = "auto-withdrawal"


@dataclass
class CompensationResult:
    outcome: CompensationOutcome
    transaction: CardTransaction | None
    message: str = ""


class AutoWithdrawalCompensator:
    def __init__(
        self,
        repo: TransactionRepositoryProtocol | None = None,
        cards: CardRepositoryProtocol | None = None,
        ledger_repo: LedgerRepositoryProtocol | None = None,
        provider: CardProviderProtocol | None = None,
        timeout: float | None = None,
    ) -> None:
        self._repo: TransactionRepositoryProtocol = repo or TransactionRepository()
        self._cards: CardRepositoryProtocol = cards or CardRepository()
        self._ledger_repo: LedgerRepositoryProtocol = ledger_repo or LedgerRepository()
        self._provider = provider
        # the client retries internally; bound the whole call, not one attempt
        self._timeout = timeout or settings.CARD_PROVIDER_TIMEOUT_SECONDS * (
            settings.CARD_PROVIDER_MAX_RETRIES + 1
        )

    @property
    def provider(self) -> CardProviderProtocol:
        return self._provider or get_card_provider()

    # ------------------------------------------------------------------
    # Automatic path
    # ------------------------------------------------------------------

    async def process(self, db: AsyncSession, txn_id: str) -> CompensationOutcome:
        try:
            row = await self._repo.claim_withdrawal(db, txn_id)
            if row is None:
                current = await self._repo.get_by_txn_id(db, txn_id)
                await db.rollback()
                outcome = _unclaimed_outcome(current)
                logger.info("Auto-withdrawal for %s skipped: %s", txn_id, outcome.value)
                return outcome
            # PROCESSING must be durable before the provider sees the request
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        status = WithdrawalStatus.FAILED
        change: BalanceChange | None = None
        try:
            change = await asyncio.wait_for(
                self.provider.withdraw_card(
                    row.card_id, abs(row.final_amt), new_request_id(WITHDRAW_PREFIX)
                ),
                timeout=self._timeout,
            )
            status = WithdrawalStatus.SUCCESS
        except Exception:
            logger.exception(
                "Auto-withdrawal of %s from card %s failed for %s",
                format_amount(abs(row.final_amt)), row.card_id, txn_id,
            )
        finally:
            recorded = await self._resolve(db, row, status, change)

        if not recorded:
            return CompensationOutcome.UNRESOLVED
        if status == WithdrawalStatus.SUCCESS:
            logger.info(
                "Auto-withdrew %s from card %s for %s",
                format_amount(abs(row.final_amt)), row.card_id, txn_id,
            )
            return CompensationOutcome.SUCCESS
        return CompensationOutcome.FAILED

    async def recover_stale(self, db: AsyncSession, older_than: datetime) -> list[str]:
        """Fail PROCESSING rows that never resolved; return PENDING rows to re-dispatch."""
        try:
            failed = await self._repo.fail_stale_processing(db, older_than)
            pending = await self._repo.list_stale_pending(db, older_than)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        for txn_id in failed:
            logger.warning("Auto-withdrawal for %s stuck in PROCESSING, marked FAILED", txn_id)
        return pending

    # ------------------------------------------------------------------
    # Operator remediation
    # ------------------------------------------------------------------

    async def retry_withdrawal(self, db: AsyncSession, txn_id: str) -> CompensationResult:
        """Run the withdrawal again for a PENDING or FAILED cancellation."""
        row = await self._claim_for_operator(db, txn_id)
        if row.withdrawal_status == WithdrawalStatus.SUCCESS:
            return CompensationResult(
                CompensationOutcome.ALREADY_WITHDRAWN, row, "Funds were already withdrawn"
            )

        try:
            change = await asyncio.wait_for(
                self.provider.withdraw_card(
                    row.card_id, abs(row.final_amt), new_request_id(WITHDRAW_PREFIX)
                ),
                timeout=self._timeout,
            )
        except AppError:
            await self._resolve(db, row, WithdrawalStatus.FAILED, None)
            raise
        except Exception as exc:
            await self._resolve(db, row, WithdrawalStatus.FAILED, None)
            raise ProviderError(str(exc) or type(exc).__name__) from exc

        await self._resolve(db, row, WithdrawalStatus.SUCCESS, change)
        logger.info("Manual withdrawal retry succeeded for %s", txn_id)
        updated = await self._repo.get_by_txn_id(db, txn_id)
        return CompensationResult(
            CompensationOutcome.SUCCESS, updated or row, "Withdrawal completed"
        )

    async def compensation_recharge(self, db: AsyncSession, txn_id: str) -> CompensationResult:
        """Give the amount back to the card instead, for when withdrawing is impossible."""
        row = await self._claim_for_operator(db, txn_id)
        if row.withdrawal_status == WithdrawalStatus.SUCCESS:
            raise _not_compensable(row)

        try:
            change = await asyncio.wait_for(
                self.provider.recharge_card(
                    row.card_id,
                    abs(row.final_amt),
                    new_request_id(COMPENSATION_RECHARGE_PREFIX),
                ),
                timeout=self._timeout,
            )
        except AppError:
            await self._resolve(db, row, WithdrawalStatus.FAILED, None)
            raise
        except Exception as exc:
            await self._resolve(db, row, WithdrawalStatus.FAILED, None)
            raise ProviderError(str(exc) or type(exc).__name__) from exc

        try:
            updated = await self._repo.rewrite_as_cancel(db, txn_id)
            await self._cards.set_balance(db, row.card_id, change.card_bal)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.error(
                "Compensation recharge of %s on card %s done but %s not updated",
                format_amount(abs(row.final_amt)), row.card_id, txn_id,
            )
            raise
        logger.info("Compensation recharge completed for %s", txn_id)
        return CompensationResult(CompensationOutcome.SUCCESS, updated, "Compensation recharged")

    async def free_pass(self, db: AsyncSession, txn_id: str) -> CompensationResult:
        """Close the transaction as cancelled without moving money."""
        try:
            row = _ensure_compensable(await self._repo.lock_by_txn_id(db, txn_id), txn_id)
            if row.withdrawal_status == WithdrawalStatus.SUCCESS:
                raise _not_compensable(row)
            updated = await self._repo.rewrite_as_cancel(db, txn_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Free pass granted for %s", txn_id)
        return CompensationResult(CompensationOutcome.SUCCESS, updated, "Marked as cancelled")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _claim_for_operator(self, db: AsyncSession, txn_id: str) -> CardTransaction:
        """Move the row to PROCESSING, or explain why an operator may not act on it.

        A row already marked SUCCESS is returned unclaimed so each caller can
        decide whether that is an answer or an error.
        """
        try:
            row = await self._repo.claim_withdrawal(db, txn_id)
            if row is None:
                current = _ensure_compensable(
                    await self._repo.get_by_txn_id(db, txn_id), txn_id
                )
                await db.rollback()
                if current.withdrawal_status == WithdrawalStatus.SUCCESS:
                    return current
                raise WithdrawalInProgressError(txn_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return row

    async def _resolve(
        self,
        db: AsyncSession,
        row: CardTransaction,
        status: WithdrawalStatus,
        change: BalanceChange | None,
    ) -> bool:
        """Persist the provider outcome. False means the row is left for recovery."""
        try:
            await self._repo.set_withdrawal_status(db, row.txn_id, status.value)
            if status == WithdrawalStatus.SUCCESS and change is not None:
                await self._record_withdrawal(db, row, change)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception(
                "Could not record withdrawal status %s for %s", status.value, row.txn_id
            )
            return False
        return True

    async def _record_withdrawal(
        self, db: AsyncSession, row: CardTransaction, change: BalanceChange
    ) -> None:
        card = await self._cards.get_card(db, row.card_id)
        await self._ledger_repo.insert_operation_log(
            db,
            card_id=row.card_id,
            card_no=card.card_no if card is not None else None,
            operation_type=CardOperationType.WITHDRAW.value,
            amount=abs(row.final_amt),
            currency=card.currency if card is not None else row.final_ccy,
            operator_id=SYSTEM_OPERATOR_ID,
            operator_name=SYSTEM_OPERATOR_NAME,
            description=f"Auto-withdrawal for cancelled authorization {row.txn_id}",
        )
        if card is not None:
            await self._cards.set_balance(db, row.card_id, change.card_bal)


def _unclaimed_outcome(row: CardTransaction | None) -> CompensationOutcome:
    if row is None:
        return CompensationOutcome.NOT_FOUND
    if row.withdrawal_status == WithdrawalStatus.SUCCESS:
        return CompensationOutcome.ALREADY_WITHDRAWN
    if row.withdrawal_status == WithdrawalStatus.PROCESSING:
        return CompensationOutcome.ALREADY_PROCESSING
    if row.txn_type == TxnType.CANCEL:
        return CompensationOutcome.ALREADY_WITHDRAWN
    return CompensationOutcome.NOT_ELIGIBLE


def _not_compensable(row: CardTransaction) -> TransactionNotCompensableError:
    return TransactionNotCompensableError(
        row.txn_id, row.txn_type, row.txn_status, row.withdrawal_status
    )


def _ensure_compensable(row: CardTransaction | None, txn_id: str) -> CardTransaction:
    """Only a successful AUTH_CANCEL that is not mid-withdrawal may be remediated."""
    if row is None:
        raise TransactionNotFoundError(txn_id)
    if row.txn_type != TxnType.AUTH_CANCEL or row.txn_status != TxnStatus.SUCCESS:
        raise _not_compensable(row)
    if row.withdrawal_status == WithdrawalStatus.PROCESSING:
        raise WithdrawalInProgressError(txn_id)
    return row
