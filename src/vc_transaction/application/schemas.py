"""Pydantic schemas for vc_transaction: provider webhook bodies and transaction views.

Webhook bodies use the provider's camelCase names; responses use snake_case like
the rest of the API.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.vc_common.datetime_utils import parse_provider_time
from src.vc_common.money import format_amount
from src.vc_transaction.domain.models import (
    AuthorizationEvent,
    CardTransaction,
    CompensationOutcome,
    IngestResult,
    SettlementEvent,
    SummaryBucket,
    TransactionSummary,
)

# ---------------------------------------------------------------------------
# Webhook bodies
# ---------------------------------------------------------------------------


class _ProviderBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator(
        "mcc", "txn_status", "origin_txn_id", "auth_code", "txn_id", "card_id",
        mode="before", check_fields=False,
    )
    @classmethod
    def _codes_as_str(cls, value: Any) -> Any:
        # the provider sends some codes as JSON numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class AuthCallbackRequest(_ProviderBody):
    card_id: str = Field(..., alias="cardId")
    txn_id: str = Field(..., alias="txnId")
    txn_type: str = Field(..., alias="txnType")
    txn_status: str = Field(..., alias="txnStatus")
    txn_amt: Decimal = Field(..., alias="txnAmt")
    txn_ccy: str | None = Field(None, alias="txnCcy")
    bill_amt: Decimal | None = Field(None, alias="billAmt")
    bill_ccy: str | None = Field(None, alias="billCcy")
    txn_time: str | None = Field(None, alias="txnTime")
    mcc: str | None = None
    merch_name: str | None = Field(None, alias="merchName")
    merch_ctry: str | None = Field(None, alias="merchCtry")
    origin_txn_id: str | None = Field(None, alias="originTxnId")
    decline_reason: str | None = Field(None, alias="declineReason")
    auth_code: str | None = Field(None, alias="authCode")

    def to_event(self, raw: dict[str, Any]) -> AuthorizationEvent:
        return AuthorizationEvent(
            card_id=self.card_id,
            txn_id=self.txn_id,
            txn_type=self.txn_type,
            txn_status=self.txn_status,
            txn_amt=self.txn_amt,
            txn_ccy=self.txn_ccy,
            bill_amt=self.bill_amt,
            bill_ccy=self.bill_ccy,
            txn_time=parse_provider_time(self.txn_time),
            mcc=self.mcc,
            merchant_name=self.merch_name,
            merchant_country=self.merch_ctry,
            origin_txn_id=self.origin_txn_id,
            decline_reason=self.decline_reason,
            auth_code=self.auth_code,
            raw=raw,
        )


class SettleCallbackRequest(_ProviderBody):
    """Legacy settlement notification: ids and the final amount, no card id.

    `finalAmt` is what the merge books; the settled bill amount is informational
    and falls back to it when absent.
    """

    auth_txn_id: str = Field(..., alias="authTxnId")
    settle_txn_id: str = Field(..., alias="settleTxnId")
    final_amt: Decimal = Field(..., alias="finalAmt")
    final_ccy: str = Field(..., alias="finalCcy")
    settle_bill_amt: Decimal | None = Field(None, alias="settleBillAmt")
    settle_bill_ccy: str | None = Field(None, alias="settleBillCcy")

    def to_event(self, raw: dict[str, Any]) -> SettlementEvent:
        return SettlementEvent(
            txn_id=self.settle_txn_id,
            txn_type="SETTLEMENT",
            bill_amt=self.settle_bill_amt if self.settle_bill_amt is not None else self.final_amt,
            bill_ccy=self.settle_bill_ccy or self.final_ccy,
            auth_txn_id=self.auth_txn_id,
            final_amt=self.final_amt,
            final_ccy=self.final_ccy,
            raw=raw,
        )


class SettlementCallbackRequest(_ProviderBody):
    card_id: str = Field(..., alias="cardId")
    txn_id: str = Field(..., alias="txnId")
    auth_txn_id: str | None = Field(None, alias="authTxnId")
    txn_type: str = Field(..., alias="txnType")
    txn_status: str = Field("1", alias="txnStatus")
    txn_amt: Decimal | None = Field(None, alias="txnAmt")
    txn_ccy: str | None = Field(None, alias="txnCcy")
    bill_amt: Decimal = Field(..., alias="billAmt")
    bill_ccy: str | None = Field(None, alias="billCcy")
    clearing_date: str | None = Field(None, alias="clearingDate")
    mcc: str | None = None
    merch_name: str | None = Field(None, alias="merchName")
    merch_ctry: str | None = Field(None, alias="merchCtry")
    auth_code: str | None = Field(None, alias="authCode")

    def to_event(self, raw: dict[str, Any]) -> SettlementEvent:
        return SettlementEvent(
            txn_id=self.txn_id,
            txn_type=self.txn_type,
            txn_status=self.txn_status,
            bill_amt=self.bill_amt,
            bill_ccy=self.bill_ccy,
            card_id=self.card_id,
            auth_txn_id=self.auth_txn_id or None,
            txn_amt=self.txn_amt,
            txn_ccy=self.txn_ccy,
            clearing_date=parse_provider_time(self.clearing_date),
            mcc=self.mcc,
            merchant_name=self.merch_name,
            merchant_country=self.merch_ctry,
            auth_code=self.auth_code,
            raw=raw,
        )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _fmt(amount: Decimal | None) -> str | None:
    return format_amount(amount) if amount is not None else None


class TransactionItem(BaseModel):
    id: int | None
    txn_id: str
    card_id: str
    user_id: str
    username: str | None
    txn_type: str
    txn_status: str
    final_amt: str
    final_ccy: str
    auth_txn_id: str | None
    settle_txn_id: str | None
    auth_bill_amt: str | None
    settle_bill_amt: str | None
    merchant_name: str | None
    merchant_country: str | None
    mcc: str | None
    decline_reason: str | None
    txn_time: str | None
    clearing_date: str | None
    is_settled: bool
    withdrawal_status: str | None

    @classmethod
    def from_domain(cls, txn: CardTransaction) -> "TransactionItem":
        return cls(
            id=txn.id,
            txn_id=txn.txn_id,
            card_id=txn.card_id,
            user_id=txn.user_id,
            username=txn.username,
            txn_type=txn.txn_type,
            txn_status=txn.txn_status,
            final_amt=format_amount(txn.final_amt),
            final_ccy=txn.final_ccy,
            auth_txn_id=txn.auth_txn_id,
            settle_txn_id=txn.settle_txn_id,
            auth_bill_amt=_fmt(txn.auth_bill_amt),
            settle_bill_amt=_fmt(txn.settle_bill_amt),
            merchant_name=txn.merchant_name,
            merchant_country=txn.merchant_country,
            mcc=txn.mcc,
            decline_reason=txn.decline_reason,
            txn_time=txn.txn_time.isoformat() if txn.txn_time else None,
            clearing_date=txn.clearing_date.isoformat() if txn.clearing_date else None,
            is_settled=txn.is_settled,
            withdrawal_status=txn.withdrawal_status,
        )


class TransactionListResponse(BaseModel):
    items: list[TransactionItem]
    next_cursor: str | None
    has_more: bool


class SummaryBucketResponse(BaseModel):
    total_transactions: int
    total_amount: str
    success_count: int
    failed_count: int

    @classmethod
    def from_domain(cls, bucket: SummaryBucket) -> "SummaryBucketResponse":
        return cls(
            total_transactions=bucket.total_count,
            total_amount=format_amount(bucket.total_amount),
            success_count=bucket.success_count,
            failed_count=bucket.failed_count,
        )


class TransactionSummaryResponse(BaseModel):
    user_id: str | None  # None: every user
    start_date: str
    end_date: str
    auth_summary: SummaryBucketResponse
    settle_summary: SummaryBucketResponse

    @classmethod
    def from_domain(
        cls, user_id: str | None, start: date, end: date, summary: TransactionSummary
    ) -> "TransactionSummaryResponse":
        return cls(
            user_id=user_id,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            auth_summary=SummaryBucketResponse.from_domain(summary.auth),
            settle_summary=SummaryBucketResponse.from_domain(summary.settle),
        )


class WithdrawalStatusResponse(BaseModel):
    txn_id: str
    txn_type: str
    txn_status: str
    withdrawal_status: str | None
    final_amt: str
    final_ccy: str
    updated_at: str | None

    @classmethod
    def from_domain(cls, txn: CardTransaction) -> "WithdrawalStatusResponse":
        return cls(
            txn_id=txn.txn_id,
            txn_type=txn.txn_type,
            txn_status=txn.txn_status,
            withdrawal_status=txn.withdrawal_status,
            final_amt=format_amount(txn.final_amt),
            final_ccy=txn.final_ccy,
            updated_at=txn.updated_at.isoformat() if txn.updated_at else None,
        )


class IngestResponse(BaseModel):
    duplicate: bool = False
    outcome: str
    txn_id: str
    txn_type: str
    final_amt: str
    is_settled: bool
    balance_delta: str
    balance_skipped: bool
    compensation_queued: bool

    @classmethod
    def from_result(cls, result: IngestResult) -> "IngestResponse":
        txn = result.transaction
        return cls(
            outcome=result.outcome.value,
            txn_id=txn.txn_id,
            txn_type=txn.txn_type,
            final_amt=format_amount(txn.final_amt),
            is_settled=txn.is_settled,
            balance_delta=format_amount(result.balance_delta),
            balance_skipped=result.balance_skipped,
            compensation_queued=result.compensation_queued,
        )


class DuplicateEventResponse(BaseModel):
    duplicate: bool = True
    txn_id: str
    reason: str


class CompensationResponse(BaseModel):
    txn_id: str
    result: CompensationOutcome
    txn_type: str
    withdrawal_status: str | None
    message: str
