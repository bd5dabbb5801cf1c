"""Domain models for vc_transaction — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from src.vc_common.money import ZERO


@dataclass
class CardTransaction:
    card_id: str
    user_id: str
    txn_id: str                      # provider id, globally unique (dedup key)
    txn_type: str                    # TxnType value
    txn_status: str                  # "0" failed / "1" success
    final_amt: Decimal               # signed: AUTH/SETTLEMENT > 0, REFUND/AUTH_CANCEL < 0
    final_ccy: str
    username: str | None = None
    origin_txn_id: str = "0"
    auth_txn_id: str | None = None
    settle_txn_id: str | None = None
    auth_txn_amt: Decimal | None = None
    auth_txn_ccy: str | None = None
    auth_bill_amt: Decimal | None = None
    auth_bill_ccy: str | None = None
    settle_bill_amt: Decimal | None = None
    settle_bill_ccy: str | None = None
    merchant_name: str | None = None
    merchant_country: str | None = None
    mcc: str | None = None
    auth_code: str | None = None
    decline_reason: str | None = None
    txn_time: datetime | None = None
    clearing_date: datetime | None = None
    is_settled: bool = False
    withdrawal_status: str | None = None  # WithdrawalStatus value
    raw_callback_data: dict[str, Any] | None = None  # stored verbatim, never branched on
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class AuthorizationEvent:
    """An AUTH / AUTH_CANCEL as reported by the provider (webhook or auth_list row)."""

    card_id: str
    txn_id: str
    txn_type: str                    # provider code 'A'/'D' or AUTH/AUTH_CANCEL
    txn_status: str
    txn_amt: Decimal
    txn_ccy: str | None = None
    bill_amt: Decimal | None = None
    bill_ccy: str | None = None
    txn_time: datetime | None = None
    mcc: str | None = None
    merchant_name: str | None = None
    merchant_country: str | None = None
    origin_txn_id: str | None = None
    decline_reason: str | None = None
    auth_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SettlementEvent:
    """A SETTLEMENT / REFUND. `card_id` may be absent on the legacy settle callback."""

    txn_id: str
    txn_type: str                    # provider code 'C'/'R' or SETTLEMENT/REFUND
    bill_amt: Decimal
    bill_ccy: str | None = None
    card_id: str | None = None
    auth_txn_id: str | None = None
    txn_status: str = "1"
    txn_amt: Decimal | None = None
    txn_ccy: str | None = None
    final_amt: Decimal | None = None  # explicit override (legacy settle callback)
    final_ccy: str | None = None
    clearing_date: datetime | None = None
    mcc: str | None = None
    merchant_name: str | None = None
    merchant_country: str | None = None
    auth_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class IngestOutcome(str, Enum):
    INSERTED = "INSERTED"
    MERGED = "MERGED"


@dataclass
class IngestResult:
    outcome: IngestOutcome
    transaction: CardTransaction
    balance_delta: Decimal = ZERO    # applied to the card's cached balance
    balance_skipped: bool = False    # currency mismatch or card missing
    compensation_queued: bool = False


@dataclass
class SyncStats:
    total: int = 0
    inserted: int = 0
    merged: int = 0
    skipped: int = 0
    errors: int = 0

    def add(self, other: "SyncStats") -> None:
        self.total += other.total
        self.inserted += other.inserted
        self.merged += other.merged
        self.skipped += other.skipped
        self.errors += other.errors

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "inserted": self.inserted,
            "merged": self.merged,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class SummaryBucket:
    total_count: int = 0
    total_amount: Decimal = ZERO     # signed final_amt, failed rows included
    success_count: int = 0

    @property
    def failed_count(self) -> int:
        return self.total_count - self.success_count


@dataclass
class TransactionSummary:
    """Authorization-side rows (everything but CANCEL) and rows carrying a settlement."""

    auth: SummaryBucket = field(default_factory=SummaryBucket)
    settle: SummaryBucket = field(default_factory=SummaryBucket)


class CompensationOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ALREADY_WITHDRAWN = "ALREADY_WITHDRAWN"
    ALREADY_PROCESSING = "ALREADY_PROCESSING"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    NOT_FOUND = "NOT_FOUND"
    UNRESOLVED = "UNRESOLVED"        # provider outcome known but could not be persisted
