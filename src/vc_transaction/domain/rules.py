"""Reconciliation rules — pure functions over provider codes and amounts.

Stored sign of `final_amt`:
    AUTH, SETTLEMENT      +|amount|   (money leaves the card)
    REFUND, AUTH_CANCEL   -|amount|   (money comes back)
so |Σ final_amt| over successful rows is net consumption.

Effect on the card's cached balance (successful rows only):
    AUTH, SETTLEMENT  -|amount|
    REFUND            +|amount|
    AUTH_CANCEL       0  (handled by auto-withdrawal)
"""

from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from src.vc_common.enums import TxnStatus, TxnType
from src.vc_common.errors import UnsupportedTransactionTypeError
from src.vc_common.money import ZERO, to_amount

_AUTH_CODES = {
    "A": TxnType.AUTH,
    "AUTH": TxnType.AUTH,
    "D": TxnType.AUTH_CANCEL,
    "AUTH_CANCEL": TxnType.AUTH_CANCEL,
}

_SETTLE_CODES = {
    "C": TxnType.SETTLEMENT,
    "SETTLEMENT": TxnType.SETTLEMENT,
    "R": TxnType.REFUND,
    "REFUND": TxnType.REFUND,
}

# Field order of auth_list / settle_list rows when the provider omits key_list
AUTH_LIST_KEYS: tuple[str, ...] = (
    "card_id", "txn_id", "txn_type", "txn_status", "txn_time", "txn_amt", "txn_ccy",
    "bill_amt", "bill_ccy", "mcc", "merch_name", "merch_ctry", "origin_txn_id",
    "decline_reason",
)
SETTLE_LIST_KEYS: tuple[str, ...] = (
    "card_id", "txn_id", "txn_type", "txn_amt", "txn_ccy", "bill_amt", "bill_ccy",
    "auth_txn_id", "clearing_date", "mcc", "merch_name", "merch_ctry", "auth_code",
    "sub_id", "trade_note",
)


def normalize_auth_type(code: str) -> TxnType:
    try:
        return _AUTH_CODES[str(code).strip().upper()]
    except KeyError:
        raise UnsupportedTransactionTypeError(str(code)) from None


def normalize_settle_type(code: str) -> TxnType:
    try:
        return _SETTLE_CODES[str(code).strip().upper()]
    except KeyError:
        raise UnsupportedTransactionTypeError(str(code)) from None


def signed_final_amount(txn_type: TxnType | str, amount: Decimal) -> Decimal:
    value = abs(to_amount(amount))
    if TxnType(txn_type) in (TxnType.REFUND, TxnType.AUTH_CANCEL):
        return -value
    return value


def card_balance_effect(txn_type: TxnType | str, txn_status: str, amount: Decimal) -> Decimal:
    if txn_status != TxnStatus.SUCCESS:
        return ZERO
    value = abs(to_amount(amount))
    kind = TxnType(txn_type)
    if kind in (TxnType.AUTH, TxnType.SETTLEMENT):
        return -value
    if kind == TxnType.REFUND:
        return value
    return ZERO


def settlement_merge_delta(
    auth_type: TxnType | str,
    auth_status: str,
    auth_final_amt: Decimal,
    settle_type: TxnType | str,
    settle_amt: Decimal,
) -> Decimal:
    """Adjustment that turns the auth's provisional effect into the settlement's.

    The row's authorization status stays authoritative, so a failed auth that
    later settles moves nothing.
    """
    already_applied = card_balance_effect(auth_type, auth_status, auth_final_amt)
    target = card_balance_effect(settle_type, auth_status, settle_amt)
    return target - already_applied


def decode_list_row(row: Any, key_list: Sequence[str] | None, default_keys: Sequence[str]) -> dict[str, Any]:
    """auth_list/settle_list rows are positional arrays; dict rows pass through."""
    if isinstance(row, dict):
        return dict(row)
    keys = list(key_list) if key_list else list(default_keys)
    if not isinstance(row, (list, tuple)):
        raise ValueError(f"Unexpected list row: {row!r}")
    return dict(zip(keys, row))
