"""Decimal money helpers.

All amounts are `decimal.Decimal` with two fractional digits (DB type NUMERIC(18,2)).
No float arithmetic on balances.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


def to_amount(value: Any) -> Decimal:
    """Parse a provider/DB value into a 2dp Decimal. None and '' become 0.00."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value.quantize(_CENT, rounding=ROUND_HALF_UP)
    try:
        # str() first so floats from JSON keep their printed form
        return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc


def to_optional_amount(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return to_amount(value)


def format_amount(amount: Decimal) -> str:
    """Wire format used by the card provider: '12.50'."""
    return f"{to_amount(amount):.2f}"


def amount_to_display(amount: Decimal, currency: str = "USD") -> str:
    """12.5 -> '12.50 USD', -1200 -> '-1,200.00 USD'."""
    amount = to_amount(amount)
    return f"{amount:,.2f} {currency}"
