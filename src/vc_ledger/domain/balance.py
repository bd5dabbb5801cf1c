"""Pure balance arithmetic — sign normalisation and the dashboard formula.

No I/O. The repository supplies the raw sums; everything that decides what a
user may spend goes through `compute_dashboard`.

    totalRecharge    = Σ flows(target=U) − Σ flows(operator=U)
    totalConsumption = |Σ final_amt of U's successful, non-AUTH_CANCEL txns|
    cardLocked       = max(0, Σ op-log amount on U's open cards
                              − |Σ final_amt of successful, non-AUTH_CANCEL txns on those cards|)
    availableAmount  = totalRecharge − totalConsumption − cardLocked

Open card = owned by U and status != RELEASED.
"""

from decimal import Decimal

from src.vc_common.enums import CardOperationType, FlowOperationType
from src.vc_common.errors import InvalidFlowAmountError
from src.vc_common.money import ZERO, to_amount
from src.vc_ledger.domain.models import BalanceAggregates, DashboardData

_POSITIVE_CARD_OPS = frozenset({CardOperationType.CREATE_CARD, CardOperationType.RECHARGE})
_NEGATIVE_CARD_OPS = frozenset({CardOperationType.DELETE_CARD, CardOperationType.WITHDRAW})


def signed_flow_amount(operation_type: str, amount: Decimal) -> Decimal:
    """RECHARGE → +|amount|, WITHDRAW → −|amount|. Zero is rejected."""
    value = abs(to_amount(amount))
    if value == ZERO:
        raise InvalidFlowAmountError(amount)
    op = FlowOperationType(operation_type)
    return value if op == FlowOperationType.RECHARGE else -value


def check_flow_sign(operation_type: str, amount: Decimal) -> None:
    """Insert-time invariant: recharge ⇒ amount > 0, withdraw ⇒ amount < 0."""
    op = FlowOperationType(operation_type)
    if op == FlowOperationType.RECHARGE and amount <= ZERO:
        raise ValueError(f"RECHARGE flow must be positive, got {amount}")
    if op == FlowOperationType.WITHDRAW and amount >= ZERO:
        raise ValueError(f"WITHDRAW flow must be negative, got {amount}")


def signed_card_operation_amount(operation_type: str, amount: Decimal) -> Decimal:
    """CREATE_CARD/RECHARGE +, DELETE_CARD/WITHDRAW −, FREEZE/UNFREEZE 0."""
    op = CardOperationType(operation_type)
    value = abs(to_amount(amount))
    if op in _POSITIVE_CARD_OPS:
        return value
    if op in _NEGATIVE_CARD_OPS:
        return -value
    return ZERO


def compute_dashboard(agg: BalanceAggregates) -> DashboardData:
    total_recharge = to_amount(agg.recharge_net)
    total_consumption = abs(to_amount(agg.consumption_sum))
    card_locked = max(
        ZERO,
        to_amount(agg.provisioned_sum) - abs(to_amount(agg.open_card_consumption_sum)),
    )
    return DashboardData(
        total_recharge=total_recharge,
        total_consumption=total_consumption,
        card_locked=card_locked,
        available_amount=total_recharge - total_consumption - card_locked,
    )
