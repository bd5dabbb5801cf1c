"""Domain models for vc_ledger — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from src.vc_common.money import ZERO


@dataclass
class User:
    id: str
    username: str
    role: str                        # UserRole value
    status: str                      # UserStatus value
    parent_id: str | None = None
    balance: Decimal = ZERO          # cached; never used for gating
    created_at: datetime | None = None


@dataclass
class AccountFlow:
    id: int                          # BIGSERIAL
    operator_id: str
    target_user_id: str
    operation_type: str              # FlowOperationType value
    amount: Decimal                  # RECHARGE > 0, WITHDRAW < 0
    currency: str = "USD"
    description: str | None = None
    business_type: str | None = None
    business_id: str | None = None
    created_at: datetime | None = None
    target_username: str | None = None  # filled by the operator activity query only


@dataclass
class OperationLog:
    id: int
    card_id: str
    card_no: str | None
    operation_type: str              # CardOperationType value
    amount: Decimal                  # signed per operation type
    currency: str
    operator_id: str
    operator_name: str | None = None
    description: str | None = None
    created_at: datetime | None = None
    card_status: str | None = None   # joined from virtual_cards on listing


@dataclass
class BalanceAggregates:
    """Raw sums the dashboard formula is computed from."""

    recharge_net: Decimal = ZERO           # Σ flows targeting U − Σ flows operated by U
    consumption_sum: Decimal = ZERO        # Σ final_amt of U's successful non-cancel txns
    provisioned_sum: Decimal = ZERO        # Σ operation_logs.amount over U's open cards
    open_card_consumption_sum: Decimal = ZERO  # same as consumption_sum, open cards only


@dataclass(frozen=True)
class DashboardData:
    total_recharge: Decimal
    total_consumption: Decimal
    card_locked: Decimal
    available_amount: Decimal


@dataclass
class FlowSummary:
    received_recharge: Decimal = ZERO      # flows where U is target, RECHARGE
    received_withdraw: Decimal = ZERO      # flows where U is target, WITHDRAW (negative)
    issued_recharge: Decimal = ZERO        # flows where U is operator, RECHARGE
    issued_withdraw: Decimal = ZERO        # flows where U is operator, WITHDRAW (negative)
    flow_count: int = 0


@dataclass
class DailyConsumption:
    day: date
    amount: Decimal = ZERO
    count: int = 0


@dataclass
class ConsumptionTrend:
    days: list[DailyConsumption] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((d.amount for d in self.days), ZERO)


@dataclass(frozen=True)
class OperationStat:
    operation_type: str
    count: int
    total_amount: Decimal            # signed, as stored


@dataclass
class AdminActivity:
    """What an admin has done: direct children and the flows it operated."""

    managed_users: int = 0
    total_operations: int = 0
    recharge_count: int = 0
    withdraw_count: int = 0
    recent_flows: list[AccountFlow] = field(default_factory=list)
