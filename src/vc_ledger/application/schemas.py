"""Pydantic schemas for vc_ledger API.

Money is rendered as 2dp strings so no float ever touches a balance.
"""

from datetime import date
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from src.vc_common.enums import CardStatus
from src.vc_common.money import format_amount
from src.vc_ledger.domain.models import (
    AccountFlow,
    AdminActivity,
    ConsumptionTrend,
    DashboardData,
    FlowSummary,
    OperationLog,
    OperationStat,
)

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class BalanceOperationRequest(BaseModel):
    type: Literal["deposit", "withdraw"]
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    remark: str | None = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class DashboardResponse(BaseModel):
    user_id: str
    total_recharge: str
    total_consumption: str
    card_locked: str
    available_amount: str

    @classmethod
    def from_domain(cls, user_id: str, data: DashboardData) -> "DashboardResponse":
        return cls(
            user_id=user_id,
            total_recharge=format_amount(data.total_recharge),
            total_consumption=format_amount(data.total_consumption),
            card_locked=format_amount(data.card_locked),
            available_amount=format_amount(data.available_amount),
        )


class TrendPoint(BaseModel):
    date: str  # YYYY-MM-DD in the operational timezone
    amount: str
    count: int


class ConsumptionTrendResponse(BaseModel):
    user_id: str
    days: int
    total: str
    points: list[TrendPoint]

    @classmethod
    def from_domain(cls, user_id: str, trend: ConsumptionTrend) -> "ConsumptionTrendResponse":
        return cls(
            user_id=user_id,
            days=len(trend.days),
            total=format_amount(trend.total),
            points=[
                TrendPoint(date=d.day.isoformat(), amount=format_amount(d.amount), count=d.count)
                for d in trend.days
            ],
        )


class AccountFlowItem(BaseModel):
    id: int
    operator_id: str
    target_user_id: str
    operation_type: str
    amount: str
    currency: str
    description: str | None
    business_type: str | None
    business_id: str | None
    created_at: str  # ISO8601 string
    target_username: str | None = None

    @classmethod
    def from_domain(cls, flow: AccountFlow) -> "AccountFlowItem":
        return cls(
            id=flow.id,
            operator_id=flow.operator_id,
            target_user_id=flow.target_user_id,
            operation_type=flow.operation_type,
            amount=format_amount(flow.amount),
            currency=flow.currency,
            description=flow.description,
            business_type=flow.business_type,
            business_id=flow.business_id,
            created_at=flow.created_at.isoformat() if flow.created_at else "",
            target_username=flow.target_username,
        )


class AccountFlowListResponse(BaseModel):
    items: list[AccountFlowItem]
    next_cursor: str | None
    has_more: bool


class FlowSummaryResponse(BaseModel):
    user_id: str
    received_recharge: str
    received_withdraw: str
    issued_recharge: str
    issued_withdraw: str
    net_balance: str
    flow_count: int

    @classmethod
    def from_domain(cls, user_id: str, summary: FlowSummary) -> "FlowSummaryResponse":
        net = (
            summary.received_recharge
            + summary.received_withdraw
            - summary.issued_recharge
            - summary.issued_withdraw
        )
        return cls(
            user_id=user_id,
            received_recharge=format_amount(summary.received_recharge),
            received_withdraw=format_amount(summary.received_withdraw),
            issued_recharge=format_amount(summary.issued_recharge),
            issued_withdraw=format_amount(summary.issued_withdraw),
            net_balance=format_amount(net),
            flow_count=summary.flow_count,
        )


class BalanceOperationResponse(BaseModel):
    flow_id: int
    operation_type: str
    amount: str
    target_user_id: str
    target_balance: str
    operator_balance: str

    @classmethod
    def from_result(
        cls, flow: AccountFlow, target_balance: Decimal, operator_balance: Decimal
    ) -> "BalanceOperationResponse":
        return cls(
            flow_id=flow.id,
            operation_type=flow.operation_type,
            amount=format_amount(flow.amount),
            target_user_id=flow.target_user_id,
            target_balance=format_amount(target_balance),
            operator_balance=format_amount(operator_balance),
        )


class RefreshBalanceResponse(BaseModel):
    user_id: str
    balance: str


class RefreshAllBalancesResponse(BaseModel):
    refreshed: int


class AdminDashboardResponse(BaseModel):
    user_id: str
    managed_users: int
    total_operations: int
    recharge_count: int
    withdraw_count: int
    recent_operations: list[AccountFlowItem]

    @classmethod
    def from_domain(cls, user_id: str, activity: AdminActivity) -> "AdminDashboardResponse":
        return cls(
            user_id=user_id,
            managed_users=activity.managed_users,
            total_operations=activity.total_operations,
            recharge_count=activity.recharge_count,
            withdraw_count=activity.withdraw_count,
            recent_operations=[AccountFlowItem.from_domain(f) for f in activity.recent_flows],
        )


class OperationLogItem(BaseModel):
    id: int
    card_id: str
    card_no: str | None
    card_status: str
    operation_type: str
    amount: str
    currency: str
    operator_id: str
    operator_name: str | None
    description: str | None
    created_at: str

    @classmethod
    def from_domain(cls, log: OperationLog) -> "OperationLogItem":
        return cls(
            id=log.id,
            card_id=log.card_id,
            card_no=log.card_no,
            card_status=log.card_status or CardStatus.RELEASED.value,
            operation_type=log.operation_type,
            amount=format_amount(log.amount),
            currency=log.currency,
            operator_id=log.operator_id,
            operator_name=log.operator_name,
            description=log.description,
            created_at=log.created_at.isoformat() if log.created_at else "",
        )


class OperationLogListResponse(BaseModel):
    items: list[OperationLogItem]
    next_cursor: str | None
    has_more: bool


class OperationStatItem(BaseModel):
    operation_type: str
    count: int
    total_amount: str


class OperationStatsResponse(BaseModel):
    user_id: str | None  # None: every user
    start_date: str | None
    end_date: str | None
    stats: list[OperationStatItem]

    @classmethod
    def from_domain(
        cls,
        user_id: str | None,
        start: date | None,
        end: date | None,
        stats: list[OperationStat],
    ) -> "OperationStatsResponse":
        return cls(
            user_id=user_id,
            start_date=start.isoformat() if start else None,
            end_date=end.isoformat() if end else None,
            stats=[
                OperationStatItem(
                    operation_type=s.operation_type,
                    count=s.count,
                    total_amount=format_amount(s.total_amount),
                )
                for s in stats
            ],
        )
