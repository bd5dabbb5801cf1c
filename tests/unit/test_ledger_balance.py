"""Tests for vc_ledger.domain.balance — sign rules and the dashboard formula."""

from decimal import Decimal

import pytest

from src.vc_common.errors import InvalidFlowAmountError
from src.vc_ledger.domain.balance import (
    check_flow_sign,
    compute_dashboard,
    signed_card_operation_amount,
    signed_flow_amount,
)
from src.vc_ledger.domain.models import BalanceAggregates


class TestSignedFlowAmount:
    def test_recharge_is_positive(self) -> None:
        assert signed_flow_amount("RECHARGE", Decimal("50")) == Decimal("50.00")

    def test_withdraw_is_negative(self) -> None:
        assert signed_flow_amount("WITHDRAW", Decimal("20")) == Decimal("-20.00")

    def test_caller_sign_is_ignored(self) -> None:
        assert signed_flow_amount("RECHARGE", Decimal("-7.5")) == Decimal("7.50")
        assert signed_flow_amount("WITHDRAW", Decimal("-7.5")) == Decimal("-7.50")

    def test_zero_rejected(self) -> None:
        with pytest.raises(InvalidFlowAmountError):
            signed_flow_amount("RECHARGE", Decimal("0"))

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(ValueError):
            signed_flow_amount("TRANSFER", Decimal("1"))


class TestCheckFlowSign:
    def test_accepts_correct_signs(self) -> None:
        check_flow_sign("RECHARGE", Decimal("1.00"))
        check_flow_sign("WITHDRAW", Decimal("-1.00"))

    @pytest.mark.parametrize(
        "op,amount",
        [("RECHARGE", Decimal("-1")), ("RECHARGE", Decimal("0")), ("WITHDRAW", Decimal("1"))],
    )
    def test_rejects_wrong_sign(self, op: str, amount: Decimal) -> None:
        with pytest.raises(ValueError):
            check_flow_sign(op, amount)


class TestSignedCardOperationAmount:
    @pytest.mark.parametrize(
        "op,expected",
        [
            ("CREATE_CARD", Decimal("20.00")),
            ("RECHARGE", Decimal("20.00")),
            ("DELETE_CARD", Decimal("-20.00")),
            ("WITHDRAW", Decimal("-20.00")),
            ("FREEZE", Decimal("0.00")),
            ("UNFREEZE", Decimal("0.00")),
        ],
    )
    def test_sign_per_operation(self, op: str, expected: Decimal) -> None:
        assert signed_card_operation_amount(op, Decimal("20")) == expected


class TestComputeDashboard:
    def test_documented_example(self) -> None:
        data = compute_dashboard(
            BalanceAggregates(
                recharge_net=Decimal("100"),
                consumption_sum=Decimal("30"),
                provisioned_sum=Decimal("50"),
                open_card_consumption_sum=Decimal("30"),
            )
        )
        assert data.total_recharge == Decimal("100.00")
        assert data.total_consumption == Decimal("30.00")
        assert data.card_locked == Decimal("20.00")
        assert data.available_amount == Decimal("50.00")

    def test_card_locked_never_negative(self) -> None:
        data = compute_dashboard(
            BalanceAggregates(
                recharge_net=Decimal("100"),
                consumption_sum=Decimal("40"),
                provisioned_sum=Decimal("10"),
                open_card_consumption_sum=Decimal("40"),
            )
        )
        assert data.card_locked == Decimal("0.00")
        assert data.available_amount == Decimal("60.00")

    def test_net_refund_consumption_counts_as_magnitude(self) -> None:
        data = compute_dashboard(
            BalanceAggregates(recharge_net=Decimal("10"), consumption_sum=Decimal("-3"))
        )
        assert data.total_consumption == Decimal("3.00")
        assert data.available_amount == Decimal("7.00")

    def test_empty_user(self) -> None:
        data = compute_dashboard(BalanceAggregates())
        assert data.available_amount == Decimal("0.00")
        assert data.card_locked == Decimal("0.00")
