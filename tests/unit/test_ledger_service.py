"""Unit tests for AccountFlowLedger and BalanceProjector over in-memory repositories."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from src.vc_common.errors import (
    InsufficientBalanceError,
    PermissionDeniedError,
    UserInactiveError,
    UserNotFoundError,
)
from src.vc_ledger.application.ledger import AccountFlowLedger
from src.vc_ledger.application.projector import BalanceProjector
from src.vc_ledger.domain.models import BalanceAggregates, DailyConsumption, User
from src.vc_ledger.domain.policy import Action
from tests.fakes import FakeLedgerRepository, Store


def _make_user(
    user_id: str, role: str = "USER", parent_id: str | None = None, status: str = "ACTIVE"
) -> User:
    return User(id=user_id, username=user_id, role=role, status=status, parent_id=parent_id)


def _setup() -> tuple[Store, AccountFlowLedger, User, User, User]:
    store = Store()
    root = store.add_user(_make_user("u-root", "SUPER_ADMIN"))
    admin = store.add_user(_make_user("u-admin", "ADMIN", parent_id="u-root"))
    child = store.add_user(_make_user("u-child", "USER", parent_id="u-admin"))
    return store, AccountFlowLedger(repo=FakeLedgerRepository(store)), root, admin, child


class TestRecordFlow:
    async def test_conservation_between_two_users(self) -> None:
        store, ledger, _root, admin, child = _setup()
        db = AsyncMock()

        flow = await ledger.record_flow(db, admin.id, child.id, "RECHARGE", Decimal("50"))

        assert flow.amount == Decimal("50.00")
        assert await ledger.compute_balance(db, child.id) == Decimal("50.00")
        assert await ledger.compute_balance(db, admin.id) == Decimal("-50.00")
        # cached balances follow the ledger
        assert store.users[child.id].balance == Decimal("50.00")
        assert store.users[admin.id].balance == Decimal("-50.00")

    async def test_withdraw_stored_negative(self) -> None:
        store, ledger, _root, admin, child = _setup()
        db = AsyncMock()
        await ledger.record_flow(db, admin.id, child.id, "RECHARGE", Decimal("50"))

        flow = await ledger.record_flow(db, admin.id, child.id, "WITHDRAW", Decimal("20"))

        assert flow.amount == Decimal("-20.00")
        assert await ledger.compute_balance(db, child.id) == Decimal("30.00")
        assert await ledger.compute_balance(db, admin.id) == Decimal("-30.00")

    async def test_sum_of_all_balances_is_zero(self) -> None:
        store, ledger, root, admin, child = _setup()
        db = AsyncMock()
        await ledger.record_flow(db, root.id, admin.id, "RECHARGE", Decimal("500"))
        await ledger.record_flow(db, admin.id, child.id, "RECHARGE", Decimal("120.25"))
        await ledger.record_flow(db, admin.id, child.id, "WITHDRAW", Decimal("20.25"))

        total = sum([await ledger.compute_balance(db, uid) for uid in store.users], Decimal("0"))
        assert total == Decimal("0.00")

    async def test_does_not_commit(self) -> None:
        _store, ledger, _root, admin, child = _setup()
        db = AsyncMock()
        await ledger.record_flow(db, admin.id, child.id, "RECHARGE", Decimal("1"))
        db.commit.assert_not_awaited()


class TestBalanceOperations:
    async def test_super_admin_deposit_not_gated(self) -> None:
        _store, ledger, root, admin, _child = _setup()
        db = AsyncMock()

        result = await ledger.recharge(db, root, admin.id, Decimal("1000"))

        assert result.operation_type == "RECHARGE"
        assert result.target_balance == "1000.00"
        assert result.operator_balance == "-1000.00"
        db.commit.assert_awaited_once()

    async def test_admin_deposit_gated_on_own_available(self) -> None:
        _store, ledger, root, admin, child = _setup()
        db = AsyncMock()
        await ledger.recharge(db, root, admin.id, Decimal("40"))

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.recharge(db, admin, child.id, Decimal("50"))

        assert exc_info.value.data == {"required": "50.00", "available": "40.00"}
        db.rollback.assert_awaited()
        assert await ledger.compute_balance(db, child.id) == Decimal("0.00")

    async def test_withdraw_gated_on_target_available(self) -> None:
        _store, ledger, root, admin, child = _setup()
        db = AsyncMock()
        await ledger.recharge(db, root, admin.id, Decimal("100"))
        await ledger.recharge(db, admin, child.id, Decimal("30"))

        with pytest.raises(InsufficientBalanceError):
            await ledger.withdraw(db, admin, child.id, Decimal("30.01"))

        result = await ledger.withdraw(db, admin, child.id, Decimal("30"))
        assert result.target_balance == "0.00"
        assert result.operator_balance == "100.00"

    async def test_admin_cannot_deposit_to_self(self) -> None:
        _store, ledger, root, admin, _child = _setup()
        db = AsyncMock()
        await ledger.recharge(db, root, admin.id, Decimal("100"))

        with pytest.raises(PermissionDeniedError):
            await ledger.recharge(db, admin, admin.id, Decimal("1"))

    async def test_inactive_target_rejected(self) -> None:
        store, ledger, root, _admin, _child = _setup()
        store.add_user(_make_user("u-off", status="INACTIVE", parent_id="u-root"))
        db = AsyncMock()

        with pytest.raises(UserInactiveError):
            await ledger.recharge(db, root, "u-off", Decimal("1"))

    async def test_unknown_target(self) -> None:
        _store, ledger, root, _admin, _child = _setup()
        db = AsyncMock()

        with pytest.raises(UserNotFoundError):
            await ledger.recharge(db, root, "u-missing", Decimal("1"))
        db.rollback.assert_awaited()

    async def test_users_locked_in_id_order(self) -> None:
        store, ledger, root, admin, _child = _setup()
        db = AsyncMock()

        await ledger.recharge(db, root, admin.id, Decimal("5"))

        assert store.locked_users == sorted([root.id, admin.id])


class TestRefreshAllBalances:
    async def test_rewrites_every_cached_balance(self) -> None:
        store, ledger, root, admin, child = _setup()
        db = AsyncMock()
        await ledger.record_flow(db, root.id, admin.id, "RECHARGE", Decimal("10"))
        store.users[admin.id].balance = Decimal("999.00")

        count = await ledger.refresh_all_balances(db)

        assert count == 3
        assert store.users[admin.id].balance == Decimal("10.00")
        db.commit.assert_awaited_once()


class TestAuthorize:
    async def test_defaults_to_actor(self) -> None:
        _store, ledger, _root, _admin, child = _setup()
        target = await ledger.authorize(AsyncMock(), child, None, Action.VIEW_BALANCE)
        assert target.id == child.id

    async def test_denied_for_unrelated_user(self) -> None:
        store, ledger, _root, _admin, child = _setup()
        store.add_user(_make_user("u-other"))
        with pytest.raises(PermissionDeniedError):
            await ledger.authorize(AsyncMock(), child, "u-other", Action.VIEW_BALANCE)


class TestListFlows:
    async def test_cursor_pagination(self) -> None:
        _store, ledger, root, admin, _child = _setup()
        db = AsyncMock()
        for _ in range(3):
            await ledger.record_flow(db, root.id, admin.id, "RECHARGE", Decimal("1"))

        first = await ledger.list_flows(db, admin.id, None, 2, None)
        assert first.has_more is True
        assert [i.id for i in first.items] == [3, 2]

        second = await ledger.list_flows(db, admin.id, first.next_cursor, 2, None)
        assert second.has_more is False
        assert [i.id for i in second.items] == [1]
        assert second.next_cursor is None

    async def test_summary(self) -> None:
        _store, ledger, root, admin, child = _setup()
        db = AsyncMock()
        await ledger.record_flow(db, root.id, admin.id, "RECHARGE", Decimal("100"))
        await ledger.record_flow(db, admin.id, child.id, "RECHARGE", Decimal("40"))

        summary = await ledger.get_flow_summary(db, admin.id)

        assert summary.received_recharge == "100.00"
        assert summary.issued_recharge == "40.00"
        assert summary.net_balance == "60.00"
        assert summary.flow_count == 2


class TestBalanceProjector:
    async def test_ensure_available_passes_and_returns_dashboard(self) -> None:
        repo = AsyncMock()
        repo.get_balance_aggregates.return_value = BalanceAggregates(
            recharge_net=Decimal("100"), provisioned_sum=Decimal("20")
        )
        data = await BalanceProjector(repo).ensure_available(AsyncMock(), "u-1", Decimal("80"))
        assert data.available_amount == Decimal("80.00")

    async def test_ensure_available_rejects_overdraw(self) -> None:
        repo = AsyncMock()
        repo.get_balance_aggregates.return_value = BalanceAggregates(recharge_net=Decimal("10"))
        with pytest.raises(InsufficientBalanceError):
            await BalanceProjector(repo).ensure_available(AsyncMock(), "u-1", Decimal("10.01"))

    async def test_consumption_trend_zero_fills(self) -> None:
        tz = "Asia/Shanghai"
        today = datetime.now(ZoneInfo(tz)).date()
        repo = AsyncMock()
        repo.list_daily_consumption.return_value = [
            DailyConsumption(day=today - timedelta(days=1), amount=Decimal("12.50"), count=2)
        ]

        trend = await BalanceProjector(repo).get_consumption_trend(AsyncMock(), "u-1", 7, tz)

        assert len(trend.days) == 7
        assert trend.days[-1].day == today
        assert trend.days[0].day == today - timedelta(days=6)
        assert trend.days[-2].amount == Decimal("12.50")
        assert trend.total == Decimal("12.50")
        assert all(isinstance(d.day, date) for d in trend.days)

