"""Unit tests for CardApplicationService with fake repositories and a mock provider."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from src.vc_card.application.service import CardApplicationService
from src.vc_card.domain.models import VirtualCard
from src.vc_common.errors import (
    CardNotFoundError,
    CardNotOperableError,
    InsufficientBalanceError,
    PermissionDeniedError,
    ProviderRejectedError,
)
from src.vc_ledger.domain.models import AccountFlow, OperationLog, User
from src.vc_provider.models import BalanceChange, CardStatusChange, CreatedCard, ReleasedCard
from tests.fakes import FakeCardRepository, FakeLedgerRepository, Store


def _make_user(user_id: str = "u-1", role: str = "USER") -> User:
    return User(id=user_id, username=user_id, role=role, status="ACTIVE")


def _make_card(card_id: str = "card-1", owner: str = "u-1", balance: str = "20") -> VirtualCard:
    return VirtualCard(
        card_id=card_id,
        card_no="5555444433331111",
        currency="USD",
        status="ACTIVE",
        created_by=owner,
        balance=Decimal(balance),
    )


def _setup(recharged: str = "100") -> tuple[Store, CardApplicationService, AsyncMock, User]:
    store = Store()
    user = store.add_user(_make_user())
    store.add_user(_make_user("u-root", "SUPER_ADMIN"))
    ledger_repo = FakeLedgerRepository(store)
    store.flows.append(_flow("u-root", user.id, recharged))
    provider = AsyncMock()
    svc = CardApplicationService(
        cards=FakeCardRepository(store), ledger_repo=ledger_repo, provider=provider
    )
    return store, svc, provider, user


def _flow(operator: str, target: str, amount: str) -> AccountFlow:
    return AccountFlow(
        id=1, operator_id=operator, target_user_id=target,
        operation_type="RECHARGE", amount=Decimal(amount),
    )


class TestCreateCard:
    async def test_creates_card_and_logs_provisioning(self) -> None:
        store, svc, provider, user = _setup()
        provider.create_card.return_value = CreatedCard(
            card_id="card-9", card_no="4111111111111111", cvv="123",
            exp_date="2029-01-01", card_bal=Decimal("20.00"), cur_id="USD",
        )
        db = AsyncMock()

        result = await svc.create_card(db, user, Decimal("20"))

        assert result.operation_type == "CREATE_CARD"
        assert result.amount == "20.00"
        assert result.card.card_no == "4111********1111"
        assert store.cards["card-9"].created_by == user.id
        assert store.op_logs[0].amount == Decimal("20.00")
        assert provider.create_card.await_args.kwargs["request_id"].startswith("CC_")
        db.commit.assert_awaited_once()

    async def test_gate_blocks_before_provider_call(self) -> None:
        _store, svc, provider, user = _setup(recharged="10")
        db = AsyncMock()

        with pytest.raises(InsufficientBalanceError):
            await svc.create_card(db, user, Decimal("20"))

        provider.create_card.assert_not_awaited()
        db.rollback.assert_awaited()

    async def test_provider_rejection_propagates(self) -> None:
        store, svc, provider, user = _setup()
        provider.create_card.side_effect = ProviderRejectedError(7, "Amount exceeds the card limit")
        db = AsyncMock()

        with pytest.raises(ProviderRejectedError):
            await svc.create_card(db, user, Decimal("20"))

        assert store.cards == {}
        assert store.op_logs == []


class TestRechargeWithdraw:
    async def test_recharge_updates_cached_balance(self) -> None:
        store, svc, provider, user = _setup()
        store.add_card(_make_card())
        provider.recharge_card.return_value = BalanceChange(
            amount=Decimal("10"), card_bal=Decimal("30.00"), cur_id="USD"
        )

        result = await svc.recharge_card(AsyncMock(), user, "card-1", Decimal("10"))

        assert result.card.balance == "30.00"
        assert store.op_logs[-1].operation_type == "RECHARGE"
        assert store.op_logs[-1].amount == Decimal("10.00")

    async def test_withdraw_checks_card_balance(self) -> None:
        store, svc, provider, user = _setup()
        store.add_card(_make_card(balance="5"))

        with pytest.raises(InsufficientBalanceError):
            await svc.withdraw_card(AsyncMock(), user, "card-1", Decimal("6"))
        provider.withdraw_card.assert_not_awaited()

    async def test_withdraw_logs_negative_amount(self) -> None:
        store, svc, provider, user = _setup()
        store.add_card(_make_card(balance="20"))
        provider.withdraw_card.return_value = BalanceChange(
            amount=Decimal("5"), card_bal=Decimal("15.00"), cur_id="USD"
        )

        await svc.withdraw_card(AsyncMock(), user, "card-1", Decimal("5"))

        assert store.op_logs[-1].amount == Decimal("-5.00")
        assert store.cards["card-1"].balance == Decimal("15.00")

    async def test_cannot_operate_someone_elses_card(self) -> None:
        store, svc, _provider, _user = _setup()
        stranger = store.add_user(_make_user("u-2"))
        store.add_card(_make_card())

        with pytest.raises(PermissionDeniedError):
            await svc.recharge_card(AsyncMock(), stranger, "card-1", Decimal("1"))

    async def test_unknown_card(self) -> None:
        _store, svc, _provider, user = _setup()
        with pytest.raises(CardNotFoundError):
            await svc.recharge_card(AsyncMock(), user, "nope", Decimal("1"))


class TestStatusAndRelease:
    async def test_toggle_freezes_then_unfreezes(self) -> None:
        store, svc, provider, user = _setup()
        store.add_card(_make_card())
        provider.freeze_card.return_value = CardStatusChange(card_id="card-1", status="FROZEN")
        provider.activate_card.return_value = CardStatusChange(card_id="card-1", status="ACTIVE")

        frozen = await svc.toggle_card_status(AsyncMock(), user, "card-1")
        active = await svc.toggle_card_status(AsyncMock(), user, "card-1")

        assert frozen.card.status == "FROZEN"
        assert active.card.status == "ACTIVE"
        assert [log.operation_type for log in store.op_logs] == ["FREEZE", "UNFREEZE"]
        assert all(log.amount == Decimal("0.00") for log in store.op_logs)

    async def test_release_frees_locked_funds(self) -> None:
        store, svc, provider, user = _setup()
        store.add_card(_make_card())
        store.op_logs.append(_create_log("card-1", "20"))
        provider.release_card.return_value = ReleasedCard(release_bal=Decimal("20.00"))
        ledger_repo = FakeLedgerRepository(store)
        before = await ledger_repo.get_balance_aggregates(AsyncMock(), user.id)

        result = await svc.release_card(AsyncMock(), user, "card-1")

        after = await ledger_repo.get_balance_aggregates(AsyncMock(), user.id)
        assert before.provisioned_sum == Decimal("20.00")
        assert after.provisioned_sum == Decimal("0.00")
        assert result.card.status == "RELEASED"
        assert result.operation_type == "DELETE_CARD"

    async def test_released_card_not_operable(self) -> None:
        store, svc, _provider, user = _setup()
        card = _make_card()
        card.status = "RELEASED"
        store.add_card(card)

        with pytest.raises(CardNotOperableError):
            await svc.toggle_card_status(AsyncMock(), user, "card-1")


def _create_log(card_id: str, amount: str) -> OperationLog:
    return OperationLog(
        id=1, card_id=card_id, card_no=None, operation_type="CREATE_CARD",
        amount=Decimal(amount), currency="USD", operator_id="u-1",
    )
