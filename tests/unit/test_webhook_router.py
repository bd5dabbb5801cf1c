"""HTTP tests for the provider webhook endpoints (no database: fakes + overrides)."""

import json
import time
from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient

from config.settings import settings
from src.main import app
from src.vc_card.domain.models import VirtualCard
from src.vc_common.database import get_db_session
from src.vc_ledger.domain.models import User
from src.vc_transaction.api import webhook_router
from src.vc_transaction.application.reconciler import CardTransactionReconciler
from src.vc_transaction.infrastructure.signature import compute_signature
from tests.fakes import (
    FakeCardRepository,
    FakeLedgerRepository,
    FakeTransactionRepository,
    Store,
)

AUTH_BODY = {
    "cardId": "card-1",
    "txnId": "t-1",
    "txnType": "A",
    "txnStatus": 1,
    "txnAmt": "10.00",
    "txnCcy": "USD",
    "billAmt": "10.00",
    "billCcy": "USD",
    "merchName": "BOOKSTORE",
    "mcc": 5942,
}


@pytest.fixture
def store(monkeypatch: pytest.MonkeyPatch) -> Store:
    store = Store()
    store.add_user(User(id="u-1", username="alice", role="USER", status="ACTIVE"))
    store.add_card(
        VirtualCard(
            card_id="card-1", card_no="5555444433331111", currency="USD",
            status="ACTIVE", created_by="u-1", balance=Decimal("100.00"),
        )
    )
    reconciler = CardTransactionReconciler(
        repo=FakeTransactionRepository(store),
        cards=FakeCardRepository(store),
        ledger_repo=FakeLedgerRepository(store),
        dispatcher=MagicMock(),
    )
    monkeypatch.setattr(webhook_router, "_reconciler", reconciler)

    async def _db() -> AsyncGenerator[AsyncMock, None]:
        yield AsyncMock()

    app.dependency_overrides[get_db_session] = _db
    return store


class TestAuthCallback:
    async def test_records_authorization(self, client: AsyncClient, store: Store) -> None:
        resp = await client.post("/api/v1/webhooks/auth-callback", json=AUTH_BODY)

        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == 0
        assert body["data"]["outcome"] == "INSERTED"
        assert body["data"]["balance_delta"] == "-10.00"
        assert body["request_id"] == resp.headers["X-Request-ID"]
        txn = store.txns["t-1"]
        assert txn.mcc == "5942"
        assert txn.raw_callback_data["merchName"] == "BOOKSTORE"

    async def test_redelivery_acknowledged_as_duplicate(
        self, client: AsyncClient, store: Store
    ) -> None:
        await client.post("/api/v1/webhooks/auth-callback", json=AUTH_BODY)
        resp = await client.post("/api/v1/webhooks/auth-callback", json=AUTH_BODY)

        assert resp.status_code == 200
        assert resp.json()["data"] == {"duplicate": True, "txn_id": "t-1", "reason": "duplicate"}
        assert store.cards["card-1"].balance == Decimal("90.00")

    async def test_unknown_card_is_404(self, client: AsyncClient, store: Store) -> None:
        resp = await client.post(
            "/api/v1/webhooks/auth-callback", json={**AUTH_BODY, "cardId": "card-x"}
        )

        assert resp.status_code == 404
        assert resp.json()["code"] == 3001

    async def test_invalid_body_is_422(self, client: AsyncClient, store: Store) -> None:
        resp = await client.post("/api/v1/webhooks/auth-callback", json={"txnId": "t-1"})
        assert resp.status_code == 422


class TestSettleCallbacks:
    async def test_legacy_settle_merges(self, client: AsyncClient, store: Store) -> None:
        await client.post("/api/v1/webhooks/auth-callback", json=AUTH_BODY)

        resp = await client.post(
            "/api/v1/webhooks/settle-callback",
            json={"authTxnId": "t-1", "settleTxnId": "s-1", "finalAmt": "8.50", "finalCcy": "USD"},
        )

        assert resp.status_code == 200
        assert resp.json()["data"]["outcome"] == "MERGED"
        assert resp.json()["data"]["balance_delta"] == "1.50"
        assert store.cards["card-1"].balance == Decimal("91.50")
        txn = store.txns["t-1"]
        assert txn.final_amt == Decimal("8.50")
        assert txn.settle_bill_amt == Decimal("8.50")

    async def test_legacy_settle_books_final_amount(
        self, client: AsyncClient, store: Store
    ) -> None:
        await client.post("/api/v1/webhooks/auth-callback", json=AUTH_BODY)

        resp = await client.post(
            "/api/v1/webhooks/settle-callback",
            json={"authTxnId": "t-1", "settleTxnId": "s-1", "finalAmt": "8.50",
                  "finalCcy": "USD", "settleBillAmt": "9.10", "settleBillCcy": "USD"},
        )

        assert resp.status_code == 200
        assert store.cards["card-1"].balance == Decimal("91.50")
        assert store.txns["t-1"].final_amt == Decimal("8.50")
        assert store.txns["t-1"].settle_bill_amt == Decimal("9.10")

    async def test_legacy_settle_requires_final_amount(
        self, client: AsyncClient, store: Store
    ) -> None:
        resp = await client.post(
            "/api/v1/webhooks/settle-callback",
            json={"authTxnId": "t-1", "settleTxnId": "s-1", "settleBillAmt": "8.50"},
        )
        assert resp.status_code == 422

    async def test_legacy_settle_without_auth_is_404(
        self, client: AsyncClient, store: Store
    ) -> None:
        resp = await client.post(
            "/api/v1/webhooks/settle-callback",
            json={"authTxnId": "t-9", "settleTxnId": "s-9", "finalAmt": "1", "finalCcy": "USD"},
        )
        assert resp.status_code == 404

    async def test_settlement_callback_second_settlement_acknowledged(
        self, client: AsyncClient, store: Store
    ) -> None:
        await client.post("/api/v1/webhooks/auth-callback", json=AUTH_BODY)
        body = {"cardId": "card-1", "txnId": "s-1", "authTxnId": "t-1", "txnType": "C",
                "billAmt": "10.00", "billCcy": "USD"}
        first = await client.post("/api/v1/webhooks/settlement-callback", json=body)
        second = await client.post(
            "/api/v1/webhooks/settlement-callback", json={**body, "txnId": "s-2"}
        )

        assert first.json()["data"]["outcome"] == "MERGED"
        assert second.status_code == 200
        assert second.json()["data"]["reason"] == "already_settled"

    async def test_authorization_after_standalone_settlement_is_not_debited(
        self, client: AsyncClient, store: Store
    ) -> None:
        settled = await client.post(
            "/api/v1/webhooks/settlement-callback",
            json={"cardId": "card-1", "txnId": "s-1", "authTxnId": "t-1", "txnType": "C",
                  "billAmt": "8.50", "billCcy": "USD"},
        )
        late = await client.post("/api/v1/webhooks/auth-callback", json=AUTH_BODY)
        again = await client.post("/api/v1/webhooks/auth-callback", json=AUTH_BODY)

        assert settled.json()["data"]["outcome"] == "INSERTED"
        assert late.json()["data"]["outcome"] == "MERGED"
        assert late.json()["data"]["balance_delta"] == "0.00"
        assert again.json()["data"]["reason"] == "duplicate"
        assert store.cards["card-1"].balance == Decimal("91.50")
        assert list(store.txns) == ["s-1"]

    async def test_signature_enforced_when_enabled(
        self, client: AsyncClient, store: Store, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "ENABLE_WEBHOOK_VERIFICATION", True)
        monkeypatch.setattr(settings, "WEBHOOK_SECRET_KEY", "whsec")
        payload = json.dumps({"cardId": "card-1", "txnId": "s-3", "txnType": "R",
                              "billAmt": "2.00", "billCcy": "USD"}).encode()
        ts = str(int(time.time()))

        rejected = await client.post(
            "/api/v1/webhooks/settlement-callback",
            content=payload,
            headers={"Content-Type": "application/json", "X-Webhook-Signature": "bad",
                     "X-Webhook-Timestamp": ts},
        )
        accepted = await client.post(
            "/api/v1/webhooks/settlement-callback",
            content=payload,
            headers={"Content-Type": "application/json",
                     "X-Webhook-Signature": compute_signature("whsec", payload, ts),
                     "X-Webhook-Timestamp": ts},
        )

        assert rejected.status_code == 401
        assert rejected.json()["code"] == 5001
        assert accepted.status_code == 200
        assert store.cards["card-1"].balance == Decimal("102.00")
