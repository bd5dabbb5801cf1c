"""Tests for CardProviderClient against httpx.MockTransport."""

import json
from decimal import Decimal

import httpx
import pytest

from src.vc_common.errors import ProviderError, ProviderRejectedError
from src.vc_provider.client import CardProviderClient, friendly_provider_message


def _client(handler, max_retries: int = 1) -> CardProviderClient:  # type: ignore[no-untyped-def]
    return CardProviderClient(
        base_url="https://provider.test",
        token="tok-1",
        timeout=1.0,
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


def _ok(data: object) -> httpx.Response:
    return httpx.Response(200, json={"code": 0, "msg": "ok", "data": data})


class TestEnvelope:
    async def test_sends_token_and_formatted_amount(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["token"] = request.headers["oaToken"]
            seen["body"] = json.loads(request.content)
            return _ok({"amount": "5", "cardBal": "15.5", "curId": "USD"})

        client = _client(handler)
        change = await client.withdraw_card("card-1", Decimal("5"), "WD_1_abcd")
        await client.aclose()

        assert seen["path"] == "/openapi/card/withdraw"
        assert seen["token"] == "tok-1"
        assert seen["body"] == {"cardId": "card-1", "amt": "5.00", "request_id": "WD_1_abcd"}
        assert change.card_bal == Decimal("15.50")

    async def test_business_rejection_maps_to_friendly_message(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"code": 1001, "msg": "card balance not enough"})

        client = _client(handler)
        with pytest.raises(ProviderRejectedError) as exc_info:
            await client.recharge_card("card-1", Decimal("1"), "RC_1")
        await client.aclose()

        assert exc_info.value.provider_code == 1001
        assert exc_info.value.message == "Insufficient card balance at the provider"
        assert exc_info.value.data == {"provider_code": "1001"}

    async def test_http_error_is_provider_error(self) -> None:
        client = _client(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(ProviderError):
            await client.freeze_card("card-1")
        await client.aclose()

    async def test_non_json_body(self) -> None:
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ProviderError):
            await client.activate_card("card-1")
        await client.aclose()

    async def test_missing_fields(self) -> None:
        client = _client(lambda request: _ok({"amount": "1"}))
        with pytest.raises(ProviderError):
            await client.recharge_card("card-1", Decimal("1"), "RC_1")
        await client.aclose()

    async def test_transport_error_retried(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("refused", request=request)
            return _ok({"releaseBal": "12.00"})

        client = _client(handler, max_retries=2)
        released = await client.release_card("card-1", "RL_1")
        await client.aclose()

        assert calls["n"] == 2
        assert released.release_bal == Decimal("12.00")

    async def test_transport_error_exhausts_retries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(handler)
        with pytest.raises(ProviderError):
            await client.withdraw_card("card-1", Decimal("1"), "WD_1")
        await client.aclose()


class TestCreateAndLists:
    async def test_create_card(self) -> None:
        client = _client(lambda request: _ok({
            "cardId": "c-9", "cardNo": "4111111111111111", "cvv": "321",
            "expDate": "2028-12-31", "cardBal": "20", "curId": "USD",
        }))
        created = await client.create_card(Decimal("20"), "USD", "2028-12-31", "E0000001", "CC_1")
        await client.aclose()

        assert created.card_id == "c-9"
        assert created.card_bal == Decimal("20.00")

    async def test_auth_list_page(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return _ok({
                "auth_list": [["card-1", "t-1", "A", "1"]],
                "total_count": 1,
                "key_list": ["card_id", "txn_id", "txn_type", "txn_status"],
            })

        client = _client(handler)
        page = await client.get_auth_list("2025-09-01", "2025-09-01", 1, card_id="card-1")
        await client.aclose()

        assert seen["body"]["card_id"] == "card-1"
        assert page.items == [["card-1", "t-1", "A", "1"]]
        assert page.total_count == 1
        assert page.key_list == ["card_id", "txn_id", "txn_type", "txn_status"]

    async def test_empty_settle_list(self) -> None:
        client = _client(lambda request: _ok(None))
        page = await client.get_settle_list("2025-09-01", "2025-09-01", 3)
        await client.aclose()

        assert page.items == []
        assert page.key_list is None

    async def test_settle_list_wrong_shape(self) -> None:
        client = _client(lambda request: _ok({"settle_list": "nope"}))
        with pytest.raises(ProviderError):
            await client.get_settle_list("2025-09-01", "2025-09-01", 1)
        await client.aclose()


class TestFriendlyMessage:
    def test_known_phrases(self) -> None:
        assert friendly_provider_message("Over Card Limit") == "Amount exceeds the card limit"

    def test_unknown_phrase_passes_through(self) -> None:
        assert friendly_provider_message("boom") == "Card provider rejected the request: boom"
