"""Card provider HTTP client (httpx).

Every call is a JSON POST to `{CARD_PROVIDER_API_URL}{endpoint}` with the
`oaToken` header; the provider answers with an envelope
`{"code": 0, "msg": "...", "data": {...}}`.

Error mapping:
  transport error / timeout / non-2xx / bad JSON  -> ProviderError (after retries)
  envelope code != 0                              -> ProviderRejectedError (no retry)

Connect errors and timeouts are retried up to CARD_PROVIDER_MAX_RETRIES times.
Money-moving calls are safe to retry because the provider de-duplicates on
`request_id`.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any

import httpx

from config.settings import settings
from src.vc_common.errors import ProviderError, ProviderRejectedError
from src.vc_common.money import format_amount, to_amount
from src.vc_provider.models import (
    BalanceChange,
    CardStatusChange,
    CreatedCard,
    ListPage,
    ReleasedCard,
)

logger = logging.getLogger(__name__)

_CREATE_CARD = "/openapi/card/hk/multi_issue"
_RECHARGE_CARD = "/openapi/card/hk/recharge"
_WITHDRAW_CARD = "/openapi/card/withdraw"
_RELEASE_CARD = "/openapi/card/hk/release"
_FREEZE_CARD = "/openapi/card/freeze"
_ACTIVATE_CARD = "/openapi/card/activate"
_AUTH_LIST = "/openapi/v1/card/auth_list"
_SETTLE_LIST = "/openapi/v1/card/settle_list"

# Provider messages that operators should see in plain words
_FRIENDLY_MESSAGES = (
    ("not enough", "Insufficient card balance at the provider"),
    ("over card limit", "Amount exceeds the card limit"),
    ("code: 6", "Card state does not allow this operation"),
)


def friendly_provider_message(raw: str) -> str:
    lowered = raw.lower()
    for needle, message in _FRIENDLY_MESSAGES:
        if needle in lowered:
            return message
    return f"Card provider rejected the request: {raw}"


class CardProviderClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_retries = max(1, max_retries or settings.CARD_PROVIDER_MAX_RETRIES)
        self._http = httpx.AsyncClient(
            base_url=base_url or settings.CARD_PROVIDER_API_URL,
            headers={"oaToken": token or settings.CARD_PROVIDER_API_KEY},
            timeout=timeout or settings.CARD_PROVIDER_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> Any:
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._http.post(endpoint, json=payload)
                response.raise_for_status()
                body = response.json()
                break
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                last_error = exc
                logger.warning(
                    "Provider call %s failed (attempt %d/%d): %r",
                    endpoint,
                    attempt,
                    self._max_retries,
                    exc,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(0.5 * attempt)
            except httpx.HTTPStatusError as exc:
                raise ProviderError(
                    f"{endpoint} returned HTTP {exc.response.status_code}"
                ) from exc
            except ValueError as exc:
                raise ProviderError(f"{endpoint} returned a non-JSON body") from exc
        else:
            raise ProviderError(f"{endpoint} unreachable: {last_error!r}") from last_error

        if not isinstance(body, dict) or "code" not in body:
            raise ProviderError(f"{endpoint} returned an unexpected envelope")
        if str(body["code"]) != "0":
            raw_msg = str(body.get("msg") or "")
            logger.warning("Provider rejected %s: code=%s msg=%s", endpoint, body["code"], raw_msg)
            raise ProviderRejectedError(body["code"], friendly_provider_message(raw_msg))
        return body.get("data")

    @staticmethod
    def _require(data: Any, endpoint: str, *keys: str) -> dict[str, Any]:
        if not isinstance(data, dict) or any(k not in data for k in keys):
            raise ProviderError(f"{endpoint} response missing fields {list(keys)}")
        return data

    # ------------------------------------------------------------------
    # Card lifecycle
    # ------------------------------------------------------------------

    async def create_card(
        self,
        amount: Decimal,
        currency: str,
        exp_date: str,
        product_code: str,
        request_id: str,
        remark: str | None = None,
    ) -> CreatedCard:
        data = await self._post(
            _CREATE_CARD,
            {
                "amt": format_amount(amount),
                "currency": currency,
                "expdate": exp_date,
                "productCode": product_code,
                "remark": remark,
                "request_id": request_id,
            },
        )
        d = self._require(data, _CREATE_CARD, "cardId", "cardNo")
        logger.info("Provider issued card %s (request %s)", d["cardId"], request_id)
        return CreatedCard(
            card_id=str(d["cardId"]),
            card_no=str(d["cardNo"]),
            cvv=str(d.get("cvv", "")),
            exp_date=str(d.get("expDate", exp_date)),
            card_bal=to_amount(d.get("cardBal")),
            cur_id=str(d.get("curId") or currency),
        )

    async def recharge_card(
        self, card_id: str, amount: Decimal, request_id: str
    ) -> BalanceChange:
        data = await self._post(
            _RECHARGE_CARD,
            {"cardId": card_id, "amt": format_amount(amount), "request_id": request_id},
        )
        return self._balance_change(data, _RECHARGE_CARD)

    async def withdraw_card(
        self, card_id: str, amount: Decimal, request_id: str
    ) -> BalanceChange:
        data = await self._post(
            _WITHDRAW_CARD,
            {"cardId": card_id, "amt": format_amount(amount), "request_id": request_id},
        )
        return self._balance_change(data, _WITHDRAW_CARD)

    async def release_card(self, card_id: str, request_id: str) -> ReleasedCard:
        data = await self._post(_RELEASE_CARD, {"cardId": card_id, "request_id": request_id})
        d = self._require(data, _RELEASE_CARD, "releaseBal")
        return ReleasedCard(release_bal=to_amount(d["releaseBal"]))

    async def freeze_card(self, card_id: str) -> CardStatusChange:
        data = await self._post(_FREEZE_CARD, {"cardId": card_id})
        return self._status_change(data, card_id)

    async def activate_card(self, card_id: str) -> CardStatusChange:
        data = await self._post(_ACTIVATE_CARD, {"cardId": card_id})
        return self._status_change(data, card_id)

    def _balance_change(self, data: Any, endpoint: str) -> BalanceChange:
        d = self._require(data, endpoint, "cardBal")
        return BalanceChange(
            amount=to_amount(d.get("amount")),
            card_bal=to_amount(d["cardBal"]),
            cur_id=str(d.get("curId") or ""),
        )

    @staticmethod
    def _status_change(data: Any, card_id: str) -> CardStatusChange:
        d = data if isinstance(data, dict) else {}
        return CardStatusChange(
            card_id=str(d.get("cardId") or card_id),
            status=str(d.get("status") or ""),
        )

    # ------------------------------------------------------------------
    # Transaction lists
    # ------------------------------------------------------------------

    async def get_auth_list(
        self, date_start: str, date_end: str, page: int, card_id: str | None = None
    ) -> ListPage:
        payload: dict[str, Any] = {"date_start": date_start, "date_end": date_end, "page": page}
        if card_id:
            payload["card_id"] = card_id
        data = await self._post(_AUTH_LIST, payload)
        return self._list_page(data, "auth_list", _AUTH_LIST)

    async def get_settle_list(self, date_start: str, date_end: str, page: int) -> ListPage:
        data = await self._post(
            _SETTLE_LIST, {"date_start": date_start, "date_end": date_end, "page": page}
        )
        return self._list_page(data, "settle_list", _SETTLE_LIST)

    @staticmethod
    def _list_page(data: Any, list_key: str, endpoint: str) -> ListPage:
        if data is None:
            return ListPage()
        if not isinstance(data, dict):
            raise ProviderError(f"{endpoint} returned an unexpected list shape")
        items = data.get(list_key) or []
        if not isinstance(items, list):
            raise ProviderError(f"{endpoint} '{list_key}' is not a list")
        return ListPage(
            items=items,
            total_count=int(data.get("total_count") or 0),
            key_list=data.get("key_list") or None,
        )


_client: CardProviderClient | None = None


def get_card_provider() -> CardProviderClient:
    """Get or create the shared provider client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = CardProviderClient()
    return _client


async def close_card_provider() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None
