"""Integration tests for the ledger endpoints (requires running PostgreSQL).

Pre-condition: PostgreSQL reachable at DATABASE_URL and `alembic upgrade head` applied.

Uses the session-scoped fixtures from tests/integration/conftest.py.
All tests share one event loop — avoids asyncpg pool cross-loop error.
"""

from collections.abc import Awaitable, Callable

import pytest
from httpx import AsyncClient
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from src.vc_common.database import session_scope

MakeUser = Callable[..., Awaitable[tuple[str, dict[str, str]]]]

pytestmark = [pytest.mark.integration, pytest.mark.asyncio(loop_scope="session")]


async def _operate(
    client: AsyncClient, headers: dict[str, str], user_id: str, op: str, amount: str
):
    return await client.post(
        f"/api/v1/users/{user_id}/balance-operation",
        json={"type": op, "amount": amount},
        headers=headers,
    )


class TestBalanceOperations:
    async def test_unauthenticated_returns_401(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/dashboard")
        assert resp.status_code == 401

    async def test_funds_flow_down_the_hierarchy(
        self, client: AsyncClient, root_headers: dict[str, str], make_user: MakeUser
    ) -> None:
        admin_id, admin_headers = await make_user("ADMIN")
        user_id, user_headers = await make_user("USER", parent_id=admin_id)

        resp = await _operate(client, root_headers, admin_id, "deposit", "100.00")
        assert resp.status_code == 200
        assert resp.json()["data"]["target_balance"] == "100.00"

        resp = await _operate(client, admin_headers, user_id, "deposit", "40.00")
        assert resp.json()["data"]["operator_balance"] == "60.00"

        resp = await _operate(client, admin_headers, user_id, "withdraw", "10.00")
        data = resp.json()["data"]
        assert data["target_balance"] == "30.00"
        assert data["operator_balance"] == "70.00"

        resp = await client.get("/api/v1/account-flows/summary", headers=user_headers)
        summary = resp.json()["data"]
        assert summary["received_recharge"] == "40.00"
        assert summary["received_withdraw"] == "10.00"
        assert summary["flow_count"] == 2

    async def test_overdraw_rejected(
        self, client: AsyncClient, root_headers: dict[str, str], make_user: MakeUser
    ) -> None:
        admin_id, admin_headers = await make_user("ADMIN")
        user_id, _ = await make_user("USER", parent_id=admin_id)
        await _operate(client, root_headers, admin_id, "deposit", "20.00")

        resp = await _operate(client, admin_headers, user_id, "deposit", "25.00")

        assert resp.status_code == 422
        assert resp.json()["code"] == 2001

    async def test_user_cannot_move_funds(
        self, client: AsyncClient, make_user: MakeUser
    ) -> None:
        user_id, user_headers = await make_user("USER")
        other_id, _ = await make_user("USER")

        resp = await _operate(client, user_headers, other_id, "deposit", "1.00")

        assert resp.status_code == 403

    async def test_flows_paginate(
        self, client: AsyncClient, root_headers: dict[str, str], make_user: MakeUser
    ) -> None:
        user_id, user_headers = await make_user("USER")
        for _ in range(3):
            await _operate(client, root_headers, user_id, "deposit", "1.00")

        first = await client.get(
            "/api/v1/account-flows", params={"limit": 2}, headers=user_headers
        )
        page = first.json()["data"]
        assert len(page["items"]) == 2
        assert page["has_more"] is True

        second = await client.get(
            "/api/v1/account-flows",
            params={"limit": 2, "cursor": page["next_cursor"]},
            headers=user_headers,
        )
        assert len(second.json()["data"]["items"]) == 1


class TestAppendOnlyTables:
    @pytest.mark.parametrize(
        "statement",
        [
            "UPDATE account_flows SET amount = amount * 2 WHERE target_user_id = :uid",
            "DELETE FROM account_flows WHERE target_user_id = :uid",
        ],
    )
    async def test_flow_rows_cannot_change(
        self,
        client: AsyncClient,
        root_headers: dict[str, str],
        make_user: MakeUser,
        statement: str,
    ) -> None:
        user_id, user_headers = await make_user("USER")
        await _operate(client, root_headers, user_id, "deposit", "5.00")

        with pytest.raises(DBAPIError, match="append-only"):
            async with session_scope() as db:
                await db.execute(text(statement), {"uid": user_id})

        resp = await client.get("/api/v1/account-flows/summary", headers=user_headers)
        assert resp.json()["data"]["received_recharge"] == "5.00"

    async def test_operation_log_rows_cannot_change(self, client: AsyncClient) -> None:
        async with session_scope() as db:
            log_id = (
                await db.execute(
                    text(
                        "INSERT INTO operation_logs (card_id, operation_type, amount, operator_id) "
                        "VALUES ('it-card', 'CREATE_CARD', 1, 'it') RETURNING id"
                    )
                )
            ).scalar_one()
            await db.commit()

        with pytest.raises(DBAPIError, match="append-only"):
            async with session_scope() as db:
                await db.execute(
                    text("UPDATE operation_logs SET amount = 0 WHERE id = :id"), {"id": log_id}
                )
