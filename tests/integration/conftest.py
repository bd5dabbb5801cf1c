"""Integration-test fixtures.

All integration tests share a single event-loop so that the module-level
SQLAlchemy async engine pool (created at import time) remains valid across
the entire test session. Tests skip when DATABASE_URL is unreachable.
"""

import uuid
from collections.abc import Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError

from src.main import app
from src.vc_common.database import engine, session_scope
from src.vc_gateway.auth.jwt_handler import create_access_token

MakeUser = Callable[..., Awaitable[tuple[str, dict[str, str]]]]


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def client() -> AsyncClient:  # type: ignore[override]
    """Session-scoped async HTTP client — keeps the engine pool alive."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1 FROM users LIMIT 1"))
    except (OSError, OperationalError, DBAPIError) as exc:
        pytest.skip(f"database not available: {exc}")

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def root_headers(client: AsyncClient) -> dict[str, str]:
    """Bearer header for the seeded root super admin (migration 007)."""
    async with session_scope() as db:
        root_id = (
            await db.execute(text("SELECT id FROM users WHERE username = 'root'"))
        ).scalar_one()
    return {"Authorization": f"Bearer {create_access_token(str(root_id))}"}


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def make_user(client: AsyncClient) -> MakeUser:
    """Insert a fresh user and return (id, auth headers)."""

    async def _make(role: str = "USER", parent_id: str | None = None) -> tuple[str, dict[str, str]]:
        username = f"it_{role.lower()}_{uuid.uuid4().hex[:8]}"
        async with session_scope() as db:
            user_id = (
                await db.execute(
                    text(
                        "INSERT INTO users (username, role, parent_id) "
                        "VALUES (:username, :role, :parent_id) RETURNING id"
                    ),
                    {"username": username, "role": role, "parent_id": parent_id},
                )
            ).scalar_one()
            await db.commit()
        user_id = str(user_id)
        return user_id, {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _make
