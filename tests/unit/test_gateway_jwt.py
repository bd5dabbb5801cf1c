"""Unit tests for JWT verification and the current-actor dependency."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException
from jose import jwt

from config.settings import settings
from src.vc_common.errors import AccountDisabledError, InvalidCredentialsError
from src.vc_gateway.auth.dependencies import get_current_actor, get_current_user
from src.vc_gateway.auth.jwt_handler import create_access_token, decode_access_token


def _db_returning(user: object) -> AsyncMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = user
    db = AsyncMock()
    db.execute.return_value = result
    return db


def _user_row(status: str = "ACTIVE") -> MagicMock:
    row = MagicMock()
    row.id = "3f1c9a52-0000-4000-8000-000000000001"
    row.username = "alice"
    row.role = "USER"
    row.status = status
    row.parent_id = None
    row.balance = 0
    row.created_at = datetime.now(UTC)
    return row


class TestTokens:
    def test_access_token_claims(self) -> None:
        token = create_access_token("user-123", role="ADMIN")
        payload = jwt.get_unverified_claims(token)
        assert payload["sub"] == "user-123"
        assert payload["type"] == "access"
        assert payload["role"] == "ADMIN"

    def test_decode_valid(self) -> None:
        assert decode_access_token(create_access_token("user-abc"))["sub"] == "user-abc"

    def test_wrong_secret_rejected(self) -> None:
        forged = jwt.encode({"sub": "x", "type": "access"}, "other-secret", algorithm="HS256")
        with pytest.raises(InvalidCredentialsError):
            decode_access_token(forged)

    def test_expired_rejected(self) -> None:
        past = datetime.now(UTC) - timedelta(minutes=5)
        token = jwt.encode(
            {"sub": "x", "type": "access", "exp": past}, settings.JWT_SECRET, algorithm="HS256"
        )
        with pytest.raises(InvalidCredentialsError):
            decode_access_token(token)

    def test_non_access_token_rejected(self) -> None:
        token = jwt.encode({"sub": "x", "type": "refresh"}, settings.JWT_SECRET, algorithm="HS256")
        with pytest.raises(InvalidCredentialsError):
            decode_access_token(token)


class TestCurrentUser:
    async def test_loads_active_user(self) -> None:
        row = _user_row()
        user = await get_current_user(create_access_token(str(row.id)), _db_returning(row))
        assert user is row

    async def test_unknown_user_is_401(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(create_access_token("nobody"), _db_returning(None))
        assert exc_info.value.status_code == 401

    async def test_bad_token_is_401(self) -> None:
        with pytest.raises(HTTPException):
            await get_current_user("garbage", _db_returning(None))

    async def test_disabled_user(self) -> None:
        with pytest.raises(AccountDisabledError):
            await get_current_user(
                create_access_token("u"), _db_returning(_user_row(status="SUSPENDED"))
            )

    async def test_actor_is_domain_user(self) -> None:
        row = MagicMock()
        row.to_domain.return_value = "domain-user"
        assert await get_current_actor(row) == "domain-user"
