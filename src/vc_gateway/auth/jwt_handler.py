"""JWT access-token verification.

Tokens are issued by the external auth service with the shared JWT_SECRET
(HS256). This service only verifies them. `create_access_token` exists for
local tooling and tests.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from config.settings import settings
from src.vc_common.errors import InvalidCredentialsError

_ALGORITHM = settings.JWT_ALGORITHM  # "HS256"
_ACCESS_EXPIRE = timedelta(minutes=30)


def create_access_token(user_id: str, role: str | None = None) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "type": "access",
        "iat": now,
        "exp": now + _ACCESS_EXPIRE,
    }
    if role is not None:
        payload["role"] = role
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_access_token(token: str) -> dict[str, str]:
    """Decode and validate an access token.

    Raises:
        InvalidCredentialsError: signature invalid, token expired, or not an access token.
    """
    try:
        payload: dict[str, str] = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise InvalidCredentialsError() from None

    if payload.get("type") != "access":
        raise InvalidCredentialsError()
    return payload
