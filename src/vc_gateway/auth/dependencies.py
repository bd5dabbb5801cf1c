"""FastAPI dependencies: get_current_user / get_current_actor.

Usage in any protected router:
    from src.vc_gateway.auth.dependencies import get_current_actor

    @router.get("/protected")
    async def protected(actor: Annotated[User, Depends(get_current_actor)]):
        ...
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.vc_common.database import get_db_session
from src.vc_common.enums import UserStatus
from src.vc_common.errors import AccountDisabledError, InvalidCredentialsError
from src.vc_gateway.auth.jwt_handler import decode_access_token
from src.vc_gateway.user.db_models import UserModel
from src.vc_ledger.domain.models import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

# Reusable 401 exception with WWW-Authenticate header (OAuth2 standard)
_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> UserModel:
    """Validate the Bearer token and load the user row.

    Raises HTTP 401 if the token is missing, invalid, or expired.
    Raises AccountDisabledError (403) if the user is not ACTIVE.
    """
    try:
        payload = decode_access_token(token)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None

    user_id: str | None = payload.get("sub")
    if not user_id:
        raise _CREDENTIALS_EXCEPTION

    result = await db.execute(select(UserModel).where(UserModel.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise _CREDENTIALS_EXCEPTION

    if user.status != UserStatus.ACTIVE:
        raise AccountDisabledError()

    return user


async def get_current_actor(
    current_user: UserModel = Depends(get_current_user),
) -> User:
    """The authenticated user as a domain object, ready for policy checks."""
    return current_user.to_domain()
