"""
FastAPI dependencies shared by the routers.

  get_current_user   JWT bearer token -> active User (401 otherwise)
  get_event_bus      the application's EventBus, if one is running

Every account and transaction endpoint depends on get_current_user; the
user id it yields is passed to the services, which enforce ownership.
"""

import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ledger.database import get_db
from bank_ledger.events import EventBus
from bank_ledger.models.user import User
from bank_ledger.security import decode_access_token


# Reads "Authorization: Bearer <token>"; tokenUrl is for Swagger UI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to an active User.

    Raises:
        HTTPException 401: If the token is invalid or expired, or the user
            doesn't exist or is deactivated.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        subject: str | None = payload.get("sub")
        if subject is None:
            raise credentials_exception
        user_id = uuid.UUID(subject)
    except (JWTError, ValueError):
        raise credentials_exception

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def get_event_bus(request: Request) -> EventBus | None:
    """The bus created by the app lifespan (None when it isn't running)."""
    return getattr(request.app.state, "event_bus", None)
