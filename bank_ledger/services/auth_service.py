"""
Authentication service — signup and login business logic.

Kept free of HTTP concerns so it can be tested without a web server.

Signup flow:
  1. Reject an email that's already registered
  2. Hash the password with Argon2id
  3. Create the User
  4. Return a JWT so the user is logged in straight away

Login flow:
  1. Look up the user by email
  2. Verify the password against the stored hash
  3. Return a JWT

Login gives the same error for an unknown email, a wrong password and a
deactivated user, so valid emails can't be enumerated.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ledger.exceptions import DuplicateEmailError, InvalidCredentialsError
from bank_ledger.models.user import User
from bank_ledger.security import create_access_token, hash_password, verify_password

logger = structlog.get_logger(__name__)


async def signup(
    db: AsyncSession,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
) -> tuple[User, str]:
    """
    Register a new user.

    Returns:
        Tuple of (User instance, JWT token string).

    Raises:
        DuplicateEmailError: If the email is already registered.
    """
    result = await db.execute(select(User.id).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise DuplicateEmailError(email)

    user = User(
        email=email,
        hashed_password=hash_password(password),
        first_name=first_name,
        last_name=last_name,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        # Lost a race with a concurrent signup for the same email
        raise DuplicateEmailError(email) from exc

    logger.info("user_registered", user_id=str(user.id))
    return user, create_access_token(str(user.id))


async def login(db: AsyncSession, email: str, password: str) -> tuple[User, str]:
    """
    Authenticate a user and return a JWT token.

    Raises:
        InvalidCredentialsError: Unknown email, wrong password, or inactive user.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(password, user.hashed_password):
        logger.info("login_failed")
        raise InvalidCredentialsError()
    if not user.is_active:
        raise InvalidCredentialsError()

    return user, create_access_token(str(user.id))
