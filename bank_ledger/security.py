"""
Security utilities: password hashing and JWT access tokens.

PASSWORD HASHING (Argon2id via passlib)
  Only the hash is stored. verify_password() compares in constant time.
  CryptContext(deprecated="auto") lets a future scheme take over while
  old hashes keep verifying.

JWT ACCESS TOKENS (python-jose, HS256)
  Login and signup return a token whose "sub" claim is the user id. That
  id is the identity every account-ownership check compares against.
  Tokens expire after ACCESS_TOKEN_EXPIRE_MINUTES; nothing is stored
  server-side.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext

from bank_ledger.config import settings


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password with Argon2id."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed access token for a user id.

    Args:
        subject: The user id (as a string) to put in the "sub" claim.
        expires_delta: Lifetime override; defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {"sub": subject, "exp": expire}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify a token's signature and expiry and return its claims.

    Raises:
        JWTError: If the token is expired, tampered with, or malformed.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
