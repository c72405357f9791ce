"""
Authentication router — signup and login endpoints.

These are the only public endpoints besides /health. Everything else
requires a valid JWT bearer token.

Endpoints:
  POST /auth/signup  — Register a new user and get a token
  POST /auth/login   — Authenticate and get a token

Plaintext passwords exist only in memory during the request: they are
hashed before any database work and never logged. Tokens appear only in
response bodies.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ledger.database import get_db
from bank_ledger.schemas.auth import (
    SignupResponse,
    TokenResponse,
    UserLoginRequest,
    UserSignupRequest,
)
from bank_ledger.services import auth_service

router = APIRouter()


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def signup(
    request: UserSignupRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new user and log them in.

    - **email**: Valid address, not already registered. Notifications go here.
    - **password**: Minimum 8 characters
    - **first_name** / **last_name**: Required, 1-100 characters
    """
    user, token = await auth_service.signup(
        db=db,
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
    )
    return SignupResponse(user_id=user.id, email=user.email, token=token)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Authenticate and get a token",
)
async def login(
    request: UserLoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with email and password.

    Send the returned token on every other request:

        Authorization: Bearer <token>
    """
    _, token = await auth_service.login(db=db, email=request.email, password=request.password)
    return TokenResponse(token=token)
