from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import structlog
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.config import settings
from newsdesk.db.queries import create_user, get_user_by_email
from newsdesk.errors import ConflictError, UnauthorizedError
from newsdesk.models.db import User
from newsdesk.models.schemas import LoginRequest, LoginResult, SignupRequest, TokenPayload, UserOut

logger = structlog.get_logger(__name__)

_hasher = PasswordHasher()

INVALID_CREDENTIALS = "Invalid email or password"


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerifyMismatchError, InvalidHashError):
        return False


def create_access_token(user_id: str, role: str, now: datetime | None = None) -> str:
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.jwt_expires_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenPayload:
    """Verify signature and expiry; raises UnauthorizedError on any failure."""
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return TokenPayload(sub=claims["sub"], role=claims["role"])
    except (jwt.PyJWTError, KeyError, ValueError) as exc:
        raise UnauthorizedError("Invalid or expired token") from exc


async def signup(session: AsyncSession, data: SignupRequest) -> User:
    if await get_user_by_email(session, data.email) is not None:
        raise ConflictError("A user with this email already exists")

    user = await create_user(session, data.name, data.email, hash_password(data.password), data.role.value)
    logger.info("user_registered", user_id=user.id, role=user.role)
    return user


async def login(session: AsyncSession, data: LoginRequest) -> LoginResult:
    user = await get_user_by_email(session, data.email)
    if user is None or not verify_password(data.password, user.password_hash):
        raise UnauthorizedError(INVALID_CREDENTIALS)

    return LoginResult(
        token=create_access_token(user.id, user.role),
        user=UserOut.model_validate(user),
    )
