"""
FastAPI Dependencies

Provides dependency injection for database sessions and authentication.

Access tokens are issued by the identity service and verified here with the
shared signing key. The `sub` claim is the local user id.

SECURITY NOTES:
- JWT payloads are never logged
- Bearer token is the only auth method (SPA-friendly, no CSRF needed)
"""

from typing import Annotated
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
import logging

from app.database import get_db
from app.config import settings
from app.exceptions import ForbiddenError, UnauthorizedError
from app.models.user import User
from app.schemas.auth import TokenData

logger = logging.getLogger(__name__)


# HTTP Bearer for JWT
security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token signed with the shared key."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> TokenData:
    """Verify a token and extract its claims.

    Raises:
        UnauthorizedError: bad signature, expired, or missing subject
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        # SECURITY: Never log JWT payloads - they contain sensitive data
        sub = payload.get("sub")
        if sub is None:
            raise UnauthorizedError()
        return TokenData(user_id=int(sub), email=payload.get("email"))
    except JWTError:
        logger.warning("JWT validation failed")
        raise UnauthorizedError()
    except (TypeError, ValueError):
        logger.warning("Invalid token format")
        raise UnauthorizedError()


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> User:
    """Get current user from the bearer token."""
    if not credentials:
        raise UnauthorizedError()

    token_data = decode_access_token(credentials.credentials)

    result = await db.execute(select(User).where(User.id == token_data.user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise UnauthorizedError()
    if not user.is_active:
        raise ForbiddenError("User account is disabled")

    logger.debug("User authenticated", extra={"user_id": user.id})

    return user


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
