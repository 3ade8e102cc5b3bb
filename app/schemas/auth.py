from pydantic import BaseModel, EmailStr
from datetime import datetime
from typing import Optional


class UserResponse(BaseModel):
    """Authenticated user."""

    id: int
    email: EmailStr
    name: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuthMeResponse(BaseModel):
    """Response wrapper for /auth/me."""

    user: UserResponse


class TokenData(BaseModel):
    """Data encoded in JWT token."""

    user_id: Optional[int] = None
    email: Optional[str] = None
