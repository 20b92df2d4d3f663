from datetime import datetime
from typing import Optional

from uuid import UUID

from pydantic import Field

from cleannft.schemas.common import ApiModel


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(ApiModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=128)
    display_name: Optional[str] = Field(default=None, max_length=100)
    wallet_address: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(ApiModel):
    email: str = Field(max_length=255)
    password: str = Field(min_length=1, max_length=128)


class UserOut(ApiModel):
    id: UUID
    email: str
    display_name: Optional[str] = None
    wallet_address: Optional[str] = None
    is_active: bool
    roles: list[str] = []
    created_at: Optional[datetime] = None


class AuthResponse(ApiModel):
    user: UserOut
    token: str
