"""Account-related DTOs shared across services."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, EmailStr, Field


class AccountView(BaseModel):
    """Public projection of an account; never carries credential material."""

    account_id: str
    user_name: str
    email: EmailStr
    email_confirmed: bool = False
    created_at: datetime


class UserInfo(BaseModel):
    """Who the caller is, as seen from their session."""

    exposed_claims: dict[str, str] = Field(default_factory=dict)
    is_authenticated: bool = False
    current_user: AccountView | None = None
