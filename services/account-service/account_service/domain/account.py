from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


def normalize_key(value: str) -> str:
    """Return the lookup form of a user name or email address."""
    return value.strip().casefold()


@dataclass(slots=True, frozen=True)
class Account:
    """Aggregate root for a single-tenant user identity.

    Instances are snapshots; every credential mutation produces a new
    ``Account`` carrying a fresh ``security_stamp``.
    """

    account_id: str
    user_name: str
    email: str
    password_hash: str
    security_stamp: str
    created_at: datetime
    email_confirmed: bool = False

    @property
    def normalized_user_name(self) -> str:
        return normalize_key(self.user_name)

    @property
    def normalized_email(self) -> str:
        return normalize_key(self.email)
