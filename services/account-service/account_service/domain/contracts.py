"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to register an account."""

    user_name: str
    email: str
    password: str

    def __repr__(self) -> str:
        return f"CreateAccountInput(user_name={self.user_name!r}, email={self.email!r}, password='***')"


@dataclass(slots=True, frozen=True)
class AuditEvent:
    """Audit entry committed together with the account change it describes.

    ``account_id`` is filled in by the repository from the row it writes.
    """

    event_type: str
    actor: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
