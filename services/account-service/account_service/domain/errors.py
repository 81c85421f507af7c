"""Error kinds surfaced by the account workflows."""

from __future__ import annotations

from enum import Enum


class AccountError(str, Enum):
    """Expected, recoverable outcomes returned inside ``Err``.

    Values double as localisation keys for the transport layer.
    """

    NOT_FOUND = "ThisUserDoesNotExist"
    INVALID_TOKEN = "InvalidToken"
    WRONG_CREDENTIALS = "WrongPassword"
    DUPLICATE_USER_NAME = "DuplicateUserName"
    DUPLICATE_EMAIL = "DuplicateEmail"
    UNAUTHENTICATED = "Unauthenticated"


class TokenError(str, Enum):
    """Reasons a raw token cannot be decoded."""

    MALFORMED = "malformed"
    WRONG_PURPOSE = "wrong_purpose"
    EXPIRED = "expired"


class StorageUnavailable(RuntimeError):
    """Raised when a backing store cannot serve the current operation."""


class ConcurrentUpdateError(StorageUnavailable):
    """Raised when an account kept changing underneath a credential update."""
