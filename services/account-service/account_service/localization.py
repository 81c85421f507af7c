"""User-facing message catalog for error keys."""

from __future__ import annotations

from typing import Mapping

ENGLISH: Mapping[str, str] = {
    "ThisUserDoesNotExist": "This user does not exist.",
    "InvalidToken": "The confirmation link is invalid or has expired.",
    "WrongPassword": "The email address or password is incorrect.",
    "DuplicateUserName": "This user name is already taken.",
    "DuplicateEmail": "This email address is already registered.",
    "Unauthenticated": "You need to be logged in to do that.",
}


class Localizer:
    """Look up messages by key, falling back to the key itself."""

    def __init__(self, catalog: Mapping[str, str] = ENGLISH) -> None:
        self._catalog = dict(catalog)

    def __getitem__(self, key: str) -> str:
        return self._catalog.get(key, key)
