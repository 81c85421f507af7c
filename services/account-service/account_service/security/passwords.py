"""Bcrypt password hashing."""

from __future__ import annotations

import base64
import hashlib
import logging

import bcrypt

logger = logging.getLogger(__name__)

# bcrypt only consumes the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72


def _prepare(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > _BCRYPT_MAX_BYTES:
        return base64.b64encode(hashlib.sha256(encoded).digest())
    return encoded


class PasswordHasher:
    """Hash and verify passwords with a configurable bcrypt cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        """Initialise with the bcrypt cost factor (4-31)."""
        self.rounds = rounds
        self._dummy_hash: bytes | None = None

    def hash(self, password: str) -> str:
        """Return a salted bcrypt hash for ``password``."""
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(_prepare(password), salt).decode("ascii")

    def verify(self, password: str, password_hash: str) -> bool:
        """Return ``True`` when ``password`` matches ``password_hash``.

        ``bcrypt.checkpw`` compares digests in constant time. A corrupt hash
        counts as a mismatch.
        """
        try:
            return bcrypt.checkpw(_prepare(password), password_hash.encode("ascii"))
        except ValueError:
            logger.error("stored password hash is not a valid bcrypt hash")
            return False

    def verify_absent(self, password: str) -> None:
        """Spend one verification on a throwaway hash.

        Keeps unknown-account lookups as slow as wrong-password checks.
        """
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(b"absent-account", bcrypt.gensalt(rounds=self.rounds))
        bcrypt.checkpw(_prepare(password), self._dummy_hash)
