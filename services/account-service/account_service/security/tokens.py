"""Issuing and validating purpose-bound account tokens."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import jwt

from ..domain.account import Account
from ..domain.errors import TokenError
from ..domain.result import Err, Ok, Result

logger = logging.getLogger(__name__)

CONFIRM_EMAIL = "confirm-email"

_ALGORITHM = "HS256"


@dataclass(slots=True, frozen=True)
class TokenPayload:
    """Claims recovered from a verified token."""

    purpose: str
    account_id: str
    stamp: str
    issued_at: datetime
    expires_at: datetime


class TokenCodec:
    """Sign and verify short-lived tokens bound to an account's security stamp.

    The purpose travels in the ``aud`` claim so a token minted for one flow is
    rejected by every other flow. The codec never consults the account store;
    comparing ``stamp`` against the live account is the caller's job.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._issuer = issuer
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, purpose: str, account: Account, ttl_seconds: int | None = None) -> str:
        """Create a signed, URL-safe token for ``account``.

        Parameters
        ----------
        purpose:
            Flow the token is valid for, e.g. :data:`CONFIRM_EMAIL`.
        account:
            Account whose id and current security stamp are embedded.
        ttl_seconds:
            Optional lifetime override; defaults to the codec TTL.

        Returns
        -------
        str
            Encoded JWT; its three base64url segments are safe in URLs.
        """
        now = int(self._clock())
        lifetime = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "aud": purpose,
            "sub": account.account_id,
            "stamp": account.security_stamp,
            "iat": now,
            "exp": now + lifetime,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def decode(self, purpose: str, raw_token: str) -> Result[TokenPayload, TokenError]:
        """Verify ``raw_token`` for ``purpose`` and return its payload."""
        try:
            claims = jwt.decode(
                raw_token,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=purpose,
                issuer=self._issuer,
                options={"require": ["exp", "iat", "aud", "sub", "stamp"]},
            )
        except jwt.ExpiredSignatureError:
            return Err(TokenError.EXPIRED)
        except jwt.InvalidAudienceError:
            return Err(TokenError.WRONG_PURPOSE)
        except jwt.PyJWTError as exc:
            logger.debug("rejecting malformed %s token: %s", purpose, exc)
            return Err(TokenError.MALFORMED)

        if not isinstance(claims["sub"], str) or not isinstance(claims["stamp"], str):
            return Err(TokenError.MALFORMED)
        # PyJWT checks exp against wall time; honour the injected clock too.
        if claims["exp"] <= self._clock():
            return Err(TokenError.EXPIRED)

        return Ok(
            TokenPayload(
                purpose=purpose,
                account_id=claims["sub"],
                stamp=claims["stamp"],
                issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            )
        )
