"""Outbound account notifications."""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import urlencode

from .domain.account import Account

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    """Delivers account emails; callers do not rely on any return value."""

    def send_email_confirmation_token(self, account: Account, token: str) -> None: ...


class LoggingEmailSender:
    """Development sender that writes the confirmation link to the log."""

    def __init__(self, public_base_url: str) -> None:
        self._base_url = public_base_url.rstrip("/")

    def confirmation_link(self, account: Account, token: str) -> str:
        query = urlencode({"id": account.account_id, "token": token})
        return f"{self._base_url}/confirm-email?{query}"

    def send_email_confirmation_token(self, account: Account, token: str) -> None:
        logger.info(
            "email confirmation for %s <%s>: %s",
            account.user_name,
            account.email,
            self.confirmation_link(account, token),
        )
