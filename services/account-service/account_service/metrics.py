"""Prometheus counters for account workflows."""

from __future__ import annotations

from prometheus_client import Counter

ACCOUNTS_CREATED = Counter("account_created_total", "Accounts registered")
LOGINS = Counter("account_login_total", "Log-in attempts", ["outcome"])
EMAIL_CONFIRMATIONS = Counter(
    "account_email_confirmation_total", "Email confirmation attempts", ["outcome"]
)
PASSWORD_CHANGES = Counter("account_password_change_total", "Password change attempts", ["outcome"])
