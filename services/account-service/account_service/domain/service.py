"""Account service orchestrating credentials, confirmation tokens, and sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

from .account import Account
from .contracts import CreateAccountInput
from .credentials import CredentialStore
from .errors import AccountError, ConcurrentUpdateError
from .result import Err, Ok, Result
from .. import metrics
from ..notifications import EmailSender
from ..security.sessions import Session, SessionManager
from ..security.tokens import CONFIRM_EMAIL, TokenCodec

logger = logging.getLogger(__name__)

SET_PASSWORD_ATTEMPTS = 3


@dataclass(slots=True, frozen=True)
class AccountSession:
    """An account together with the session just established for it."""

    account: Account
    session: Session


@dataclass(slots=True, frozen=True)
class CurrentUser:
    """What the caller's session evidence says about them right now."""

    claims: Mapping[str, str] = field(default_factory=dict)
    is_authenticated: bool = False
    account: Account | None = None


class AccountService:
    """Account workflows: registration, confirmation, log-in/out, password change.

    Every operation returns an ``Ok``/``Err`` result for expected outcomes;
    only storage failures are raised.
    """

    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenCodec,
        sessions: SessionManager,
        email_sender: EmailSender,
    ) -> None:
        """Store the collaborators used by the account workflows."""
        self._store = store
        self._tokens = tokens
        self._sessions = sessions
        self._email_sender = email_sender

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    def create(self, payload: CreateAccountInput) -> Result[AccountSession, AccountError]:
        """Register an account, send its confirmation token and log it in.

        The new account is logged in right away even though its email is not
        confirmed yet.
        """
        created = self._store.create(payload.user_name, payload.email, payload.password)
        if isinstance(created, Err):
            logger.info("account creation rejected: %s", created.error.name)
            return created
        account = created.value
        metrics.ACCOUNTS_CREATED.inc()
        logger.info("account %s created", account.account_id)

        token = self._tokens.issue(CONFIRM_EMAIL, account)
        self._dispatch_confirmation(account, token)

        session = self._sessions.establish(account)
        return Ok(AccountSession(account=account, session=session))

    def _dispatch_confirmation(self, account: Account, token: str) -> None:
        # Best effort: a delivery failure never undoes the registration.
        try:
            self._email_sender.send_email_confirmation_token(account, token)
        except Exception:
            logger.exception("failed to send confirmation email for account %s", account.account_id)

    def confirm_email(self, account_id: str, raw_token: str) -> Result[AccountSession, AccountError]:
        """Confirm the account's email with a token issued at registration."""
        account = self._store.find_by_id(account_id)
        if account is None:
            metrics.EMAIL_CONFIRMATIONS.labels(outcome="not_found").inc()
            return Err(AccountError.NOT_FOUND)

        decoded = self._tokens.decode(CONFIRM_EMAIL, raw_token)
        if isinstance(decoded, Err):
            return self._reject_confirmation(account, decoded.error.value)
        payload = decoded.value
        if payload.account_id != account.account_id:
            return self._reject_confirmation(account, "account_mismatch")
        if payload.stamp != account.security_stamp:
            return self._reject_confirmation(account, "stale_stamp")

        confirmed = self._store.mark_email_confirmed(account)
        if confirmed is None:
            # The stamp moved between the read and the write.
            return self._reject_confirmation(account, "stale_stamp")

        metrics.EMAIL_CONFIRMATIONS.labels(outcome="confirmed").inc()
        logger.info("account %s confirmed its email", confirmed.account_id)

        session = self._sessions.establish(confirmed)
        return Ok(AccountSession(account=confirmed, session=session))

    def _reject_confirmation(self, account: Account, reason: str) -> Err[AccountError]:
        logger.warning("rejected confirmation token for account %s: %s", account.account_id, reason)
        self._store.write_audit_event(
            account_id=account.account_id,
            event_type="account.email_confirmation_rejected",
            actor=None,
            metadata={"reason": reason},
        )
        metrics.EMAIL_CONFIRMATIONS.labels(outcome="invalid_token").inc()
        return Err(AccountError.INVALID_TOKEN)

    def log_in(self, email: str, password: str) -> Result[AccountSession, AccountError]:
        """Authenticate by email and password.

        Unknown emails and wrong passwords are indistinguishable to callers.
        """
        account = self._store.find_by_email(email)
        if account is None:
            self._store.verify_absent_password(password)
            logger.warning("log-in failed for unknown email")
            return self._reject_log_in(None)

        if not self._store.verify_password(account, password):
            logger.warning("log-in failed for account %s", account.account_id)
            return self._reject_log_in(account.account_id)

        session = self._sessions.establish(account)
        self._store.write_audit_event(
            account_id=account.account_id,
            event_type="session.logged_in",
            actor=account.account_id,
        )
        metrics.LOGINS.labels(outcome="succeeded").inc()
        return Ok(AccountSession(account=account, session=session))

    def _reject_log_in(self, account_id: str | None) -> Err[AccountError]:
        # Both failure paths do the same storage work.
        self._store.write_audit_event(
            account_id=account_id,
            event_type="session.login_failed",
            actor=None,
        )
        metrics.LOGINS.labels(outcome="failed").inc()
        return Err(AccountError.WRONG_CREDENTIALS)

    def log_out(self, evidence: str | None) -> Result[None, AccountError]:
        """End the session named by ``evidence``; a no-op when there is none."""
        session = self._sessions.resolve(evidence)
        if session is None:
            return Ok(None)
        self._sessions.clear(session.session_id)
        self._store.write_audit_event(
            account_id=session.account_id,
            event_type="session.logged_out",
            actor=session.account_id,
        )
        return Ok(None)

    def get_current_user(self, evidence: str | None) -> Result[CurrentUser, AccountError]:
        """Describe the caller, checking the session against the live account.

        A session whose account has since disappeared is cleared on the spot;
        its claims are still echoed back but the caller is unauthenticated.
        """
        session = self._sessions.resolve(evidence)
        if session is None:
            return Ok(CurrentUser())

        account = self._store.find_by_id(session.account_id)
        if account is None:
            self._sessions.clear(session.session_id)
            self._store.write_audit_event(
                account_id=session.account_id,
                event_type="session.cleared_for_missing_account",
                actor=None,
            )
            logger.info("cleared session for missing account %s", session.account_id)
            return Ok(CurrentUser(claims=session.claims, is_authenticated=False, account=None))

        return Ok(CurrentUser(claims=session.claims, is_authenticated=True, account=account))

    def set_password(
        self, evidence: str | None, current_password: str, new_password: str
    ) -> Result[Account, AccountError]:
        """Change the caller's password after checking the current one.

        The caller's own session stays valid; confirmation tokens issued
        before the change do not.
        """
        session = self._sessions.resolve(evidence)
        if session is None:
            return Err(AccountError.UNAUTHENTICATED)

        for _ in range(SET_PASSWORD_ATTEMPTS):
            account = self._store.find_by_id(session.account_id)
            if account is None:
                metrics.PASSWORD_CHANGES.labels(outcome="not_found").inc()
                return Err(AccountError.NOT_FOUND)

            if not self._store.verify_password(account, current_password):
                self._store.write_audit_event(
                    account_id=account.account_id,
                    event_type="account.password_change_rejected",
                    actor=account.account_id,
                )
                metrics.PASSWORD_CHANGES.labels(outcome="wrong_password").inc()
                return Err(AccountError.WRONG_CREDENTIALS)

            updated = self._store.set_password_hash(account, self._store.hash_password(new_password))
            if updated is None:
                logger.info("password change for %s raced another update, retrying", account.account_id)
                continue

            metrics.PASSWORD_CHANGES.labels(outcome="changed").inc()
            return Ok(updated)

        raise ConcurrentUpdateError(f"account {session.account_id} kept changing during password update")
