"""
Session authority: credential exchange and the single-active-session rule.

Why: Login, logout and credential validation share one piece of state, the
account's `session_token`. Keeping all three transitions here (instead of in
route handlers) makes the exclusivity invariant testable without HTTP.

States per account:
- logged out: `session_token is None`
- logged in:  `session_token` set and embedded in a live signed credential

Students may hold one session at a time. Their login is a compare-and-set
`None -> token`, so two racing logins cannot both succeed. Faculty and admins
may hold several sessions; their login rotates the stored token with a
compare-and-set against the value just read.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging
import secrets

from .action_log import ActionLogEntry, ActionLogger
from .credentials import CredentialComparator
from .domain import SESSION_TTL_DAYS
from .errors import ConcurrentSessionDenied, InvalidCredentials, NotFound, StaleSession
from .stores import AccountStore, account_summary
from .tokens import CredentialVerificationError, issue_credential, verify_credential

logger = logging.getLogger("roster.identity_access")

# Faculty/admin rotation retries when another login wins the race in between.
_ROTATE_ATTEMPTS = 3


def _mask_identifier(value: str | None) -> str:
    """Mask a login identifier for logs (keep first char and length hint)."""
    if not value:
        return "<empty>"
    return value[0] + "***" if len(value) > 1 else "*"


@dataclass(frozen=True)
class Principal:
    account_id: str
    user_id: str
    role: str
    name: str


@dataclass(frozen=True)
class LoginResult:
    account: dict
    credential: str


class SessionAuthority:
    """Issue, validate and clear session credentials.

    Parameters
    ----------
    store:
        AccountStore providing `compare_and_set_session_token`.
    comparator:
        CredentialComparator used to check the submitted secret.
    action_log:
        Sink receiving one entry per login attempt and per logout.
    secret:
        HS256 signing key for credentials.
    ttl_days:
        Fixed credential lifetime; no renewal.
    """

    def __init__(
        self,
        *,
        store: AccountStore,
        comparator: CredentialComparator,
        action_log: ActionLogger,
        secret: str,
        ttl_days: int = SESSION_TTL_DAYS,
    ) -> None:
        self.store = store
        self.comparator = comparator
        self.action_log = action_log
        self.secret = secret
        self.ttl_seconds = int(ttl_days) * 24 * 3600

    def _record_attempt(self, user_id: str, details: str, ip: str, system_id: str) -> None:
        self.action_log.append(
            ActionLogEntry(actor=user_id or "", action="login_attempt", details=details, ip=ip, system_id=system_id)
        )

    def login(self, user_id: str, password: str, *, ip: str = "", system_id: str = "unknown") -> LoginResult:
        account = self.store.find_by_user_id(user_id) if user_id else None
        if account is None:
            self._record_attempt(user_id, "Failed login: invalid user_id", ip, system_id)
            logger.info("Login rejected (unknown id) user=%s", _mask_identifier(user_id))
            raise InvalidCredentials("unknown_user_id")
        if not self.comparator.verify(password or "", account.password_hash):
            self._record_attempt(user_id, "Failed login: invalid password", ip, system_id)
            logger.info("Login rejected (bad secret) user=%s", _mask_identifier(user_id))
            raise InvalidCredentials("invalid_password")

        token = secrets.token_urlsafe(32)
        if account.role == "student":
            if not self.store.compare_and_set_session_token(account.id, expected=None, new=token):
                self._record_attempt(user_id, "ALERT: student already logged in elsewhere", ip, system_id)
                logger.warning("Concurrent student login denied user=%s", _mask_identifier(user_id))
                raise ConcurrentSessionDenied()
        else:
            self._rotate(account.id, account.session_token, token)

        try:
            credential = issue_credential(
                account_id=account.id,
                user_id=account.user_id,
                role=account.role,
                session_token=token,
                secret=self.secret,
                ttl_seconds=self.ttl_seconds,
            )
            self.action_log.append(
                ActionLogEntry(
                    actor=account.user_id,
                    action="login",
                    details=f"User logged in from IP: {ip}, System: {system_id}",
                    ip=ip,
                    system_id=system_id,
                )
            )
        except Exception:
            # The caller never received a credential; release the student slot.
            if account.role == "student":
                self.store.compare_and_set_session_token(account.id, expected=token, new=None)
            logger.warning("Login not completed for user=%s; session released", _mask_identifier(user_id))
            raise
        account.session_token = token
        return LoginResult(account=account_summary(account), credential=credential)

    def _rotate(self, account_id: str, observed: Optional[str], token: str) -> None:
        expected = observed
        for _ in range(_ROTATE_ATTEMPTS):
            if self.store.compare_and_set_session_token(account_id, expected=expected, new=token):
                return
            current = self.store.get(account_id)
            if current is None:
                raise InvalidCredentials("unknown_user_id")
            expected = current.session_token
        # Concurrent faculty/admin logins kept winning. A non-empty stored
        # token is all `authenticate` requires for these roles.
        logger.info("Session rotation lost race for account=%s", account_id)

    def logout(self, account_id: str) -> None:
        """Clear the account's session token. Idempotent for logged-out accounts."""
        account = self.store.get(account_id)
        if account is None or not self.store.clear_session_token(account_id):
            raise NotFound()
        self.action_log.append(
            ActionLogEntry(
                actor=account.user_id,
                action="logout",
                details="User logged out and session_token cleared",
            )
        )

    def authenticate(self, credential: str) -> Principal:
        """Resolve a signed credential to a principal.

        Raises
        ------
        InvalidCredentials:
            Signature, expiry or claim problems, or the account no longer exists.
        StaleSession:
            The session was cleared (logout) or, for students, superseded.
        """
        try:
            claims = verify_credential(credential, secret=self.secret)
        except CredentialVerificationError as exc:
            raise InvalidCredentials(exc.code) from exc

        account = self.store.get(claims.account_id)
        if account is None:
            raise InvalidCredentials("account_missing")
        if not account.session_token:
            raise StaleSession()
        if account.role == "student" and account.session_token != claims.session_token:
            raise StaleSession()
        return Principal(account_id=account.id, user_id=account.user_id, role=account.role, name=account.name)
