"""
Signed session credentials for the identity_access bounded context.

Why: Keep the cryptographic envelope (signing, expiry) outside the web adapter
so we can unit test it independently. Whether the embedded session token is
still current is a separate question answered by `sessions.SessionAuthority`.

Security: Credentials are HS256 JWTs signed with the server secret. Only HS256
is accepted on decode; expiry is checked with a small clock-skew allowance.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict
import time

from jose import jwt
from jose.exceptions import JOSEError

from .domain import SESSION_TTL_DAYS

ALGORITHM = "HS256"
MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers
DEFAULT_TTL_SECONDS = SESSION_TTL_DAYS * 24 * 3600


class CredentialVerificationError(Exception):
    """Raised when a session credential fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class SessionClaims:
    account_id: str
    user_id: str
    role: str
    session_token: str
    issued_at: int
    expires_at: int


def issue_credential(
    *,
    account_id: str,
    user_id: str,
    role: str,
    session_token: str,
    secret: str,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    now: float | None = None,
) -> str:
    """Sign a credential carrying the account identity and its session token."""
    if not secret:
        raise ValueError("signing secret must not be empty")
    issued = int(now if now is not None else time.time())
    claims = {
        "sub": account_id,
        "user_id": user_id,
        "role": role,
        "session_token": session_token,
        "iat": issued,
        "exp": issued + int(ttl_seconds),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_credential(credential: str, *, secret: str) -> SessionClaims:
    """Validate signature and expiry and return the embedded claims.

    Raises
    ------
    CredentialVerificationError:
        `invalid_credential` for bad signatures or malformed tokens,
        `expired_credential` when the fixed expiry has passed,
        `missing_claims` when required claims are absent.
    """
    if not credential or not secret:
        raise CredentialVerificationError("invalid_credential")
    try:
        claims = jwt.decode(
            credential,
            secret,
            algorithms=[ALGORITHM],
            options={
                "verify_signature": True,
                "verify_aud": False,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except JOSEError as exc:
        raise CredentialVerificationError("invalid_credential") from exc

    _validate_temporal_claims(claims)

    try:
        return SessionClaims(
            account_id=str(claims["sub"]),
            user_id=str(claims["user_id"]),
            role=str(claims["role"]),
            session_token=str(claims["session_token"]),
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise CredentialVerificationError("missing_claims") from exc


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise CredentialVerificationError("invalid_credential")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise CredentialVerificationError("expired_credential")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise CredentialVerificationError("invalid_credential")
