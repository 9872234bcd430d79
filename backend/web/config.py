"""
Configuration and startup security checks for ROSTER.

Why: An account directory with password logins must not be deployed with a
guessable signing key or a throwaway in-memory store. This module reads the
environment once into a `Settings` value and provides a single guard that
enforces minimal production safety constraints without burdening local
development.

Permissions: The caller needs no special privileges. The functions simply read
environment variables; the guard raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

from dataclasses import dataclass
import os

DEV_SESSION_SECRET = "dev-only-change-me"
MIN_SECRET_LENGTH = 32
DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes")


def _int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"Refusing to start: {name} must be an integer (got {raw!r}).")
    if value <= 0:
        raise SystemExit(f"Refusing to start: {name} must be positive.")
    return value


@dataclass(frozen=True)
class Settings:
    environment: str
    session_secret: str
    session_ttl_days: int
    store_backend: str
    database_url: str
    trust_proxy: bool
    max_upload_bytes: int
    bcrypt_rounds: int
    bootstrap_admin_user_id: str
    bootstrap_admin_password: str

    @property
    def is_prod_like(self) -> bool:
        return _is_prod_like(self.environment)


def load_settings() -> Settings:
    """Read ROSTER_* variables (and DATABASE_URL) into a frozen Settings value."""
    return Settings(
        environment=(os.getenv("ROSTER_ENV", "dev") or "dev").strip().lower(),
        session_secret=(os.getenv("ROSTER_SESSION_SECRET") or DEV_SESSION_SECRET).strip(),
        session_ttl_days=_int("ROSTER_SESSION_TTL_DAYS", 7),
        store_backend=(os.getenv("ROSTER_STORE_BACKEND", "memory") or "memory").strip().lower(),
        database_url=os.getenv("DATABASE_URL", "") or "",
        trust_proxy=_flag("ROSTER_TRUST_PROXY"),
        max_upload_bytes=_int("ROSTER_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        bcrypt_rounds=_int("ROSTER_BCRYPT_ROUNDS", 12),
        bootstrap_admin_user_id=(os.getenv("ROSTER_BOOTSTRAP_ADMIN_USER_ID") or "").strip(),
        bootstrap_admin_password=os.getenv("ROSTER_BOOTSTRAP_ADMIN_PASSWORD") or "",
    )


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - ROSTER_SESSION_SECRET must be set, not a placeholder, and long enough.
    - ROSTER_STORE_BACKEND must be `db` (the in-memory store loses accounts).
    - DATABASE_URL must be set and must not explicitly disable TLS.
    """

    env = os.getenv("ROSTER_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Signing secret for session credentials
    secret = (os.getenv("ROSTER_SESSION_SECRET", "") or "").strip()
    if not secret or secret == DEV_SESSION_SECRET or secret.upper().startswith("CHANGE_ME"):
        raise SystemExit(
            "Refusing to start: ROSTER_SESSION_SECRET is unset or a placeholder in production."
        )
    if len(secret) < MIN_SECRET_LENGTH:
        raise SystemExit(
            f"Refusing to start: ROSTER_SESSION_SECRET must be at least {MIN_SECRET_LENGTH} characters in production."
        )

    # 2) Durable directory
    backend = (os.getenv("ROSTER_STORE_BACKEND", "memory") or "").strip().lower()
    if backend != "db":
        raise SystemExit(
            "Refusing to start: ROSTER_STORE_BACKEND=db is mandatory in production/staging."
        )

    # 3) Postgres TLS: basic guard to avoid explicit disable
    dsn = os.getenv("DATABASE_URL", "")
    if not dsn:
        raise SystemExit("Refusing to start: DATABASE_URL must be set in production.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )
