from __future__ import annotations

import logging
import os
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from identity_access.action_log import DBActionLog, InMemoryActionLog
from identity_access.credentials import BcryptComparator
from identity_access.directory import AccountDirectory
from identity_access.errors import InvalidCredentials, PersistenceFailure, RosterError, StaleSession
from identity_access.sessions import SessionAuthority
from identity_access.stores import Account, InMemoryAccountStore, new_account_id
from provisioning.commit import CommitEngine
from provisioning.service import ProvisioningService

try:
    from .auth_utils import bearer_token
except ImportError:
    from auth_utils import bearer_token

# Ensure both import paths reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("web.main", _sys.modules[__name__])
elif __name__ == "web.main":
    _sys.modules.setdefault("main", _sys.modules[__name__])


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via ROSTER_ENABLE_DOTENV (default true outside
      pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("ROSTER_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config).
# Support both "flat" (container) and package (repo test) layouts.
try:
    from . import config as _cfg
except ImportError:
    import config as _cfg  # type: ignore

_cfg.ensure_secure_config_on_startup()

# --- App & Wiring ----------------------------------------------------------------

logger = logging.getLogger("roster.web")

app = FastAPI(title="ROSTER", description="Institutional account provisioning and sessions", version="0.1.0")

SETTINGS = _cfg.load_settings()
STORE = None
ACTION_LOG = None
COMPARATOR = None
SESSIONS: SessionAuthority | None = None
DIRECTORY: AccountDirectory | None = None
PROVISIONING: ProvisioningService | None = None


def _build_stores(settings):
    if settings.store_backend == "db":
        from identity_access.stores_db import DBAccountStore

        return DBAccountStore(settings.database_url or None), DBActionLog(settings.database_url or None)
    return InMemoryAccountStore(), InMemoryActionLog()


def bootstrap_admin(store, comparator, *, user_id: str, password: str) -> None:
    """Create the initial admin account if it does not exist yet."""
    if not user_id or not password:
        return
    if store.find_by_user_id(user_id) is not None:
        return
    store.insert(
        Account(
            id=new_account_id(),
            name="Administrator",
            user_id=user_id,
            roll_number=f"admin-{user_id}",
            role="admin",
            password_hash=comparator.hash(password),
        )
    )
    logger.info("Bootstrap admin account created")


def configure(settings=None, *, store=None, action_log=None, comparator=None) -> None:
    """(Re)build the module-level services. Tests call this to get a fresh app state."""
    global SETTINGS, STORE, ACTION_LOG, COMPARATOR, SESSIONS, DIRECTORY, PROVISIONING
    SETTINGS = settings or _cfg.load_settings()
    if store is None or action_log is None:
        built_store, built_log = _build_stores(SETTINGS)
        store = store or built_store
        action_log = action_log or built_log
    STORE = store
    ACTION_LOG = action_log
    COMPARATOR = comparator or BcryptComparator(rounds=SETTINGS.bcrypt_rounds)
    SESSIONS = SessionAuthority(
        store=STORE,
        comparator=COMPARATOR,
        action_log=ACTION_LOG,
        secret=SETTINGS.session_secret,
        ttl_days=SETTINGS.session_ttl_days,
    )
    DIRECTORY = AccountDirectory(store=STORE, action_log=ACTION_LOG)
    PROVISIONING = ProvisioningService(CommitEngine(store=STORE, comparator=COMPARATOR, action_log=ACTION_LOG))
    bootstrap_admin(
        STORE,
        COMPARATOR,
        user_id=SETTINGS.bootstrap_admin_user_id,
        password=SETTINGS.bootstrap_admin_password,
    )


configure()

# --- Auth Helpers & Middleware --------------------------------------------------


def _private_no_store() -> dict:
    return {"Cache-Control": "private, no-store"}


def json_error(status_code: int, code: str, detail: str | None = None) -> JSONResponse:
    payload = {"error": code}
    if detail:
        payload["detail"] = detail
    return JSONResponse(payload, status_code=status_code, headers=_private_no_store())


def error_response(exc: RosterError) -> JSONResponse:
    return json_error(exc.status_code, exc.code, exc.message)


def _is_public_path(path: str) -> bool:
    return path in ("/auth/login", "/health", "/openapi.json", "/docs")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    credential = bearer_token(request.headers.get("authorization"))
    if not credential:
        return json_error(401, "unauthenticated", "Authentication required")
    try:
        principal = SESSIONS.authenticate(credential)
    except StaleSession as exc:
        return json_error(401, exc.code, exc.message)
    except InvalidCredentials:
        return json_error(401, "unauthenticated", "Authentication required")
    except PersistenceFailure as exc:
        logger.warning("Session lookup failed: %s", exc.code)
        return error_response(exc)

    # Expose minimal, read-only user context for downstream handlers.
    request.state.user = {
        "id": principal.account_id,
        "user_id": principal.user_id,
        "role": principal.role,
        "name": principal.name,
    }
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    # JSON-only API: nothing may be framed, sniffed or embedded.
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    # HSTS: always on (dev = prod)
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Routers ----------------------------------------------------------------------

try:
    from .routes.auth import auth_router
    from .routes.users import users_router
except ImportError:
    from routes.auth import auth_router  # type: ignore
    from routes.users import users_router  # type: ignore

app.include_router(auth_router)
app.include_router(users_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    # Security: include no-store to avoid caching any runtime status.
    return JSONResponse({"status": "healthy"}, headers=_private_no_store())


@app.get("/api/me")
async def get_me(request: Request):
    user = getattr(request.state, "user", None) or {}
    try:
        summary = DIRECTORY.get_summary(user.get("id", ""))
    except RosterError as exc:
        return error_response(exc)
    return JSONResponse(summary, headers=_private_no_store())
