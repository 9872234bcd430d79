"""
Authentication routes (router-only module): login and logout.

Why:
    Keep the credential exchange in a dedicated router. The session rules
    (single student session, stale credential detection) live in
    `identity_access.sessions.SessionAuthority`; this module only translates
    HTTP input and errors.

Notes:
    - This module resolves the active `main` module inside handlers to reuse
      the shared services, so tests that call `main.configure(...)` see their
      wiring here as well.
    - Unknown login identifiers and wrong passwords share one external error
      (`invalid_credentials`) to avoid identifier enumeration.
"""

from __future__ import annotations

from typing import Optional
import asyncio
import logging
import sys as _sys

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

from identity_access.errors import RosterError

try:
    from ..auth_utils import client_address, client_system_id
except ImportError:
    from auth_utils import client_address, client_system_id  # type: ignore


auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("roster.web.auth")


def _main():
    return _sys.modules.get("web.main") or _sys.modules.get("main")


class LoginPayload(BaseModel):
    user_id: str = ""
    password: str = ""
    system_id: Optional[str] = None

    @field_validator("user_id")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


@auth_router.post("/auth/login")
async def login(request: Request, payload: LoginPayload):
    """Exchange login identifier and password for a signed session credential.

    Behavior:
        - 200 with the account summary and `token`
        - 401 `invalid_credentials` for unknown ids and wrong passwords alike
        - 401 `concurrent_session_denied` when a student is already logged in
    """
    main = _main()
    peer = request.client.host if request.client else ""
    ip = client_address(request.headers, peer, trust_proxy=main.SETTINGS.trust_proxy)
    system_id = client_system_id(payload.system_id, request.headers)
    try:
        result = await asyncio.to_thread(
            main.SESSIONS.login, payload.user_id, payload.password, ip=ip, system_id=system_id
        )
    except RosterError as exc:
        return main.error_response(exc)
    body = dict(result.account)
    body["token"] = result.credential
    return JSONResponse(body, status_code=200, headers=main._private_no_store())


@auth_router.post("/auth/logout")
async def logout(request: Request):
    """Clear the caller's session token. Any authenticated role may call this.

    A vanished account normally fails authentication first (401); `404 not_found`
    only surfaces when the account is deleted after the middleware check.
    """
    main = _main()
    user = getattr(request.state, "user", None) or {}
    try:
        await asyncio.to_thread(main.SESSIONS.logout, user.get("id", ""))
    except RosterError as exc:
        return main.error_response(exc)
    return JSONResponse({"message": "Logged out successfully"}, headers=main._private_no_store())
