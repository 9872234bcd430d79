"""
Users (Directory) API routes: provisioning and admin maintenance.

Why:
    Admins create accounts one at a time or in bulk from an uploaded file, and
    maintain them afterwards. The provisioning pipeline and the directory
    service do the work; handlers check the role, translate errors and set
    private cache headers.

Permissions:
    Every endpoint here requires the `admin` role.
"""
from __future__ import annotations

from typing import Optional, Union
import asyncio
import logging
import sys as _sys

from fastapi import APIRouter, File, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from identity_access.errors import RosterError
from provisioning.parsers import extension_of


users_router = APIRouter(tags=["Users"])  # explicit paths below
logger = logging.getLogger("roster.web.users")

FieldValue = Optional[Union[str, int, float]]


def _main():
    return _sys.modules.get("web.main") or _sys.modules.get("main")


def _is_admin(user: dict | None) -> bool:
    return (user or {}).get("role") == "admin"


def _actor(request: Request) -> str:
    return ((getattr(request.state, "user", None) or {}).get("user_id")) or "system"


def _forbidden() -> JSONResponse:
    return _main().json_error(403, "forbidden", "Admin role required")


class IndividualRegistration(BaseModel):
    # Accept loose values and validate in the pipeline to return coded 400s
    model_config = ConfigDict(extra="ignore")

    name: FieldValue = None
    user_id: FieldValue = None
    roll_number: FieldValue = None
    password: Optional[str] = None
    role: Optional[str] = None
    batch: Optional[str] = None
    semester: FieldValue = None


class UserUpdate(BaseModel):
    # Allow-list: anything else in the payload (password, session_token, id) is dropped
    model_config = ConfigDict(extra="ignore")

    name: FieldValue = None
    user_id: FieldValue = None
    roll_number: FieldValue = None
    role: Optional[str] = None
    batch: Optional[str] = None
    semester: FieldValue = None


@users_router.post("/api/users/register/individual")
async def register_individual(request: Request, payload: IndividualRegistration):
    """Create one student or faculty account.

    Behavior:
        - 201 with the account summary
        - 400 missing_fields / invalid_role / invalid_batch / invalid_semester /
          duplicate_user_id / duplicate_roll_number
        - 500 persistence_failure
    """
    main = _main()
    if not _is_admin(getattr(request.state, "user", None)):
        return _forbidden()
    fields = payload.model_dump(exclude_none=True)
    try:
        summary = await asyncio.to_thread(main.PROVISIONING.register_individual, fields, _actor(request))
    except RosterError as exc:
        return main.error_response(exc)
    return JSONResponse(
        {"message": "User registered successfully", "user": summary},
        status_code=201,
        headers=main._private_no_store(),
    )


@users_router.post("/api/users/register/bulk")
async def register_bulk(request: Request, file: Optional[UploadFile] = File(None)):
    """Create accounts from an uploaded xlsx/xls/csv/json/pdf file.

    Behavior:
        - 207 with `created`, `errors` and counts; partial success is normal
          and committed records stay committed (`atomic: false`)
        - 400 no_file / unsupported_format / malformed_payload / no_valid_records
        - 413 payload_too_large
    """
    main = _main()
    if not _is_admin(getattr(request.state, "user", None)):
        return _forbidden()
    if file is None or not file.filename:
        return main.json_error(400, "no_file", "No file uploaded")

    limit = main.SETTINGS.max_upload_bytes
    data = await file.read(limit + 1)
    if len(data) > limit:
        return main.json_error(413, "payload_too_large", f"Upload exceeds {limit} bytes")

    extension = extension_of(file.filename)
    try:
        outcome = await asyncio.to_thread(main.PROVISIONING.register_bulk, data, extension, _actor(request))
    except RosterError as exc:
        logger.info("Bulk upload rejected: %s", exc.code)
        return main.error_response(exc)
    body = {"message": "File processed"}
    body.update(outcome.to_dict())
    return JSONResponse(body, status_code=207, headers=main._private_no_store())


@users_router.get("/api/users")
async def list_users(request: Request):
    """List all accounts (credential and session token excluded)."""
    main = _main()
    if not _is_admin(getattr(request.state, "user", None)):
        return _forbidden()
    try:
        items = await asyncio.to_thread(main.DIRECTORY.list_accounts)
    except RosterError as exc:
        return main.error_response(exc)
    return JSONResponse(items, headers=main._private_no_store())


@users_router.put("/api/users/{account_id}")
async def update_user(request: Request, account_id: str, payload: UserUpdate):
    """Update allow-listed fields of one account.

    Behavior:
        - 200 with the updated summary
        - 400 invalid_batch / invalid_role / invalid_semester / missing_fields /
          duplicate_user_id / duplicate_roll_number
        - 404 not_found
    """
    main = _main()
    if not _is_admin(getattr(request.state, "user", None)):
        return _forbidden()
    changes = payload.model_dump(mode="python", exclude_unset=True)
    try:
        summary = await asyncio.to_thread(
            lambda: main.DIRECTORY.update_account(account_id, changes, actor=_actor(request))
        )
    except RosterError as exc:
        return main.error_response(exc)
    return JSONResponse(summary, headers=main._private_no_store())


@users_router.delete("/api/users/{account_id}")
async def delete_user(request: Request, account_id: str):
    main = _main()
    if not _is_admin(getattr(request.state, "user", None)):
        return _forbidden()
    try:
        removed = await asyncio.to_thread(lambda: main.DIRECTORY.delete_account(account_id, actor=_actor(request)))
    except RosterError as exc:
        return main.error_response(exc)
    return JSONResponse(
        {"message": f"User {removed['user_id']} deleted successfully"},
        headers=main._private_no_store(),
    )
