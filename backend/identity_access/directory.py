"""
Account directory administration (list, update, delete).

Why:
    Admins maintain accounts after provisioning. The update path is the one
    place where a payload could smuggle in fields that belong to other parts
    of the system (credential hash, session token, id). Only the allow-listed
    `UPDATABLE_FIELDS` ever reach the store.

Security:
    - Summaries never include the credential hash or session token.
    - Every successful mutation appends an action-log entry.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping
import logging

from .action_log import ActionLogEntry, ActionLogger
from .domain import ALLOWED_BATCHES, ALLOWED_ROLES, DEFAULT_SEMESTER, UPDATABLE_FIELDS
from .errors import (
    DuplicateAccountError,
    InvalidBatch,
    InvalidRole,
    InvalidSemester,
    MissingFields,
    NotFound,
    duplicate_error_for,
)
from .stores import AccountStore, account_summary

logger = logging.getLogger("roster.identity_access")

_TEXT_FIELDS = ("name", "user_id", "roll_number")


def _positive_int(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidSemester("Semester must be a positive integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 1:
        raise InvalidSemester("Semester must be a positive integer")
    return value


def clean_changes(changes: Mapping[str, Any], *, current_role: str) -> Dict[str, Any]:
    """Filter to the allow-list and validate each remaining field.

    Role changes away from `student` clear batch and semester; a change to
    `student` without a semester assigns the default.
    """
    cleaned: Dict[str, Any] = {}
    for key in UPDATABLE_FIELDS:
        if key not in changes:
            continue
        value = changes[key]
        if key in _TEXT_FIELDS:
            text = "" if value is None else str(value).strip()
            if not text:
                raise MissingFields(f"{key} must not be empty")
            cleaned[key] = text
        elif key == "role":
            role = str(value or "").strip().lower()
            if role not in ALLOWED_ROLES:
                raise InvalidRole("Invalid role")
            cleaned[key] = role
        elif key == "batch":
            batch = "" if value is None else str(value).strip().upper()
            if batch and batch not in ALLOWED_BATCHES:
                raise InvalidBatch("Invalid batch")
            cleaned[key] = batch or None
        elif key == "semester":
            cleaned[key] = None if value is None or value == "" else _positive_int(value)

    role = cleaned.get("role", current_role)
    if role != "student":
        if "batch" in cleaned or "semester" in cleaned or "role" in cleaned:
            cleaned["batch"] = None
            cleaned["semester"] = None
    elif current_role != "student" and cleaned.get("semester") is None:
        cleaned["semester"] = DEFAULT_SEMESTER
    return cleaned


class AccountDirectory:
    def __init__(self, *, store: AccountStore, action_log: ActionLogger) -> None:
        self.store = store
        self.action_log = action_log

    def list_accounts(self) -> List[dict]:
        return [account_summary(a) for a in self.store.list_accounts()]

    def get_summary(self, account_id: str) -> dict:
        account = self.store.get(account_id)
        if account is None:
            raise NotFound()
        return account_summary(account)

    def update_account(self, account_id: str, changes: Mapping[str, Any], *, actor: str) -> dict:
        current = self.store.get(account_id)
        if current is None:
            raise NotFound()
        cleaned = clean_changes(changes, current_role=current.role)
        try:
            updated = self.store.update_fields(account_id, cleaned)
        except DuplicateAccountError as exc:
            raise duplicate_error_for(exc.field, cleaned.get(exc.field)) from exc
        if updated is None:
            raise NotFound()
        self.action_log.append(
            ActionLogEntry(actor=actor, action="update_user", details=f"Updated user {updated.user_id} ({updated.role})")
        )
        return account_summary(updated)

    def delete_account(self, account_id: str, *, actor: str) -> dict:
        removed = self.store.delete(account_id)
        if removed is None:
            raise NotFound()
        self.action_log.append(
            ActionLogEntry(actor=actor, action="delete_user", details=f"Deleted user with ID {removed.user_id}")
        )
        logger.info("Account deleted id=%s", removed.id)
        return account_summary(removed)
