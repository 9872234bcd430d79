"""
In-memory account directory for development and tests.

Why: The provisioning pipeline and the session authority only need a keyed
store with two uniqueness constraints and an atomic session-token update. This
module defines that contract (`AccountStore`) and a process-local
implementation. For production, use the Postgres-backed store in `stores_db`.

Security: Accounts carry only an opaque credential hash. Summaries returned to
callers never include the hash or the session token.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Protocol
import threading
import uuid

from .domain import ALLOWED_BATCHES, ALLOWED_ROLES, UPDATABLE_FIELDS
from .errors import DuplicateAccountError, PersistenceFailure


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Account:
    id: str
    name: str
    user_id: str
    roll_number: str
    role: str
    password_hash: str
    batch: Optional[str] = None
    semester: Optional[int] = None
    session_token: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)


def new_account_id() -> str:
    return uuid.uuid4().hex


def account_summary(account: Account) -> dict:
    """Return the public view of an account (no credential, no session token)."""
    out = {
        "id": account.id,
        "name": account.name,
        "user_id": account.user_id,
        "roll_number": account.roll_number,
        "role": account.role,
    }
    if account.role == "student":
        out["batch"] = account.batch
        out["semester"] = account.semester
    return out


class AccountStore(Protocol):
    def get(self, account_id: str) -> Optional[Account]:
        ...

    def find_by_user_id(self, user_id: str) -> Optional[Account]:
        ...

    def find_conflict(self, *, user_id: str, roll_number: str) -> Optional[Account]:
        ...

    def insert(self, account: Account) -> Account:
        ...

    def list_accounts(self) -> List[Account]:
        ...

    def update_fields(self, account_id: str, changes: Mapping[str, object]) -> Optional[Account]:
        ...

    def delete(self, account_id: str) -> Optional[Account]:
        ...

    def compare_and_set_session_token(self, account_id: str, *, expected: Optional[str], new: Optional[str]) -> bool:
        ...

    def clear_session_token(self, account_id: str) -> bool:
        ...


def check_constraints(account: Account) -> None:
    """Storage-level column constraints shared by the in-memory store.

    Mirrors the check constraints of `sql/schema.sql` so both backends reject
    the same rows. Raises PersistenceFailure on violation.
    """
    if account.role not in ALLOWED_ROLES:
        raise PersistenceFailure(f"role violates constraint: {account.role!r}")
    if account.batch is not None and account.batch not in ALLOWED_BATCHES:
        raise PersistenceFailure(f"batch violates constraint: {account.batch!r}")
    if account.semester is not None:
        if isinstance(account.semester, bool) or not isinstance(account.semester, int) or account.semester < 1:
            raise PersistenceFailure(f"semester violates constraint: {account.semester!r}")


class InMemoryAccountStore:
    """Process-local AccountStore guarded by a single lock.

    Each public method is one atomic unit. There is no multi-call transaction;
    callers that need check-then-write semantics rely on `insert` re-checking
    uniqueness and on `compare_and_set_session_token`.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Account] = {}
        self._lock = threading.RLock()

    def get(self, account_id: str) -> Optional[Account]:
        with self._lock:
            acc = self._data.get(account_id)
            return replace(acc) if acc else None

    def find_by_user_id(self, user_id: str) -> Optional[Account]:
        with self._lock:
            for acc in self._data.values():
                if acc.user_id == user_id:
                    return replace(acc)
        return None

    def find_conflict(self, *, user_id: str, roll_number: str) -> Optional[Account]:
        with self._lock:
            for acc in self._data.values():
                if acc.user_id == user_id or acc.roll_number == roll_number:
                    return replace(acc)
        return None

    def _collision_field(self, account: Account, *, ignore_id: str | None = None) -> Optional[str]:
        for other in self._data.values():
            if other.id == ignore_id:
                continue
            if other.user_id == account.user_id:
                return "user_id"
            if other.roll_number == account.roll_number:
                return "roll_number"
        return None

    def insert(self, account: Account) -> Account:
        check_constraints(account)
        with self._lock:
            if account.id in self._data:
                raise PersistenceFailure(f"duplicate primary key {account.id}")
            collided = self._collision_field(account)
            if collided:
                raise DuplicateAccountError(collided)
            self._data[account.id] = replace(account)
            return replace(account)

    def list_accounts(self) -> List[Account]:
        with self._lock:
            return [replace(acc) for acc in sorted(self._data.values(), key=lambda a: a.created_at)]

    def update_fields(self, account_id: str, changes: Mapping[str, object]) -> Optional[Account]:
        with self._lock:
            current = self._data.get(account_id)
            if current is None:
                return None
            updated = replace(current, **{k: v for k, v in changes.items() if k in UPDATABLE_FIELDS})
            check_constraints(updated)
            collided = self._collision_field(updated, ignore_id=account_id)
            if collided:
                raise DuplicateAccountError(collided)
            self._data[account_id] = updated
            return replace(updated)

    def delete(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self._data.pop(account_id, None)

    def compare_and_set_session_token(self, account_id: str, *, expected: Optional[str], new: Optional[str]) -> bool:
        """Set `session_token` to `new` only if it currently equals `expected`.

        Returns False when the account is missing or the token changed since
        the caller read it.
        """
        with self._lock:
            acc = self._data.get(account_id)
            if acc is None or acc.session_token != expected:
                return False
            acc.session_token = new
            return True

    def clear_session_token(self, account_id: str) -> bool:
        """Unconditionally clear the session token; False if the account is gone."""
        with self._lock:
            acc = self._data.get(account_id)
            if acc is None:
                return False
            acc.session_token = None
            return True
