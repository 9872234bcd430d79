"""
Directory commit engine.

Why:
    Bulk uploads must never be all-or-nothing. Each normalized request is its
    own atomic check-then-write; a failure only produces a rejection for that
    record and processing continues with the next one, strictly in input order.

Uniqueness:
    A request collides when its `user_id` or `roll_number` matches either an
    account already in the store or a record committed earlier in the same
    batch. The first record in input order wins. A uniqueness race lost at
    insert time (`DuplicateAccountError`) is reported the same way.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Set, Union
import logging

from identity_access.action_log import ActionLogEntry, ActionLogger
from identity_access.credentials import CredentialComparator
from identity_access.errors import (
    DuplicateAccountError,
    InvalidBatch,
    InvalidRole,
    InvalidSemester,
    MissingFields,
    PersistenceFailure,
    duplicate_error_for,
)
from identity_access.stores import Account, AccountStore, account_summary, new_account_id

from .records import CreationRequest, ProvisioningOutcome, Rejection
from .validation import normalize_fields

logger = logging.getLogger("roster.provisioning")

_VALIDATION_ERRORS = {
    "missing_fields": MissingFields,
    "invalid_role": InvalidRole,
    "invalid_batch": InvalidBatch,
}


@dataclass
class _BatchState:
    user_ids: Set[str] = field(default_factory=set)
    roll_numbers: Set[str] = field(default_factory=set)


def _duplicate_rejection(request: CreationRequest, collided: str) -> Rejection:
    err = duplicate_error_for(collided)
    message = "User already exists" if collided == "user_id" else "Roll number already exists"
    return Rejection(request.user_id, err.code, message, request.position)


def creation_details(account: Account, *, prefix: str) -> str:
    """Audit text, e.g. `Bulk created user jdoe (student) assigned to batch N, semester 1`."""
    details = f"{prefix} user {account.user_id} ({account.role})"
    if account.batch:
        details += f" assigned to batch {account.batch}"
    if account.semester:
        details += f", semester {account.semester}"
    return details


class CommitEngine:
    def __init__(self, *, store: AccountStore, comparator: CredentialComparator, action_log: ActionLogger) -> None:
        self.store = store
        self.comparator = comparator
        self.action_log = action_log

    def _collision(self, request: CreationRequest, batch: _BatchState) -> str | None:
        if request.user_id in batch.user_ids:
            return "user_id"
        if request.roll_number in batch.roll_numbers:
            return "roll_number"
        existing = self.store.find_conflict(user_id=request.user_id, roll_number=request.roll_number)
        if existing is None:
            return None
        return "user_id" if existing.user_id == request.user_id else "roll_number"

    def _commit_one(self, request: CreationRequest, actor: str, batch: _BatchState, *, prefix: str) -> Union[dict, Rejection]:
        collided = self._collision(request, batch)
        if collided:
            return _duplicate_rejection(request, collided)
        try:
            password_hash = self.comparator.hash(request.password)
        except ValueError:
            return Rejection(request.user_id, PersistenceFailure.code, "Credential could not be stored", request.position)
        account = Account(
            id=new_account_id(),
            name=request.name,
            user_id=request.user_id,
            roll_number=request.roll_number,
            role=request.role,
            password_hash=password_hash,
            batch=request.batch,
            semester=request.semester,
        )
        try:
            stored = self.store.insert(account)
        except DuplicateAccountError as exc:
            return _duplicate_rejection(request, exc.field)
        except PersistenceFailure as exc:
            logger.warning("Record at position %d not stored: %s", request.position, exc.code)
            return Rejection(request.user_id, exc.code, "Error registering user", request.position)

        batch.user_ids.add(stored.user_id)
        batch.roll_numbers.add(stored.roll_number)
        try:
            self.action_log.append(
                ActionLogEntry(actor=actor, action="create_user", details=creation_details(stored, prefix=prefix))
            )
        except PersistenceFailure:
            # The account exists; the outcome must still report it as created.
            logger.warning("Audit entry for position %d was not written", request.position)
        return account_summary(stored)

    def commit(self, items: Iterable[Union[CreationRequest, Rejection]], actor: str) -> ProvisioningOutcome:
        """Commit requests in input order; rejections pass straight through."""
        outcome = ProvisioningOutcome()
        batch = _BatchState()
        for item in items:
            outcome.received += 1
            if isinstance(item, Rejection):
                outcome.errors.append(item)
                continue
            result = self._commit_one(item, actor, batch, prefix="Bulk created")
            if isinstance(result, Rejection):
                outcome.errors.append(result)
            else:
                outcome.created.append(result)
        logger.info(
            "Bulk commit finished received=%d created=%d rejected=%d",
            outcome.received,
            len(outcome.created),
            len(outcome.errors),
        )
        return outcome

    def register_individual(self, fields: Mapping[str, object], actor: str) -> dict:
        """Normalize and commit one record; raises instead of returning a partial outcome."""
        normalized = normalize_fields(fields, position=1)
        if isinstance(normalized, Rejection):
            raise _VALIDATION_ERRORS[normalized.code](normalized.message)
        semester = normalized.semester
        if semester is not None and (isinstance(semester, bool) or not isinstance(semester, int) or semester < 1):
            raise InvalidSemester("Semester must be a positive integer")

        result = self._commit_one(normalized, actor, _BatchState(), prefix="Created")
        if isinstance(result, Rejection):
            if result.code in ("duplicate_user_id", "duplicate_roll_number"):
                field_name = "user_id" if result.code == "duplicate_user_id" else "roll_number"
                raise duplicate_error_for(field_name, normalized.user_id if field_name == "user_id" else normalized.roll_number)
            raise PersistenceFailure(result.message)
        return result
