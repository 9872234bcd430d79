"""
Directory invariants: uniqueness after any sequence of creations and updates,
and the update allow-list / role normalization rules.
"""
from __future__ import annotations

import pytest

from identity_access.action_log import InMemoryActionLog
from identity_access.directory import AccountDirectory, clean_changes
from identity_access.errors import (
    DuplicateLoginId,
    DuplicateRollNumber,
    InvalidBatch,
    InvalidRole,
    InvalidSemester,
    MissingFields,
    NotFound,
)
from identity_access.stores import Account, InMemoryAccountStore


@pytest.fixture
def store():
    s = InMemoryAccountStore()
    s.insert(Account(id="a", name="A", user_id="ua", roll_number="R1", role="student", password_hash="h", semester=1))
    s.insert(Account(id="b", name="B", user_id="ub", roll_number="R2", role="faculty", password_hash="h"))
    return s


@pytest.fixture
def directory(store):
    return AccountDirectory(store=store, action_log=InMemoryActionLog())


def _assert_unique(store):
    accounts = store.list_accounts()
    assert len({a.user_id for a in accounts}) == len(accounts)
    assert len({a.roll_number for a in accounts}) == len(accounts)


def test_update_cannot_create_duplicates(directory, store):
    with pytest.raises(DuplicateLoginId):
        directory.update_account("b", {"user_id": "ua"}, actor="admin")
    with pytest.raises(DuplicateRollNumber):
        directory.update_account("b", {"roll_number": "R1"}, actor="admin")
    _assert_unique(store)


def test_renaming_to_own_values_is_allowed(directory):
    summary = directory.update_account("a", {"user_id": "ua", "roll_number": "R1", "name": "A2"}, actor="admin")

    assert summary["name"] == "A2"


def test_direct_insert_collision_is_rejected(store):
    from identity_access.errors import DuplicateAccountError

    with pytest.raises(DuplicateAccountError):
        store.insert(Account(id="c", name="C", user_id="UC", roll_number="R2", role="faculty", password_hash="h"))
    _assert_unique(store)


def test_update_missing_and_delete_missing(directory):
    with pytest.raises(NotFound):
        directory.update_account("zzz", {"name": "x"}, actor="admin")
    with pytest.raises(NotFound):
        directory.delete_account("zzz", actor="admin")


def test_get_summary_hides_credentials(directory):
    summary = directory.get_summary("a")

    assert summary == {"id": "a", "name": "A", "user_id": "ua", "roll_number": "R1", "role": "student", "batch": None, "semester": 1}


def test_clean_changes_drops_unknown_fields():
    cleaned = clean_changes({"password_hash": "x", "session_token": "y", "id": "z", "name": " N "}, current_role="student")

    assert cleaned == {"name": "N"}


@pytest.mark.parametrize(
    "changes, error",
    [
        ({"name": "  "}, MissingFields),
        ({"user_id": None}, MissingFields),
        ({"role": "superuser"}, InvalidRole),
        ({"batch": "Z"}, InvalidBatch),
        ({"semester": 0}, InvalidSemester),
        ({"semester": "two"}, InvalidSemester),
        ({"semester": True}, InvalidSemester),
    ],
)
def test_clean_changes_validation(changes, error):
    with pytest.raises(error):
        clean_changes(changes, current_role="student")


def test_student_batch_and_semester_normalized():
    assert clean_changes({"batch": "q", "semester": "5"}, current_role="student") == {"batch": "Q", "semester": 5}
    assert clean_changes({"batch": ""}, current_role="student") == {"batch": None}


def test_role_change_to_faculty_clears_student_fields():
    assert clean_changes({"role": "Faculty"}, current_role="student") == {"role": "faculty", "batch": None, "semester": None}


def test_faculty_batch_change_is_neutralized():
    assert clean_changes({"batch": "N"}, current_role="faculty") == {"batch": None, "semester": None}


def test_role_change_to_student_assigns_default_semester():
    assert clean_changes({"role": "student"}, current_role="faculty") == {"role": "student", "semester": 1}
    assert clean_changes({"role": "student", "semester": 3}, current_role="faculty")["semester"] == 3
