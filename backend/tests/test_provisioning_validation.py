"""
Record validator and normalizer.

Rules are applied in order (missing fields, role, batch, semester); the
function is pure and performs no directory lookups.
"""
from __future__ import annotations

import pytest

from provisioning.records import CreationRequest, RawRecord, Rejection
from provisioning.validation import normalize_fields, normalize_record


def _fields(**overrides):
    base = {"name": "Jane Doe", "user_id": "jdoe01", "roll_number": "R001", "password": "pass123", "role": "student"}
    base.update(overrides)
    return base


def test_student_defaults_to_semester_one_and_no_batch():
    req = normalize_fields(_fields())

    assert isinstance(req, CreationRequest)
    assert req.role == "student"
    assert req.batch is None
    assert req.semester == 1


@pytest.mark.parametrize("missing", ["name", "user_id", "roll_number", "password", "role"])
def test_missing_or_blank_required_field(missing):
    fields = _fields()
    fields[missing] = "   "

    rej = normalize_fields(fields, position=7)

    assert isinstance(rej, Rejection)
    assert rej.code == "missing_fields"
    assert rej.position == 7


def test_rejection_key_falls_back_to_row_number():
    rej = normalize_fields(_fields(user_id=None), position=4)

    assert rej.key == "row 4"


def test_missing_fields_checked_before_role():
    rej = normalize_fields(_fields(role="admin", name=""))

    assert rej.code == "missing_fields"


@pytest.mark.parametrize("role", ["admin", "lecturer", "stud"])
def test_invalid_role(role):
    assert normalize_fields(_fields(role=role)).code == "invalid_role"


def test_role_is_case_normalized():
    assert normalize_fields(_fields(role=" Faculty ")).role == "faculty"


def test_batch_is_uppercased_and_checked():
    assert normalize_fields(_fields(batch=" p ")).batch == "P"
    assert normalize_fields(_fields(batch="Z")).code == "invalid_batch"


def test_faculty_never_carries_batch_or_semester():
    req = normalize_fields(_fields(role="faculty", batch="Z", semester=3))

    assert isinstance(req, CreationRequest)
    assert req.batch is None and req.semester is None


def test_semester_coercion_and_passthrough():
    assert normalize_fields(_fields(semester="3")).semester == 3
    assert normalize_fields(_fields(semester=4.0)).semester == 4
    # Non-numeric values are carried raw; the store rejects them later.
    assert normalize_fields(_fields(semester="third")).semester == "third"


def test_numeric_identifiers_are_stringified():
    req = normalize_fields(_fields(user_id=5001, roll_number=1001.0))

    assert req.user_id == "5001"
    assert req.roll_number == "1001"


def test_normalize_record_uses_record_position():
    raw = RawRecord(source="csv", position=12, fields=_fields(role="x"))

    assert normalize_record(raw).position == 12


def test_password_not_in_repr():
    req = normalize_fields(_fields(password="very-secret"))

    assert "very-secret" not in repr(req)
