"""
Record validation and normalization.

`normalize_record` is pure: it performs no directory lookups and has no side
effects. Rules are applied in order and the first failure wins:

1. name, user_id, roll_number, password, role present and non-empty
2. role normalizes to `student` or `faculty`
3. students: a present batch must be one of ALLOWED_BATCHES
4. semester is carried through (range checks belong to the store);
   students default to semester 1, faculty never carry batch/semester
"""
from __future__ import annotations

from typing import Any, Mapping, Union

from identity_access.domain import ALLOWED_BATCHES, CREATABLE_ROLES, DEFAULT_SEMESTER

from .records import CreationRequest, RawRecord, Rejection

REQUIRED_FIELDS = ("name", "user_id", "roll_number", "password", "role")


def coerce_text(value: Any) -> str:
    """String view of a cell value; whole floats from spreadsheets lose `.0`."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def coerce_semester(value: Any) -> object:
    """Return an int for digit strings and whole numbers, else the raw value.

    Non-numeric input is passed through unchanged so the store's constraint
    rejects it as a persistence failure for that record only.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _key(fields: Mapping[str, Any], position: int) -> str:
    user_id = coerce_text(fields.get("user_id"))
    return user_id or f"row {position}"


def normalize_fields(fields: Mapping[str, Any], *, position: int = 0) -> Union[CreationRequest, Rejection]:
    key = _key(fields, position)
    values = {name: coerce_text(fields.get(name)) for name in REQUIRED_FIELDS}

    missing = [name for name in REQUIRED_FIELDS if not values[name]]
    if missing:
        return Rejection(key, "missing_fields", "Invalid or missing fields: " + ", ".join(missing), position)

    role = values["role"].lower()
    if role not in CREATABLE_ROLES:
        return Rejection(key, "invalid_role", "Invalid role", position)

    batch = None
    semester = None
    if role == "student":
        raw_batch = coerce_text(fields.get("batch"))
        if raw_batch:
            batch = raw_batch.upper()
            if batch not in ALLOWED_BATCHES:
                return Rejection(key, "invalid_batch", "Invalid batch", position)
        raw_semester = fields.get("semester")
        semester = DEFAULT_SEMESTER if raw_semester is None or coerce_text(raw_semester) == "" else coerce_semester(raw_semester)

    raw_password = fields.get("password")
    return CreationRequest(
        name=values["name"],
        user_id=values["user_id"],
        roll_number=values["roll_number"],
        # Secrets keep surrounding whitespace; only presence is checked stripped.
        password=raw_password if isinstance(raw_password, str) else values["password"],
        role=role,
        batch=batch,
        semester=semester,
        position=position,
    )


def normalize_record(raw: RawRecord) -> Union[CreationRequest, Rejection]:
    return normalize_fields(raw.fields, position=raw.position)
