"""
Error taxonomy shared by provisioning and session handling.

Each error carries a short, stable `code` (like token verification errors do)
so the web adapter can map it to a status and payload without string matching.
"""
from __future__ import annotations


class RosterError(Exception):
    """Base class for domain errors with a stable machine-readable code."""

    code = "roster_error"
    status_code = 500

    def __init__(self, message: str | None = None, *, code: str | None = None):
        super().__init__(message or self.__class__.__name__)
        if code:
            self.code = code
        self.message = message or self.code


# --- Record validation --------------------------------------------------------


class ValidationError(RosterError):
    code = "validation_error"
    status_code = 400


class MissingFields(ValidationError):
    code = "missing_fields"


class InvalidRole(ValidationError):
    code = "invalid_role"


class InvalidBatch(ValidationError):
    code = "invalid_batch"


class InvalidSemester(ValidationError):
    code = "invalid_semester"


# --- Uniqueness ---------------------------------------------------------------


class DuplicateError(RosterError):
    code = "duplicate"
    status_code = 400


class DuplicateLoginId(DuplicateError):
    code = "duplicate_user_id"


class DuplicateRollNumber(DuplicateError):
    code = "duplicate_roll_number"


class DuplicateAccountError(Exception):
    """Raised by stores when a uniqueness constraint rejects a write.

    `field` names the colliding attribute (`user_id` or `roll_number`).
    """

    def __init__(self, field: str):
        super().__init__(field)
        self.field = field


def duplicate_error_for(field: str, value: object | None = None) -> DuplicateError:
    if field == "roll_number":
        return DuplicateRollNumber(f"Roll number already exists: {value}" if value is not None else "Roll number already exists")
    return DuplicateLoginId(f"User already exists: {value}" if value is not None else "User already exists")


# --- Container-level upload failures -----------------------------------------


class UnsupportedFormat(RosterError):
    code = "unsupported_format"
    status_code = 400


class MalformedPayload(RosterError):
    code = "malformed_payload"
    status_code = 400


class NoValidRecords(RosterError):
    code = "no_valid_records"
    status_code = 400


# --- Authentication -----------------------------------------------------------


class InvalidCredentials(RosterError):
    """Login rejected.

    `reason` distinguishes unknown identifiers from wrong secrets for the
    action log only; the external message is identical for both.
    """

    code = "invalid_credentials"
    status_code = 401

    def __init__(self, reason: str = "invalid_credentials"):
        super().__init__("Invalid user_id or password")
        self.reason = reason


class ConcurrentSessionDenied(RosterError):
    code = "concurrent_session_denied"
    status_code = 401

    def __init__(self, message: str | None = None):
        super().__init__(message or "Student is already logged in elsewhere. Please logout first.")


class StaleSession(RosterError):
    code = "stale_session"
    status_code = 401

    def __init__(self, message: str | None = None):
        super().__init__(message or "Session is no longer active")


# --- Directory ----------------------------------------------------------------


class NotFound(RosterError):
    code = "not_found"
    status_code = 404

    def __init__(self, message: str | None = None):
        super().__init__(message or "User not found")


class PersistenceFailure(RosterError):
    code = "persistence_failure"
    status_code = 500
