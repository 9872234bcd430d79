"""
Identity domain constants and simple helpers.

Why:
- Centralize roles and batches to avoid drift between the provisioning
  pipeline, the CLI tools, and the web layer.
- Keep the update allow-list next to the roles it protects.
"""

from __future__ import annotations

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "faculty", "admin"})

# Admins are never provisioned through registration or bulk upload.
CREATABLE_ROLES = frozenset({"student", "faculty"})

# Order matters for error messages; membership checks use the tuple directly.
ALLOWED_BATCHES = ("N", "P", "Q")

DEFAULT_SEMESTER = 1

# Fields an admin may change through the update endpoint. Anything else in the
# payload (credential, session token, id) is ignored.
UPDATABLE_FIELDS = ("name", "user_id", "roll_number", "role", "batch", "semester")

SESSION_TTL_DAYS = 7

__all__ = [
    "ALLOWED_ROLES",
    "CREATABLE_ROLES",
    "ALLOWED_BATCHES",
    "DEFAULT_SEMESTER",
    "UPDATABLE_FIELDS",
    "SESSION_TTL_DAYS",
]
