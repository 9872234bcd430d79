"""
Credential hashing behind a small capability interface.

The provisioning and session code only call `hash` and `verify`; which
algorithm backs them is a wiring decision.
"""
from __future__ import annotations

from typing import Protocol

import bcrypt


class CredentialComparator(Protocol):
    def hash(self, secret: str) -> str:
        ...

    def verify(self, secret: str, hashed: str) -> bool:
        ...


class BcryptComparator:
    """bcrypt-backed comparator. `rounds` is lowered in tests for speed."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, secret: str) -> str:
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, hashed: str) -> bool:
        if not secret or not hashed:
            return False
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed stored hash: treat as a mismatch, never as a crash.
            return False
