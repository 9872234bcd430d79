"""
Shared request helpers for authentication routes and middleware.

Why:
    Avoid duplicating header parsing between the middleware (bearer credential)
    and the login route (client address, system id for the action log).

Design:
    The helpers are framework-light and pure: they read a headers mapping and
    return plain strings. Callers decide whether proxy headers are trusted.
"""

from __future__ import annotations

from typing import Mapping, Optional


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the credential from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    value = value.strip()
    return value or None


def client_address(headers: Mapping[str, str], peer: Optional[str], *, trust_proxy: bool) -> str:
    """Originating network address for audit entries.

    Uses the first `X-Forwarded-For` hop only when proxy headers are trusted;
    otherwise the socket peer. Lookup failure yields an empty string.
    """
    if trust_proxy:
        forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return peer or ""


def client_system_id(body_value: Optional[str], headers: Mapping[str, str]) -> str:
    """Client identifier: explicit body value, else User-Agent, else `unknown`."""
    if isinstance(body_value, str) and body_value.strip():
        return body_value.strip()
    return headers.get("user-agent") or "unknown"
