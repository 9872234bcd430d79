"""
Append-only action log (audit trail) sinks.

Why: Provisioning and session handling must record who did what, but they do
not own the audit storage. They depend on the `ActionLogger` capability only;
the web layer decides which sink to wire (memory for dev/tests, Postgres in
production).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol
import logging
import threading

import psycopg
from psycopg import sql

from .errors import PersistenceFailure
from .stores_db import resolve_dsn, split_table

logger = logging.getLogger("roster.identity_access")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ActionLogEntry:
    actor: str
    action: str
    details: str
    ip: Optional[str] = None
    system_id: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)


class ActionLogger(Protocol):
    def append(self, entry: ActionLogEntry) -> None:
        ...


class InMemoryActionLog:
    """Process-local sink; keeps entries in insertion order."""

    def __init__(self) -> None:
        self._entries: List[ActionLogEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: ActionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, *, action: str | None = None) -> List[ActionLogEntry]:
        with self._lock:
            items = list(self._entries)
        if action is None:
            return items
        return [e for e in items if e.action == action]


class DBActionLog:
    """Postgres sink writing one row per entry into `public.action_logs`."""

    def __init__(self, dsn: str | None = None, table: str = "public.action_logs") -> None:
        self._dsn = resolve_dsn(dsn)
        self._schema, self._name = split_table(table)

    def append(self, entry: ActionLogEntry) -> None:
        query = sql.SQL(
            "insert into {table} (actor, action, details, ip, system_id, created_at) "
            "values (%s, %s, %s, %s, %s, %s)"
        ).format(table=sql.Identifier(self._schema, self._name))
        params = (entry.actor, entry.action, entry.details, entry.ip, entry.system_id, entry.created_at)
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
        except psycopg.Error as exc:
            logger.warning("Action log append failed: %s", exc.__class__.__name__)
            raise PersistenceFailure("action log append failed") from exc
