"""
Database-backed AccountStore for production use (Postgres).

Why: The in-memory directory is neither durable nor shared across instances.
This store persists accounts in Postgres and pushes the two invariants that
need cross-request coordination down to the database:
- uniqueness of `user_id` and `roll_number` (unique constraints), and
- session exclusivity (a single conditional UPDATE acting as compare-and-set).

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Table identifiers are validated and composed with `psycopg.sql`.
- Driver errors are translated into `DuplicateAccountError` and
  `PersistenceFailure` so callers never see psycopg types.

Schema: see `sql/schema.sql`.
"""
from __future__ import annotations

from typing import List, Mapping, Optional, Sequence, Tuple
import logging
import os
import re

import psycopg
from psycopg import sql

from .domain import UPDATABLE_FIELDS
from .errors import DuplicateAccountError, PersistenceFailure
from .stores import Account

logger = logging.getLogger("roster.identity_access")

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")

_COLUMNS = (
    "id",
    "name",
    "user_id",
    "roll_number",
    "role",
    "password_hash",
    "batch",
    "semester",
    "session_token",
)


def resolve_dsn(dsn: str | None = None) -> str:
    """Resolve the DSN from the argument or the environment."""
    value = dsn or os.getenv("DATABASE_URL") or ""
    if not value:
        raise RuntimeError("No database DSN provided (set DATABASE_URL)")
    return value


def split_table(table: str) -> Tuple[str, str]:
    if not _TABLE_RE.match(table or ""):
        raise ValueError("Invalid table name")
    if "." in table:
        schema, name = table.split(".", 1)
    else:
        schema, name = "public", table
    return schema, name


def _row_to_account(row: Sequence) -> Account:
    return Account(
        id=str(row[0]),
        name=row[1],
        user_id=row[2],
        roll_number=row[3],
        role=row[4],
        password_hash=row[5],
        batch=row[6],
        semester=int(row[7]) if row[7] is not None else None,
        session_token=row[8],
        created_at=str(row[9]) if len(row) > 9 and row[9] is not None else "",
    )


def _duplicate_field(exc: Exception) -> str:
    diag = getattr(exc, "diag", None)
    constraint = getattr(diag, "constraint_name", None) or str(exc)
    return "roll_number" if "roll_number" in constraint else "user_id"


class DBAccountStore:
    """Postgres-backed account directory.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Falls back to `DATABASE_URL`.
    table:
        Table name, optionally schema-qualified. Defaults to `public.accounts`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.accounts") -> None:
        self._dsn = resolve_dsn(dsn)
        self._schema, self._name = split_table(table)

    # --- helpers ------------------------------------------------------------

    def _table(self) -> sql.Identifier:
        return sql.Identifier(self._schema, self._name)

    def _select_cols(self) -> sql.Composed:
        cols = [sql.Identifier(c) for c in _COLUMNS]
        created = sql.SQL("""to_char(created_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')""")
        return sql.SQL(", ").join(cols + [created])

    def _fetch_one(self, query, params) -> Optional[Account]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise PersistenceFailure(f"query failed: {exc.__class__.__name__}") from exc
        return _row_to_account(row) if row else None

    # --- reads --------------------------------------------------------------

    def get(self, account_id: str) -> Optional[Account]:
        query = sql.SQL("select {cols} from {table} where id = %s").format(
            cols=self._select_cols(), table=self._table()
        )
        return self._fetch_one(query, (account_id,))

    def find_by_user_id(self, user_id: str) -> Optional[Account]:
        query = sql.SQL("select {cols} from {table} where user_id = %s").format(
            cols=self._select_cols(), table=self._table()
        )
        return self._fetch_one(query, (user_id,))

    def find_conflict(self, *, user_id: str, roll_number: str) -> Optional[Account]:
        query = sql.SQL("select {cols} from {table} where user_id = %s or roll_number = %s limit 1").format(
            cols=self._select_cols(), table=self._table()
        )
        return self._fetch_one(query, (user_id, roll_number))

    def list_accounts(self) -> List[Account]:
        query = sql.SQL("select {cols} from {table} order by created_at").format(
            cols=self._select_cols(), table=self._table()
        )
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, ())
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            raise PersistenceFailure(f"query failed: {exc.__class__.__name__}") from exc
        return [_row_to_account(r) for r in rows]

    # --- writes -------------------------------------------------------------

    def insert(self, account: Account) -> Account:
        insert_cols = list(_COLUMNS)
        query = sql.SQL("insert into {table} ({cols}) values ({vals}) returning {ret}").format(
            table=self._table(),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in insert_cols),
            vals=sql.SQL(", ").join(sql.Placeholder() for _ in insert_cols),
            ret=self._select_cols(),
        )
        params = tuple(getattr(account, c) for c in insert_cols)
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateAccountError(_duplicate_field(exc)) from exc
        except psycopg.Error as exc:
            logger.warning("Account insert failed: %s", exc.__class__.__name__)
            raise PersistenceFailure(f"insert failed: {exc.__class__.__name__}") from exc
        return _row_to_account(row) if row else account

    def update_fields(self, account_id: str, changes: Mapping[str, object]) -> Optional[Account]:
        fields = [k for k in UPDATABLE_FIELDS if k in changes]
        if not fields:
            return self.get(account_id)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(k)) for k in fields
        )
        query = sql.SQL("update {table} set {assignments} where id = %s returning {ret}").format(
            table=self._table(), assignments=assignments, ret=self._select_cols()
        )
        params = tuple(changes[k] for k in fields) + (account_id,)
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateAccountError(_duplicate_field(exc)) from exc
        except psycopg.Error as exc:
            raise PersistenceFailure(f"update failed: {exc.__class__.__name__}") from exc
        return _row_to_account(row) if row else None

    def delete(self, account_id: str) -> Optional[Account]:
        query = sql.SQL("delete from {table} where id = %s returning {ret}").format(
            table=self._table(), ret=self._select_cols()
        )
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (account_id,))
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise PersistenceFailure(f"delete failed: {exc.__class__.__name__}") from exc
        return _row_to_account(row) if row else None

    def compare_and_set_session_token(self, account_id: str, *, expected: Optional[str], new: Optional[str]) -> bool:
        """Atomic conditional update; `is not distinct from` also matches NULL."""
        query = sql.SQL(
            "update {table} set session_token = %s where id = %s and session_token is not distinct from %s returning id"
        ).format(table=self._table())
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (new, account_id, expected))
                    row = cur.fetchone()
        except psycopg.Error as exc:
            logger.warning("Session token update failed: %s", exc.__class__.__name__)
            raise PersistenceFailure(f"session update failed: {exc.__class__.__name__}") from exc
        return row is not None

    def clear_session_token(self, account_id: str) -> bool:
        query = sql.SQL("update {table} set session_token = null where id = %s returning id").format(
            table=self._table()
        )
        try:
            with psycopg.connect(self._dsn, autocommit=True) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (account_id,))
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise PersistenceFailure(f"session clear failed: {exc.__class__.__name__}") from exc
        return row is not None
