"""
Database-backed SessionStore for production use (Postgres/Supabase).

Why: In-memory sessions are not durable and do not scale across instances. This
store persists PDS sessions in Postgres while the cookie stays an opaque id.

Security:
- Intended to be used with a service role connection string; anon clients must
  not access the `pds_sessions` table (RLS enabled, service role bypasses it).
- Provider tokens are stored server-side only and never rendered.

Note: psycopg3 is an optional dependency (`pip install .[db]`). It is needed
only when `SESSIONS_BACKEND=db`; tests use the in-memory store or a fake driver.
"""
from __future__ import annotations

from typing import Any, Optional
import os
import re
import time

from .domain import Identity
from .stores import SESSION_TTL_SECONDS, SessionRecord

try:
    import psycopg
    from psycopg import sql as pg_sql
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except ImportError:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    pg_sql = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")

_COLUMNS = "session_id, user_id, email, role, name, school_id, children, access_token, refresh_token, token_expires_at"


def _now() -> int:
    return int(time.time())


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Falls back to `DATABASE_URL`.
    table:
        Optionally schema-qualified table name. Defaults to `public.pds_sessions`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.pds_sessions") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSessionStore")
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        if not TABLE_NAME_PATTERN.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    def _schema_and_name(self) -> tuple[str, str]:
        if "." in self._table:
            schema, name = self._table.split(".", 1)
        else:
            schema, name = "public", self._table
        return schema, name

    def _statement(self, template: str) -> Any:
        """Bind the table into `template` (placeholder `{table}`)."""
        if pg_sql is not None:
            schema, name = self._schema_and_name()
            return pg_sql.SQL(template.replace("{table}", "{}.{}")).format(
                pg_sql.Identifier(schema), pg_sql.Identifier(name)
            )
        # Drivers without psycopg.sql; the table name is validated above.
        return template.replace("{table}", self._table)

    def create(
        self,
        *,
        identity: Identity,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[int] = None,
        ttl_seconds: int = SESSION_TTL_SECONDS,
    ) -> SessionRecord:
        expires_at = _now() + ttl_seconds
        stmt = self._statement(
            "insert into {table} (" + _COLUMNS + ", expires_at) "
            "values (gen_random_uuid()::text, %s, %s, %s, %s, %s, %s, %s, %s, %s, to_timestamp(%s)) returning session_id"
        )
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    stmt,
                    (
                        identity.id,
                        identity.email,
                        identity.role,
                        identity.name,
                        identity.school_id,
                        Json(list(identity.children)),
                        access_token,
                        refresh_token,
                        token_expires_at,
                        expires_at,
                    ),
                )
                row = cur.fetchone()
        sid = str(row[0]) if row else ""
        return SessionRecord(
            session_id=sid,
            user_id=identity.id,
            email=identity.email,
            role=identity.role,
            name=identity.name,
            school_id=identity.school_id,
            children=list(identity.children),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            token_expires_at=token_expires_at,
            ttl_seconds=ttl_seconds,
        )

    def get(self, session_id: Optional[str]) -> Optional[SessionRecord]:
        if not session_id:
            return None
        stmt = self._statement(
            "select " + _COLUMNS + ", extract(epoch from expires_at)::bigint "
            "from {table} where session_id = %s and expires_at > now()"
        )
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))
                row = cur.fetchone()
        if not row:
            return None
        children = row[6] if isinstance(row[6], list) else []
        return SessionRecord(
            session_id=row[0],
            user_id=row[1],
            email=row[2] or "",
            role=row[3],
            name=row[4] or "",
            school_id=row[5],
            children=[str(c) for c in children],
            access_token=row[7],
            refresh_token=row[8],
            token_expires_at=int(row[9]) if row[9] is not None else None,
            expires_at=int(row[10]) if row[10] is not None else None,
        )

    def update_identity(
        self,
        session_id: str,
        identity: Identity,
        *,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[int] = None,
    ) -> Optional[SessionRecord]:
        stmt = self._statement(
            "update {table} set email = %s, role = %s, name = %s, school_id = %s, children = %s, "
            "access_token = coalesce(%s, access_token), refresh_token = coalesce(%s, refresh_token), "
            "token_expires_at = coalesce(%s, token_expires_at) "
            "where session_id = %s and expires_at > now()"
        )
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    stmt,
                    (
                        identity.email,
                        identity.role,
                        identity.name,
                        identity.school_id,
                        Json(list(identity.children)),
                        access_token,
                        refresh_token,
                        token_expires_at,
                        session_id,
                    ),
                )
        return self.get(session_id)

    def delete(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        stmt = self._statement("delete from {table} where session_id = %s")
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))
