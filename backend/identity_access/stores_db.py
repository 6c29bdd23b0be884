"""
Database-backed DocumentStore for production use (Postgres JSONB).

Why: In-memory documents are not durable and do not scale across instances.
This store keeps every collection in a single JSONB table keyed by
(collection, doc_id), which matches the document-database access pattern the
gateway relies on (get/set/update by id, counts, full scans for aggregation).

Security:
- Intended to be used with a server-side connection string; browsers never
  reach this table.
- Identifiers are composed with `psycopg.sql` only; values are always bound.

Expected schema:

    create table public.documents (
        collection text not null,
        doc_id text not null,
        data jsonb not null default '{}'::jsonb,
        updated_at timestamptz not null default now(),
        primary key (collection, doc_id)
    );

Note: This module uses psycopg3. It is imported only when enabled via
`DOCUMENTS_BACKEND=db`. Tests can continue to use the in-memory store.
"""
from __future__ import annotations

from typing import Callable, Iterator, Optional, Tuple
import os
import re
import uuid

import psycopg
from psycopg import sql
from psycopg.types.json import Json

from .stores import DocumentNotFound, DocumentStoreError

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


class DBDocumentStore:
    """Postgres-backed document store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string.
    table:
        Fully qualified table name. Defaults to `public.documents`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.documents") -> None:
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBDocumentStore")
        # Validate table identifier early
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    def _ident(self) -> sql.Composed:
        if "." in self._table:
            schema, name = self._table.split(".", 1)
        else:
            schema, name = "public", self._table
        return sql.SQL("{}.{}").format(sql.Identifier(schema), sql.Identifier(name))

    def _execute(self, query: sql.Composed, params: tuple, *, fetch: str | None = None, autocommit: bool = False):
        try:
            with psycopg.connect(self._dsn, autocommit=autocommit) as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    if fetch == "one":
                        return cur.fetchone()
                    if fetch == "all":
                        return cur.fetchall()
                    return cur.rowcount
        except psycopg.Error as exc:
            raise DocumentStoreError(exc.__class__.__name__) from exc

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        q = sql.SQL("select data from {} where collection = %s and doc_id = %s").format(self._ident())
        row = self._execute(q, (collection, doc_id), fetch="one")
        if not row:
            return None
        return row[0] if isinstance(row[0], dict) else {}

    def _upsert_sql(self) -> sql.Composed:
        return sql.SQL(
            "insert into {} (collection, doc_id, data) values (%s, %s, %s) "
            "on conflict (collection, doc_id) do update set data = excluded.data, updated_at = now()"
        ).format(self._ident())

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        q = self._upsert_sql()
        self._execute(q, (collection, doc_id, Json(data)), autocommit=True)

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        q = sql.SQL(
            "update {} set data = data || %s, updated_at = now() where collection = %s and doc_id = %s"
        ).format(self._ident())
        rowcount = self._execute(q, (Json(fields), collection, doc_id), autocommit=True)
        if not rowcount:
            raise DocumentNotFound(f"{collection}/{doc_id}")

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def delete(self, collection: str, doc_id: str) -> None:
        q = sql.SQL("delete from {} where collection = %s and doc_id = %s").format(self._ident())
        self._execute(q, (collection, doc_id), autocommit=True)

    def count(self, collection: str) -> int:
        q = sql.SQL("select count(*) from {} where collection = %s").format(self._ident())
        row = self._execute(q, (collection,), fetch="one")
        return int(row[0]) if row else 0

    def stream(self, collection: str) -> Iterator[Tuple[str, dict]]:
        q = sql.SQL("select doc_id, data from {} where collection = %s order by doc_id").format(self._ident())
        rows = self._execute(q, (collection,), fetch="all") or []
        for doc_id, data in rows:
            yield str(doc_id), data if isinstance(data, dict) else {}

    def modify(self, collection: str, doc_id: str, mutate: Callable[[dict], dict]) -> dict:
        """Read-modify-write in one transaction, holding the row lock.

        An exception from `mutate` rolls the transaction back and propagates.
        """
        select_q = sql.SQL(
            "select data from {} where collection = %s and doc_id = %s for update"
        ).format(self._ident())
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    cur.execute(select_q, (collection, doc_id))
                    row = cur.fetchone()
                    if not row:
                        raise DocumentNotFound(f"{collection}/{doc_id}")
                    updated = mutate(dict(row[0]) if isinstance(row[0], dict) else {})
                    cur.execute(self._upsert_sql(), (collection, doc_id, Json(updated)))
        except psycopg.Error as exc:
            raise DocumentStoreError(exc.__class__.__name__) from exc
        return updated
