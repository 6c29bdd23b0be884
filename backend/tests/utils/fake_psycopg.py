"""
Lightweight psycopg stand-in for unit tests.

Provides ``install_fake_psycopg`` which monkeypatches a target module so that
``psycopg.connect`` returns an in-memory documents table. Designed to support
the subset of SQL used by DBDocumentStore (INSERT/UPSERT, SELECT, UPDATE,
DELETE, COUNT). Queries arrive as ``psycopg.sql.Composed`` objects; the fake
dispatches on their ``repr``.
"""
from __future__ import annotations

import types
from typing import Any, Dict, List, Tuple


class FakeJson:
    """Minimal replacement for psycopg.types.json.Json used in tests."""

    def __init__(self, obj: Any) -> None:
        self.obj = obj


class FakeDBError(Exception):
    pass


class FakeDatabase:
    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, str], dict] = {}
        self.statements: List[str] = []
        self.connects: List[dict] = []
        self.fail = False


class _FakeCursor:
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db
        self._row = None
        self._rows = None
        self.rowcount = -1

    def execute(self, query, params: tuple | list) -> None:
        text = repr(query).lower()
        self._db.statements.append(text)
        self._row, self._rows, self.rowcount = None, None, -1
        if "insert into" in text:
            collection, doc_id, data = params
            self._db.rows[(collection, doc_id)] = dict(getattr(data, "obj", data))
            self.rowcount = 1
        elif "update" in text and "select" not in text:
            fields, collection, doc_id = params
            doc = self._db.rows.get((collection, doc_id))
            if doc is None:
                self.rowcount = 0
            else:
                doc.update(getattr(fields, "obj", fields))
                self.rowcount = 1
        elif "delete from" in text:
            collection, doc_id = params
            self.rowcount = 1 if self._db.rows.pop((collection, doc_id), None) is not None else 0
        elif "count(*)" in text:
            (collection,) = params
            self._row = (sum(1 for c, _ in self._db.rows if c == collection),)
        elif "select doc_id, data" in text:
            (collection,) = params
            self._rows = sorted((d, dict(doc)) for (c, d), doc in self._db.rows.items() if c == collection)
        elif "select data from" in text:
            collection, doc_id = params
            doc = self._db.rows.get((collection, doc_id))
            self._row = (dict(doc),) if doc is not None else None
        else:
            raise AssertionError(f"Unexpected SQL in fake psycopg: {text}")

    def fetchone(self):
        return self._row

    def fetchall(self):
        return self._rows or []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db

    def cursor(self):
        return _FakeCursor(self._db)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def install_fake_psycopg(monkeypatch, target_module) -> FakeDatabase:
    """
    Patch ``target_module`` so psycopg operations go against an in-memory table.

    Returns the FakeDatabase acting as the backing store. Set ``fail = True`` to
    make every connect raise the fake driver error.
    """
    db = FakeDatabase()

    def fake_connect(dsn: str, autocommit: bool | None = None):
        db.connects.append({"dsn": dsn, "autocommit": autocommit})
        if db.fail:
            raise FakeDBError("connection refused")
        return _FakeConn(db)

    fake_psycopg = types.SimpleNamespace(connect=fake_connect, Error=FakeDBError)

    monkeypatch.setattr(target_module, "psycopg", fake_psycopg, raising=False)
    monkeypatch.setattr(target_module, "Json", FakeJson, raising=False)
    return db


__all__ = ["install_fake_psycopg", "FakeDatabase", "FakeJson"]
