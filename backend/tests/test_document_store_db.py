"""
Unit-style tests for DBDocumentStore using a fake psycopg driver.

Rationale: Keep CI/self-contained runs green without a real Postgres.
We simulate the subset of psycopg used by DBDocumentStore to validate the SQL
flow and row mapping. No network or external DB required.
"""
from __future__ import annotations

import pytest

from identity_access import stores_db
from identity_access.stores import DocumentNotFound, DocumentStoreError
from utils.fake_psycopg import install_fake_psycopg  # type: ignore


@pytest.fixture
def fake_db(monkeypatch: pytest.MonkeyPatch):
    return install_fake_psycopg(monkeypatch, stores_db)


def _store() -> stores_db.DBDocumentStore:
    return stores_db.DBDocumentStore(dsn="postgresql://app:secret@db:5432/cloverpass", table="public.documents")


def test_set_get_update_roundtrip(fake_db):
    store = _store()
    store.set("platformUsers", "u1", {"name": "Ana", "roles": ["staff"]})
    store.update("platformUsers", "u1", {"lastLogin": "2026-01-01T00:00:00+00:00"})
    assert store.get("platformUsers", "u1") == {
        "name": "Ana",
        "roles": ["staff"],
        "lastLogin": "2026-01-01T00:00:00+00:00",
    }
    assert store.get("platformUsers", "missing") is None
    # Writes run in autocommit; reads do not need it.
    assert [c["autocommit"] for c in fake_db.connects] == [True, True, False, False]


def test_update_missing_document_raises_not_found(fake_db):
    with pytest.raises(DocumentNotFound):
        _store().update("platformUsers", "ghost", {"lastLogin": "x"})


def test_add_count_stream_and_delete(fake_db):
    store = _store()
    first = store.add("businessEntities", {"generatedCodes": [1, 2]})
    store.add("businessEntities", {"generatedCodes": []})
    store.set("businesses", "B1", {"name": "Clover Bar"})
    assert store.count("businessEntities") == 2
    assert store.count("businesses") == 1
    ids = [doc_id for doc_id, _ in store.stream("businessEntities")]
    assert first in ids and len(ids) == 2
    store.delete("businessEntities", first)
    assert store.count("businessEntities") == 1


def test_identifiers_are_composed_not_interpolated(fake_db):
    _store().get("platformUsers", "u1")
    statement = fake_db.statements[-1]
    assert "identifier('public')" in statement
    assert "identifier('documents')" in statement
    assert "platformusers" not in statement


def test_driver_errors_surface_as_document_store_errors(fake_db):
    fake_db.fail = True
    with pytest.raises(DocumentStoreError):
        _store().get("platformUsers", "u1")


def test_constructor_validates_table_and_dsn(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        stores_db.DBDocumentStore()
    with pytest.raises(ValueError):
        stores_db.DBDocumentStore(dsn="postgresql://x", table="documents; drop table x")


def test_modify_locks_row_and_writes_in_one_transaction(fake_db):
    store = _store()
    store.set("businessEntities", "E1", {"generatedCodes": []})
    fake_db.connects.clear()

    result = store.modify("businessEntities", "E1", lambda doc: {**doc, "generatedCodes": [{"id": "c1"}]})

    assert result == {"generatedCodes": [{"id": "c1"}]}
    assert store.get("businessEntities", "E1") == result
    # One transactional connection for the read-modify-write, one for the get.
    assert [c["autocommit"] for c in fake_db.connects] == [None, False]
    assert any("for update" in s for s in fake_db.statements)


def test_modify_missing_document_or_failed_mutation_writes_nothing(fake_db):
    store = _store()
    with pytest.raises(DocumentNotFound):
        store.modify("businessEntities", "ghost", lambda doc: doc)

    store.set("businessEntities", "E1", {"isActive": True})

    def reject(doc):
        raise LookupError("code missing")

    with pytest.raises(LookupError):
        store.modify("businessEntities", "E1", reject)
    assert store.get("businessEntities", "E1") == {"isActive": True}
