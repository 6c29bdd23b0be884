"""
In-memory document store for development and tests.

Why: The application keeps its records (profiles, businesses, members, entities)
as schemaless documents addressed by (collection, id). Gateway services depend
on the small `DocumentStore` surface below; production swaps in the Postgres
JSONB store from `stores_db.py`.

Security: Callers own authorization. The store performs no access checks.
"""
from __future__ import annotations

from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple
import copy
import threading


class DocumentStoreError(Exception):
    """Raised when the backing store cannot complete a read or write."""


class DocumentNotFound(DocumentStoreError):
    """Raised by `update` and `modify` when the target document does not exist."""


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[dict]: ...

    def set(self, collection: str, doc_id: str, data: dict) -> None: ...

    def update(self, collection: str, doc_id: str, fields: dict) -> None: ...

    def add(self, collection: str, data: dict) -> str: ...

    def delete(self, collection: str, doc_id: str) -> None: ...

    def count(self, collection: str) -> int: ...

    def stream(self, collection: str) -> Iterator[Tuple[str, dict]]: ...

    def modify(self, collection: str, doc_id: str, mutate: Callable[[dict], dict]) -> dict: ...


class InMemoryDocumentStore:
    def __init__(self):
        self._data: Dict[str, Dict[str, dict]] = {}
        self._seq = 0
        self._lock = threading.RLock()

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        doc = self._data.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        self._data.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        docs = self._data.get(collection, {})
        if doc_id not in docs:
            raise DocumentNotFound(f"{collection}/{doc_id}")
        docs[doc_id].update(copy.deepcopy(fields))

    def add(self, collection: str, data: dict) -> str:
        self._seq += 1
        doc_id = f"{collection}-{self._seq:06d}"
        self.set(collection, doc_id, data)
        return doc_id

    def delete(self, collection: str, doc_id: str) -> None:
        self._data.get(collection, {}).pop(doc_id, None)

    def count(self, collection: str) -> int:
        return len(self._data.get(collection, {}))

    def stream(self, collection: str) -> Iterator[Tuple[str, dict]]:
        for doc_id, doc in list(self._data.get(collection, {}).items()):
            yield doc_id, copy.deepcopy(doc)

    def modify(self, collection: str, doc_id: str, mutate: Callable[[dict], dict]) -> dict:
        """Replace a document with `mutate(current)` atomically.

        `mutate` receives a copy; if it raises, the stored document is left
        untouched. Raises `DocumentNotFound` for a missing document.
        """
        with self._lock:
            current = self.get(collection, doc_id)
            if current is None:
                raise DocumentNotFound(f"{collection}/{doc_id}")
            updated = mutate(current)
            self.set(collection, doc_id, updated)
            return copy.deepcopy(updated)
