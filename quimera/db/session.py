# quimera/db/session.py
from __future__ import annotations

import threading

from quimera.core.settings import settings
from quimera.db.store import DocumentStore

_STORE: DocumentStore | None = None
_STORE_LOCK = threading.Lock()


def build_store(backend: str | None = None) -> DocumentStore:
    backend = (backend or settings.DATA_BACKEND or "firestore").lower()
    if backend == "memory":
        from quimera.db.memory import InMemoryStore

        return InMemoryStore()
    if backend == "firestore":
        from quimera.db.firestore import FirestoreStore

        return FirestoreStore()
    raise RuntimeError(f"Unknown DATA_BACKEND: {backend}")


def get_store() -> DocumentStore:
    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            _STORE = build_store()
        return _STORE


def get_db():
    yield get_store()
