# quimera/db/memory.py
# ── Store en memoria con la misma semántica que Firestore (tests y DATA_BACKEND=memory)
from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from quimera.db.store import (
    DocumentExists,
    DocumentMissing,
    Filter,
    SERVER_TIMESTAMP,
    Snapshot,
    check_filters,
    is_document_path,
    split_path,
)

_MISSING = object()


def _resolve(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {k: _resolve(v, now) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v, now) for v in value]
    return copy.deepcopy(value)


def _lookup(data: Dict[str, Any], dotted: str) -> Any:
    cur: Any = data
    for part in dotted.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _matches(data: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    for f, op, expected in filters:
        actual = _lookup(data, f)
        if op == "==":
            if actual is _MISSING or actual != expected:
                return False
        elif op == "!=":
            # Firestore: != excludes documents where the field is absent
            if actual is _MISSING or actual == expected:
                return False
        elif op == "in":
            if actual is _MISSING or actual not in expected:
                return False
        elif op == "array_contains":
            if not isinstance(actual, list) or expected not in actual:
                return False
    return True


class InMemoryStore:
    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self.writes = 0

    @staticmethod
    def _key(path: str) -> str:
        if not is_document_path(path):
            raise ValueError(f"Not a document path: {path!r}")
        return "/".join(split_path(path))

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(self._key(path))
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, path: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._docs[self._key(path)] = _resolve(data, self._now())
            self.writes += 1

    def create(self, path: str, data: Dict[str, Any]) -> None:
        with self._lock:
            key = self._key(path)
            if key in self._docs:
                raise DocumentExists(key)
            self._docs[key] = _resolve(data, self._now())
            self.writes += 1

    def create_or_replace(
        self,
        path: str,
        data: Dict[str, Any],
        replace_if: Callable[[Dict[str, Any]], bool],
    ) -> None:
        with self._lock:
            key = self._key(path)
            current = self._docs.get(key)
            if current is not None and not replace_if(copy.deepcopy(current)):
                raise DocumentExists(key)
            self._docs[key] = _resolve(data, self._now())
            self.writes += 1

    def update(self, path: str, data: Dict[str, Any]) -> None:
        with self._lock:
            key = self._key(path)
            doc = self._docs.get(key)
            if doc is None:
                raise DocumentMissing(key)
            now = self._now()
            for dotted, value in data.items():
                parts = dotted.split(".")
                target = doc
                for part in parts[:-1]:
                    nxt = target.get(part)
                    if not isinstance(nxt, dict):
                        nxt = {}
                        target[part] = nxt
                    target = nxt
                target[parts[-1]] = _resolve(value, now)
            self.writes += 1

    def delete(self, path: str) -> None:
        with self._lock:
            self._docs.pop(self._key(path), None)
            self.writes += 1

    def add(self, collection_path: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self.set(f"{collection_path.strip('/')}/{doc_id}", data)
        return doc_id

    def list_documents(self, collection_path: str) -> List[Snapshot]:
        return self.query(collection_path)

    def query(
        self,
        collection_path: str,
        filters: Sequence[Filter] = (),
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> List[Snapshot]:
        check_filters(filters)
        parent = split_path(collection_path)
        if len(parent) % 2 != 1:
            raise ValueError(f"Not a collection path: {collection_path!r}")
        out: List[Snapshot] = []
        with self._lock:
            for key in sorted(self._docs):
                parts = key.split("/")
                if len(parts) != len(parent) + 1 or parts[:-1] != parent:
                    continue
                if start_after is not None and parts[-1] <= start_after:
                    continue
                data = self._docs[key]
                if not _matches(data, filters):
                    continue
                out.append(Snapshot(id=parts[-1], path=key, data=copy.deepcopy(data)))
                if limit is not None and len(out) >= limit:
                    break
        return out

    def count(self, collection_path: str) -> int:
        return len(self.list_documents(collection_path))
