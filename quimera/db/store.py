# quimera/db/store.py
# ── Contrato de acceso a documentos (Firestore o memoria), inyectable en servicios
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple


class _ServerTimestamp:
    """Sentinel replaced by the backend with its own commit time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

# (field, op, value); op in FILTER_OPS
Filter = Tuple[str, str, Any]
FILTER_OPS = ("==", "!=", "in", "array_contains")


class StoreError(Exception):
    pass


class DocumentExists(StoreError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Document already exists: {path}")
        self.path = path


class DocumentMissing(StoreError):
    def __init__(self, path: str) -> None:
        super().__init__(f"No document to update: {path}")
        self.path = path


@dataclass(frozen=True)
class Snapshot:
    id: str
    path: str
    data: Dict[str, Any] = field(default_factory=dict)


class DocumentStore(Protocol):
    def get(self, path: str) -> Optional[Dict[str, Any]]: ...

    def set(self, path: str, data: Dict[str, Any]) -> None: ...

    def create(self, path: str, data: Dict[str, Any]) -> None: ...

    # Atomic: creates, or overwrites an existing document only when replace_if(existing) is true;
    # otherwise raises DocumentExists.
    def create_or_replace(
        self,
        path: str,
        data: Dict[str, Any],
        replace_if: Callable[[Dict[str, Any]], bool],
    ) -> None: ...

    def update(self, path: str, data: Dict[str, Any]) -> None: ...

    def delete(self, path: str) -> None: ...

    def add(self, collection_path: str, data: Dict[str, Any]) -> str: ...

    def list_documents(self, collection_path: str) -> List[Snapshot]: ...

    # Ordered by document id; start_after is the id of the last document of the previous page.
    def query(
        self,
        collection_path: str,
        filters: Sequence[Filter] = (),
        limit: Optional[int] = None,
        start_after: Optional[str] = None,
    ) -> List[Snapshot]: ...


def check_filters(filters: Iterable[Filter]) -> None:
    for f, op, _ in filters:
        if op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator {op!r} on field {f!r}")


def split_path(path: str) -> List[str]:
    return [p for p in path.strip("/").split("/") if p]


def is_document_path(path: str) -> bool:
    parts = split_path(path)
    return bool(parts) and len(parts) % 2 == 0
