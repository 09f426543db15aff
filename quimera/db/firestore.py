# quimera/db/firestore.py
# ── Store respaldado por Firestore (firebase_admin)
from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Optional, Sequence

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as gexc
from google.cloud.firestore_v1.base_query import FieldFilter

from quimera.core.settings import settings
from quimera.db.store import (
    DocumentExists,
    DocumentMissing,
    Filter,
    SERVER_TIMESTAMP,
    Snapshot,
    check_filters,
)

_FIREBASE_APP = None


def get_firebase_app():
    global _FIREBASE_APP
    if _FIREBASE_APP is not None:
        return _FIREBASE_APP
    try:
        _FIREBASE_APP = firebase_admin.get_app()
        return _FIREBASE_APP
    except ValueError:
        pass

    cred_path = settings.FIREBASE_CREDENTIALS_PATH or ""
    if cred_path:
        if not os.path.exists(cred_path):
            raise RuntimeError("FIREBASE_CREDENTIALS_PATH does not exist")
        cred = credentials.Certificate(cred_path)
    else:
        # GOOGLE_APPLICATION_CREDENTIALS / metadata server
        cred = credentials.ApplicationDefault()

    options: Dict[str, Any] = {}
    if settings.FIREBASE_PROJECT_ID:
        options["projectId"] = settings.FIREBASE_PROJECT_ID
    _FIREBASE_APP = firebase_admin.initialize_app(cred, options or None)
    return _FIREBASE_APP


def _to_native(value: Any) -> Any:
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, dict):
        return {k: _to_native(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_native(v) for v in value]
    return value


class FirestoreStore:
    def __init__(self, client=None) -> None:
        self._client = client if client is not None else firestore.client(app=get_firebase_app())

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        snap = self._client.document(path).get()
        return snap.to_dict() if snap.exists else None

    def set(self, path: str, data: Dict[str, Any]) -> None:
        self._client.document(path).set(_to_native(data))

    def create(self, path: str, data: Dict[str, Any]) -> None:
        try:
            self._client.document(path).create(_to_native(data))
        except gexc.AlreadyExists:
            raise DocumentExists(path)

    def create_or_replace(
        self,
        path: str,
        data: Dict[str, Any],
        replace_if: Callable[[Dict[str, Any]], bool],
    ) -> None:
        ref = self._client.document(path)

        @firestore.transactional
        def _write(transaction) -> None:
            snap = ref.get(transaction=transaction)
            if snap.exists and not replace_if(snap.to_dict() or {}):
                raise DocumentExists(path)
            transaction.set(ref, _to_native(data))

        _write(self._client.transaction())

    def update(self, path: str, data: Dict[str, Any]) -> None:
        try:
            self._client.document(path).update(_to_native(data))
        except gexc.NotFound:
            raise DocumentMissing(path)

    def delete(self, path: str) -> None:
        self._client.document(path).delete()

    def add(self, collection_path: str, data: Dict[str, Any]) -> str:
        _, ref = self._client.collection(collection_path).add(_to_native(data))
        return ref.id

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
        coll = self._client.collection(collection_path)
        q = coll
        for f, op, value in filters:
            q = q.where(filter=FieldFilter(f, op, value))
        if start_after is not None:
            q = q.order_by("__name__").start_after({"__name__": coll.document(start_after)})
        if limit is not None:
            q = q.limit(limit)
        return [
            Snapshot(id=s.id, path=s.reference.path, data=s.to_dict() or {})
            for s in q.stream()
        ]
