# tests/conftest.py
from __future__ import annotations

from typing import Callable, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from quimera.db.collections import (
    COLLECTION_TENANT_MEMBERS,
    COLLECTION_USERS,
    COLLECTION_WEBHOOK_CONFIGS,
    doc_path,
)
from quimera.db.memory import InMemoryStore
from quimera.db.session import get_db
from quimera.deps.http import get_http_client
from quimera.main import app
from quimera.models.webhook import WebhookConfig
from quimera.security.jwt import create_access_token


@pytest.fixture()
def store() -> InMemoryStore:
    """Un store vacío por prueba."""
    return InMemoryStore()


@pytest.fixture(autouse=True)
def _override_get_db(store: InMemoryStore):
    """
    Override automático de get_db para que todos los endpoints usen
    el mismo store de la prueba en curso.
    """
    def _get_db():
        yield store

    app.dependency_overrides[get_db] = _get_db
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def auth() -> Callable[[str], Dict[str, str]]:
    def _auth(uid: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(uid)}"}

    return _auth


@pytest.fixture()
def add_member(store: InMemoryStore):
    def _add(tenant_id: str, user_id: str, role: str = "agency_owner") -> None:
        store.set(
            doc_path(COLLECTION_TENANT_MEMBERS, f"{tenant_id}_{user_id}"),
            {"tenantId": tenant_id, "userId": user_id, "role": role},
        )

    return _add


@pytest.fixture()
def make_admin(store: InMemoryStore):
    def _make(user_id: str, role: str = "superadmin") -> None:
        store.set(doc_path(COLLECTION_USERS, user_id), {"email": f"{user_id}@quimera.ai", "role": role})

    return _make


@pytest.fixture()
def add_config(store: InMemoryStore):
    def _add(
        tenant_id: str,
        url: str,
        events: List[str],
        *,
        enabled: bool = True,
        secret: str = "topsecret",
        retry_count: int = 3,
    ) -> WebhookConfig:
        doc = {
            "tenantId": tenant_id,
            "url": url,
            "secret": secret,
            "events": events,
            "enabled": enabled,
            "retryCount": retry_count,
        }
        webhook_id = store.add(COLLECTION_WEBHOOK_CONFIGS, doc)
        return WebhookConfig.model_validate({**doc, "id": webhook_id})

    return _add


@pytest.fixture()
def receiver():
    """
    Sustituye el cliente HTTP saliente de los endpoints por un MockTransport
    que registra cada request y responde 200.
    """
    requests: List[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, text="received")

    async def _client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as c:
            yield c

    app.dependency_overrides[get_http_client] = _client
    try:
        yield requests
    finally:
        app.dependency_overrides.pop(get_http_client, None)
