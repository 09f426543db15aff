# quimera/services/webhook_admin_service.py
# ── Gestión de webhooks (crear / editar / borrar / probar / listar)
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

import httpx

from quimera.core.errors import InvalidArgument, NotFound, PermissionDenied, Unauthenticated
from quimera.core.settings import settings
from quimera.db.collections import (
    COLLECTION_WEBHOOK_CONFIGS,
    COLLECTION_WEBHOOK_DELIVERY_LOGS,
    doc_path,
)
from quimera.db.store import SERVER_TIMESTAMP, DocumentStore
from quimera.models.webhook import (
    WEBHOOK_EVENT_TYPES,
    DeliveryResult,
    WebhookConfig,
    WebhookDeliveryLog,
)
from quimera.schemas.webhook import OperationResult, WebhookCreated
from quimera.services.authz import (
    can_manage_webhooks_for,
    find_managed_tenant,
    has_manager_membership,
    is_platform_admin,
)
from quimera.services.webhook_service import deliver_webhook, generate_secret

logger = logging.getLogger(__name__)

TEST_EVENT = "client.created"


# -----------------------------
# Validaciones
# -----------------------------
def _require_caller(caller_id: Optional[str]) -> str:
    if not caller_id:
        raise Unauthenticated("Authentication required")
    return caller_id


def validate_url(url: Optional[str]) -> str:
    try:
        parts = urlsplit((url or "").strip())
    except ValueError:
        raise InvalidArgument("Invalid URL")
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidArgument("Invalid URL")
    return url.strip()


def validate_events(events: Optional[Iterable[str]]) -> List[str]:
    out: List[str] = []
    for ev in events or []:
        if ev not in WEBHOOK_EVENT_TYPES:
            raise InvalidArgument(f"Unknown event type: {ev}")
        if ev not in out:
            out.append(ev)
    if not out:
        raise InvalidArgument("At least one event is required")
    return out


def _load_config(db: DocumentStore, webhook_id: str) -> WebhookConfig:
    data = db.get(doc_path(COLLECTION_WEBHOOK_CONFIGS, webhook_id)) if webhook_id else None
    if data is None:
        raise NotFound("Webhook not found")
    return WebhookConfig.model_validate({**data, "id": webhook_id})


def _ensure_can_manage(db: DocumentStore, caller_id: str, tenant_id: str) -> None:
    if not can_manage_webhooks_for(db, caller_id, tenant_id):
        raise PermissionDenied("No permission for this tenant")


def _load_managed_config(db: DocumentStore, caller_id: str, webhook_id: str) -> WebhookConfig:
    config = _load_config(db, webhook_id)
    _ensure_can_manage(db, caller_id, config.tenant_id)
    return config


def resolve_target_tenant(db: DocumentStore, caller_id: str, tenant_id: Optional[str] = None) -> str:
    """
    Admin de plataforma + tenant_id explícito -> ese tenant.
    Si no, el tenant debe salir de una membresía agency_owner/agency_admin/owner.
    """
    if tenant_id and is_platform_admin(db, caller_id):
        return tenant_id
    if tenant_id:
        if not has_manager_membership(db, caller_id, tenant_id):
            raise PermissionDenied("No permission for this tenant")
        return tenant_id
    found = find_managed_tenant(db, caller_id)
    if not found:
        raise PermissionDenied("No permission to manage webhooks")
    return found


# -----------------------------
# Operaciones
# -----------------------------
def create_webhook(
    db: DocumentStore,
    caller_id: Optional[str],
    *,
    url: str,
    events: Iterable[str],
    tenant_id: Optional[str] = None,
) -> WebhookCreated:
    caller_id = _require_caller(caller_id)
    target = resolve_target_tenant(db, caller_id, tenant_id)
    url = validate_url(url)
    events = validate_events(events)

    secret = generate_secret()
    doc = {
        "tenantId": target,
        "url": url,
        "secret": secret,
        "events": events,
        "enabled": True,
        "retryCount": int(settings.WEBHOOKS_DEFAULT_RETRY_COUNT),
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }
    webhook_id = db.add(COLLECTION_WEBHOOK_CONFIGS, doc)
    logger.info("Webhook %s created for tenant %s by %s (%s)", webhook_id, target, caller_id, ",".join(events))
    return WebhookCreated(success=True, webhook_id=webhook_id, secret=secret)


def update_webhook(
    db: DocumentStore,
    caller_id: Optional[str],
    webhook_id: str,
    *,
    url: Optional[str] = None,
    events: Optional[Iterable[str]] = None,
    enabled: Optional[bool] = None,
) -> OperationResult:
    caller_id = _require_caller(caller_id)
    _load_managed_config(db, caller_id, webhook_id)

    updates = {"updatedAt": SERVER_TIMESTAMP}
    if url is not None:
        updates["url"] = validate_url(url)
    if events is not None:
        updates["events"] = validate_events(events)
    if enabled is not None:
        updates["enabled"] = bool(enabled)

    db.update(doc_path(COLLECTION_WEBHOOK_CONFIGS, webhook_id), updates)
    return OperationResult(success=True)


def delete_webhook(db: DocumentStore, caller_id: Optional[str], webhook_id: str) -> OperationResult:
    caller_id = _require_caller(caller_id)
    _load_managed_config(db, caller_id, webhook_id)

    db.delete(doc_path(COLLECTION_WEBHOOK_CONFIGS, webhook_id))
    logger.info("Webhook %s deleted by %s", webhook_id, caller_id)
    return OperationResult(success=True)


async def send_test_webhook(
    db: DocumentStore,
    caller_id: Optional[str],
    webhook_id: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    caller_id = _require_caller(caller_id)
    config = await asyncio.to_thread(_load_managed_config, db, caller_id, webhook_id)

    return await deliver_webhook(
        db,
        config,
        TEST_EVENT,
        {
            "test": True,
            "message": "This is a test event",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        client=client,
    )


def list_webhooks(
    db: DocumentStore,
    caller_id: Optional[str],
    tenant_id: Optional[str] = None,
) -> List[WebhookConfig]:
    caller_id = _require_caller(caller_id)
    target = resolve_target_tenant(db, caller_id, tenant_id)
    snaps = db.query(COLLECTION_WEBHOOK_CONFIGS, [("tenantId", "==", target)])
    return [WebhookConfig.from_snapshot(s) for s in snaps]


def list_deliveries(
    db: DocumentStore,
    caller_id: Optional[str],
    webhook_id: str,
    limit: int = 50,
) -> List[WebhookDeliveryLog]:
    caller_id = _require_caller(caller_id)
    _load_managed_config(db, caller_id, webhook_id)

    snaps = db.query(COLLECTION_WEBHOOK_DELIVERY_LOGS, [("webhookId", "==", webhook_id)])
    logs = [WebhookDeliveryLog.from_snapshot(s) for s in snaps]
    logs.sort(key=lambda l: (l.created_at is not None, l.created_at), reverse=True)
    return logs[: max(0, int(limit))]
