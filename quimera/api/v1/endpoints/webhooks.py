# quimera/api/v1/endpoints/webhooks.py
from __future__ import annotations

from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, Query, status

from quimera.db.session import get_db
from quimera.db.store import DocumentStore
from quimera.deps.auth import get_current_user_id
from quimera.deps.http import get_http_client
from quimera.schemas.webhook import (
    DeliveryLogOut,
    DeliveryResultOut,
    OperationResult,
    WebhookCreate,
    WebhookCreated,
    WebhookOut,
    WebhookUpdate,
)
from quimera.services import webhook_admin_service as svc

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get("", response_model=List[WebhookOut], response_model_by_alias=True)
def list_webhooks(
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    db: DocumentStore = Depends(get_db),
    caller_id: str = Depends(get_current_user_id),
):
    return [WebhookOut.model_validate(c.model_dump()) for c in svc.list_webhooks(db, caller_id, tenant_id)]


@router.post("", response_model=WebhookCreated, status_code=status.HTTP_201_CREATED)
def create_webhook(
    payload: WebhookCreate,
    db: DocumentStore = Depends(get_db),
    caller_id: str = Depends(get_current_user_id),
):
    return svc.create_webhook(
        db,
        caller_id,
        url=payload.url,
        events=payload.events,
        tenant_id=payload.tenant_id,
    )


@router.patch("/{webhook_id}", response_model=OperationResult)
def update_webhook(
    webhook_id: str,
    patch: WebhookUpdate,
    db: DocumentStore = Depends(get_db),
    caller_id: str = Depends(get_current_user_id),
):
    return svc.update_webhook(
        db,
        caller_id,
        webhook_id,
        url=patch.url,
        events=patch.events,
        enabled=patch.enabled,
    )


@router.delete("/{webhook_id}", response_model=OperationResult)
def delete_webhook(
    webhook_id: str,
    db: DocumentStore = Depends(get_db),
    caller_id: str = Depends(get_current_user_id),
):
    return svc.delete_webhook(db, caller_id, webhook_id)


@router.post("/{webhook_id}/test", response_model=DeliveryResultOut, response_model_exclude_none=True)
async def test_webhook(
    webhook_id: str,
    db: DocumentStore = Depends(get_db),
    caller_id: str = Depends(get_current_user_id),
    http: httpx.AsyncClient = Depends(get_http_client),
):
    result = await svc.send_test_webhook(db, caller_id, webhook_id, client=http)
    return DeliveryResultOut.model_validate(result.model_dump())


@router.get("/{webhook_id}/deliveries", response_model=List[DeliveryLogOut])
def list_deliveries(
    webhook_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: DocumentStore = Depends(get_db),
    caller_id: str = Depends(get_current_user_id),
):
    logs = svc.list_deliveries(db, caller_id, webhook_id, limit=limit)
    return [DeliveryLogOut.model_validate(l.model_dump()) for l in logs]
