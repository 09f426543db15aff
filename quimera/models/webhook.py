# quimera/models/webhook.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple, get_args

from pydantic import BaseModel

from quimera.models.base import FirestoreModel

WebhookEventType = Literal[
    "client.created",
    "client.updated",
    "client.deleted",
    "project.published",
    "project.unpublished",
    "lead.captured",
    "payment.received",
    "subscription.changed",
    "ai_credits.low",
    "invoice.created",
]

WEBHOOK_EVENT_TYPES: Tuple[str, ...] = get_args(WebhookEventType)

DeliveryStatus = Literal["success", "failed", "pending"]


class WebhookConfig(FirestoreModel):
    id: str = ""
    tenant_id: str
    url: str
    # HMAC key; nunca se devuelve por las APIs de lectura
    secret: str = ""
    events: List[str] = []
    enabled: bool = True
    # Max attempts; only honoured when WEBHOOKS_RETRY_ENABLED is on
    retry_count: int = 3
    last_triggered_at: Optional[datetime] = None
    last_status: Optional[Literal["success", "failed"]] = None
    created_at: Optional[Any] = None
    updated_at: Optional[Any] = None

    def subscribes_to(self, event: str) -> bool:
        return self.enabled and event in (self.events or [])


class WebhookDeliveryLog(FirestoreModel):
    id: str = ""
    webhook_id: str
    tenant_id: str
    event: str
    url: str
    status: DeliveryStatus
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration: int = 0
    attempt_number: int = 1
    created_at: Optional[Any] = None


class WebhookPayload(FirestoreModel):
    event: str
    timestamp: str
    tenant_id: str
    data: Dict[str, Any] = {}


class DeliveryResult(BaseModel):
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
