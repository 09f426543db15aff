# quimera/schemas/webhook.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ===== Requests =====
class WebhookCreate(_CamelModel):
    url: str
    events: List[str]
    tenant_id: Optional[str] = None  # solo admins de plataforma lo eligen libremente


class WebhookUpdate(_CamelModel):
    url: Optional[str] = None
    events: Optional[List[str]] = None
    enabled: Optional[bool] = None


# ===== Responses =====
class WebhookCreated(_CamelModel):
    success: bool = True
    webhook_id: str
    secret: str  # única vez que se expone


class OperationResult(_CamelModel):
    success: bool = True


class WebhookOut(_CamelModel):
    """Config sin `secret`."""

    id: str
    tenant_id: str
    url: str
    events: List[str]
    enabled: bool
    retry_count: int
    last_triggered_at: Optional[datetime] = None
    last_status: Optional[str] = None


class DeliveryLogOut(_CamelModel):
    id: str
    webhook_id: str
    tenant_id: str
    event: str
    url: str
    status: str
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration: int
    attempt_number: int
    created_at: Optional[Any] = None


class DeliveryResultOut(_CamelModel):
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
