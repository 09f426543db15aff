"""Document-change adapters that turn tenant/project/lead events into webhook dispatches.

Every producer targets the *agency* tenant: the changed tenant's
``ownerTenantId`` when set, otherwise the tenant itself. New event sources
must resolve their target through :func:`resolve_agency_tenant`.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from quimera.db.collections import COLLECTION_TENANTS, doc_path
from quimera.db.store import DocumentStore
from quimera.models.webhook import DeliveryResult
from quimera.services.webhook_service import dispatch_webhook_event

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def resolve_agency_tenant(db: DocumentStore, tenant_id: str) -> str:
    tenant = db.get(doc_path(COLLECTION_TENANTS, tenant_id)) or {}
    return tenant.get("ownerTenantId") or tenant_id


async def on_tenant_created(
    db: DocumentStore,
    tenant_id: str,
    data: Dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> List[DeliveryResult]:
    # Solo sub-tenants (clientes de una agencia); la agencia no se notifica a sí misma
    owner = (data or {}).get("ownerTenantId")
    if not owner:
        return []
    return await dispatch_webhook_event(
        db,
        owner,
        "client.created",
        {
            "clientId": tenant_id,
            "clientName": data.get("name"),
            "clientEmail": data.get("ownerEmail"),
            "plan": data.get("subscriptionPlan"),
        },
        client=client,
    )


async def on_project_updated(
    db: DocumentStore,
    tenant_id: str,
    project_id: str,
    before: Dict[str, Any],
    after: Dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> List[DeliveryResult]:
    was_published = (before or {}).get("status") == "published"
    is_published = (after or {}).get("status") == "published"
    if was_published or not is_published:
        return []

    agency_id = await asyncio.to_thread(resolve_agency_tenant, db, tenant_id)
    return await dispatch_webhook_event(
        db,
        agency_id,
        "project.published",
        {
            "projectId": project_id,
            "projectName": after.get("name"),
            "clientTenantId": tenant_id,
            "publishedAt": _now_iso(),
        },
        client=client,
    )


async def on_lead_created(
    db: DocumentStore,
    tenant_id: str,
    lead_id: str,
    data: Dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> List[DeliveryResult]:
    data = data or {}
    agency_id = await asyncio.to_thread(resolve_agency_tenant, db, tenant_id)
    return await dispatch_webhook_event(
        db,
        agency_id,
        "lead.captured",
        {
            "leadId": lead_id,
            "email": data.get("email"),
            "name": data.get("name"),
            "source": data.get("source"),
            "clientTenantId": tenant_id,
            "capturedAt": _now_iso(),
        },
        client=client,
    )


async def handle_document_change(
    db: DocumentStore,
    path: str,
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> List[DeliveryResult]:
    """
    Route a raw document change to its adapter by path.

    ``before`` is None for creations and ``after`` is None for deletions.
    Paths without a bound producer are ignored.
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts or parts[0] != COLLECTION_TENANTS:
        return []

    if len(parts) == 2 and before is None and after is not None:
        return await on_tenant_created(db, parts[1], after, client=client)

    if len(parts) == 4 and parts[2] == "projects" and before is not None and after is not None:
        return await on_project_updated(db, parts[1], parts[3], before, after, client=client)

    if len(parts) == 4 and parts[2] == "leads" and before is None and after is not None:
        return await on_lead_created(db, parts[1], parts[3], after, client=client)

    logger.debug("No webhook producer bound to %s", path)
    return []
