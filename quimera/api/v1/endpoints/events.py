# quimera/api/v1/endpoints/events.py
from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends

from quimera.db.session import get_db
from quimera.db.store import DocumentStore
from quimera.deps.auth import require_events_token
from quimera.deps.http import get_http_client
from quimera.schemas.events import DocumentChange, DocumentChangeResult
from quimera.services.trigger_service import handle_document_change

router = APIRouter(prefix="/events", tags=["events"])


@router.post(
    "/firestore",
    response_model=DocumentChangeResult,
    dependencies=[Depends(require_events_token)],
)
async def receive_document_change(
    change: DocumentChange,
    db: DocumentStore = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Receptor de cambios de documentos (tenants, proyectos, leads).
    Las fallas de entrega no se propagan: el evento siempre se acepta.
    """
    results = await handle_document_change(db, change.path, change.before, change.after, client=http)
    return DocumentChangeResult(dispatched=len(results), delivered=sum(1 for r in results if r.success))
