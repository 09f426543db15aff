from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import secrets
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from quimera.core.settings import settings
from quimera.db.collections import (
    COLLECTION_WEBHOOK_CONFIGS,
    COLLECTION_WEBHOOK_DELIVERY_LOGS,
    doc_path,
)
from quimera.db.store import SERVER_TIMESTAMP, DocumentStore
from quimera.models.webhook import (
    DeliveryResult,
    WebhookConfig,
    WebhookDeliveryLog,
    WebhookPayload,
)

logger = logging.getLogger(__name__)


def generate_secret(nbytes: Optional[int] = None) -> str:
    return secrets.token_hex(nbytes or settings.WEBHOOKS_SECRET_BYTES)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_payload(
    tenant_id: str,
    event: str,
    data: Dict[str, Any],
    timestamp: Optional[str] = None,
) -> WebhookPayload:
    return WebhookPayload(event=event, timestamp=timestamp or _now_iso(), tenant_id=tenant_id, data=data or {})


def serialize_payload(payload: WebhookPayload) -> bytes:
    # Cuerpo estable, sin espacios; este es el texto que se firma
    wire = {
        "event": payload.event,
        "timestamp": payload.timestamp,
        "tenantId": payload.tenant_id,
        "data": payload.data,
    }
    return json.dumps(wire, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def sign_payload(secret: str, body_bytes: bytes) -> str:
    """HMAC-SHA256 (hex) of the exact request body."""
    return hmac.new(secret.encode("utf-8"), body_bytes, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body_bytes: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign_payload(secret, body_bytes), signature or "")


def _error_message(exc: BaseException) -> str:
    msg = str(exc)
    return msg if msg else exc.__class__.__name__


# -----------------------------
# Bookkeeping
# -----------------------------
def log_delivery(db: DocumentStore, log: WebhookDeliveryLog) -> str:
    doc = log.to_document()
    doc["createdAt"] = SERVER_TIMESTAMP
    return db.add(COLLECTION_WEBHOOK_DELIVERY_LOGS, doc)


def _record_attempt(db: DocumentStore, config: WebhookConfig, log: WebhookDeliveryLog) -> None:
    # Un fallo de bitácora no debe convertirse en fallo de entrega
    try:
        log_delivery(db, log)
    except Exception:
        logger.exception("Could not write delivery log for webhook %s", config.id)
    try:
        db.update(
            doc_path(COLLECTION_WEBHOOK_CONFIGS, config.id),
            {
                "lastTriggeredAt": SERVER_TIMESTAMP,
                "lastStatus": "success" if log.status == "success" else "failed",
            },
        )
    except Exception:
        logger.exception("Could not update lastStatus for webhook %s", config.id)


# -----------------------------
# Delivery (one call = one attempt)
# -----------------------------
@asynccontextmanager
async def _client_scope(client: Optional[httpx.AsyncClient]) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.WEBHOOKS_TIMEOUT_SECONDS) as own:
        yield own


async def deliver_webhook(
    db: DocumentStore,
    config: WebhookConfig,
    event: str,
    data: Dict[str, Any],
    attempt_number: int = 1,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    """
    Firma y envía un payload a config.url. Nunca lanza: cualquier error de red,
    timeout o status no-2xx se devuelve como DeliveryResult(success=False).
    Siempre deja una fila en webhookDeliveryLogs y actualiza lastStatus.
    """
    timeout = float(settings.WEBHOOKS_TIMEOUT_SECONDS)
    limit = int(settings.WEBHOOKS_RESPONSE_BODY_LIMIT)
    started = time.monotonic()

    log = WebhookDeliveryLog(
        webhook_id=config.id,
        tenant_id=config.tenant_id,
        event=event,
        url=config.url,
        status="pending",
        attempt_number=attempt_number,
    )

    try:
        payload = build_payload(config.tenant_id, event, data)
        body = serialize_payload(payload)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": sign_payload(config.secret, body),
            "X-Webhook-Event": event,
            "X-Webhook-Timestamp": payload.timestamp,
        }
        async with _client_scope(client) as http:
            resp = await asyncio.wait_for(
                http.post(config.url, content=body, headers=headers, timeout=timeout),
                timeout=timeout,
            )
        ok = 200 <= resp.status_code < 300
        log.status = "success" if ok else "failed"
        log.status_code = resp.status_code
        log.response_body = resp.text[:limit]
        result = DeliveryResult(success=ok, status_code=resp.status_code)
    except asyncio.TimeoutError:
        log.status = "failed"
        log.error = f"Request timed out after {timeout:g}s"
        result = DeliveryResult(success=False, error=log.error)
    except Exception as exc:
        log.status = "failed"
        log.error = _error_message(exc)[:limit]
        result = DeliveryResult(success=False, error=log.error)

    log.duration = int((time.monotonic() - started) * 1000)
    await asyncio.to_thread(_record_attempt, db, config, log)

    if result.success:
        logger.info("Webhook %s delivered %s (HTTP %s, %sms)", config.id, event, result.status_code, log.duration)
    else:
        logger.warning(
            "Webhook %s failed %s attempt=%s status=%s error=%s",
            config.id, event, attempt_number, result.status_code, result.error,
        )
    return result


async def deliver_with_retries(
    db: DocumentStore,
    config: WebhookConfig,
    event: str,
    data: Dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    """Up to config.retry_count logged attempts with linear backoff."""
    max_attempts = max(1, int(config.retry_count or 1))
    result = DeliveryResult(success=False)
    for attempt in range(1, max_attempts + 1):
        result = await deliver_webhook(db, config, event, data, attempt, client=client)
        if result.success:
            return result
        if attempt < max_attempts:
            await asyncio.sleep(float(settings.WEBHOOKS_BACKOFF_SECONDS) * attempt)
    return result


# -----------------------------
# Dispatch (fan-out, settle-all)
# -----------------------------
def get_configs_for_event(db: DocumentStore, tenant_id: str, event: str) -> List[WebhookConfig]:
    snaps = db.query(
        COLLECTION_WEBHOOK_CONFIGS,
        [("tenantId", "==", tenant_id), ("enabled", "==", True)],
    )
    configs = [WebhookConfig.from_snapshot(s) for s in snaps]
    return [c for c in configs if c.tenant_id == tenant_id and c.subscribes_to(event)]


async def dispatch_webhook_event(
    db: DocumentStore,
    tenant_id: str,
    event: str,
    data: Dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> List[DeliveryResult]:
    if not settings.WEBHOOKS_ENABLED:
        return []

    configs = await asyncio.to_thread(get_configs_for_event, db, tenant_id, event)
    if not configs:
        return []

    cap = int(settings.WEBHOOKS_MAX_CONCURRENCY or 0)
    sem = asyncio.Semaphore(cap) if cap > 0 else None

    async with _client_scope(client) as http:

        async def _one(cfg: WebhookConfig) -> DeliveryResult:
            if settings.WEBHOOKS_RETRY_ENABLED:
                call = deliver_with_retries(db, cfg, event, data, client=http)
            else:
                call = deliver_webhook(db, cfg, event, data, 1, client=http)
            if sem is None:
                return await call
            async with sem:
                return await call

        outcomes = await asyncio.gather(*(_one(c) for c in configs), return_exceptions=True)

    results: List[DeliveryResult] = []
    for cfg, outcome in zip(configs, outcomes):
        if isinstance(outcome, BaseException):
            logger.error("Webhook %s raised during dispatch: %s", cfg.id, outcome)
            results.append(DeliveryResult(success=False, error=_error_message(outcome)))
        else:
            results.append(outcome)

    delivered = sum(1 for r in results if r.success)
    logger.info("Dispatched %s for tenant %s: %s/%s delivered", event, tenant_id, delivered, len(results))
    return results
