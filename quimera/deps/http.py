# quimera/deps/http.py
from __future__ import annotations

from typing import AsyncIterator

import httpx

from quimera.core.settings import settings


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    """Outbound client for webhook deliveries made inside a request."""
    async with httpx.AsyncClient(timeout=settings.WEBHOOKS_TIMEOUT_SECONDS) as client:
        yield client
