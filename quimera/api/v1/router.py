# quimera/api/v1/router.py
from fastapi import APIRouter

from quimera.api.v1.endpoints import events as events_endpoints
from quimera.api.v1.endpoints import health
from quimera.api.v1.endpoints import webhooks as webhooks_endpoints

api_router = APIRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(webhooks_endpoints.router)  # /webhooks
api_router.include_router(events_endpoints.router)  # /events
