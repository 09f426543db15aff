from __future__ import annotations

from quimera.api.v1.router import api_router
from quimera.core.config import create_app
from quimera.core.logging import configure_logging
from quimera.core.settings import settings

configure_logging(settings.LOG_LEVEL)
app = create_app()

# API privada (Bearer)
app.include_router(api_router, prefix=settings.API_V1_STR)
