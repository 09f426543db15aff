from __future__ import annotations

import json
from typing import List, Union

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_list(v, default: List[str]) -> List[str]:
    """
    Acepta:
    - JSON list válido: '["a","b"]'
    - Lista malformada con corchetes sin comillas: [a,b]
    - CSV sin corchetes: 'a,b'
    - Vacío / None -> default
    """
    if v in (None, "", [], ()):
        return list(default)
    if isinstance(v, (list, tuple)):
        return [str(x) for x in v]
    if isinstance(v, str):
        s = v.strip()
        if s.startswith("[") and s.endswith("]"):
            try:
                parsed = json.loads(s)
                if isinstance(parsed, list):
                    return [str(x) for x in parsed]
            except ValueError:
                s = s[1:-1]
        return [item.strip().strip('"').strip("'") for item in s.split(",") if item.strip()]
    return v


class Settings(BaseSettings):
    # ============== App / API ==============
    APP_NAME: str = "Quimera Agency Core"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ============== Auth ==============
    # "jwt" -> HS256 tokens (python-jose); "firebase" -> Firebase ID tokens
    AUTH_PROVIDER: str = "jwt"
    JWT_SECRET_KEY: str = "dev-secret"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60)

    # users/{uid}.role values with full platform access
    PLATFORM_ADMIN_ROLES: List[str] = Field(default_factory=lambda: ["owner", "superadmin"])

    # ============== Data ==============
    # "firestore" | "memory"
    DATA_BACKEND: str = "firestore"
    FIREBASE_CREDENTIALS_PATH: str | None = None
    FIREBASE_PROJECT_ID: str | None = None

    # ================= CORS =================
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v):
        return _split_list(v, [])

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return [str(x) for x in (self.BACKEND_CORS_ORIGINS or [])]

    # ============== Webhooks ==============
    WEBHOOKS_ENABLED: bool = True
    WEBHOOKS_TIMEOUT_SECONDS: float = 30.0
    WEBHOOKS_RESPONSE_BODY_LIMIT: int = 1000
    WEBHOOKS_SECRET_BYTES: int = 32
    WEBHOOKS_DEFAULT_RETRY_COUNT: int = 3
    # Off: one dispatch = one attempt. On: up to config.retryCount attempts.
    WEBHOOKS_RETRY_ENABLED: bool = False
    WEBHOOKS_BACKOFF_SECONDS: float = 0.5
    # 0 = unbounded fan-out
    WEBHOOKS_MAX_CONCURRENCY: int = 0

    # Shared secret for POST /events/firestore; empty disables the receiver
    EVENTS_INGEST_TOKEN: str = ""

    @field_validator("PLATFORM_ADMIN_ROLES", mode="before")
    @classmethod
    def _parse_admin_roles(cls, v):
        return _split_list(v, ["owner", "superadmin"])

    # ============== Migration ==============
    MIGRATION_DEFAULT_BATCH_SIZE: int = 10
    MIGRATION_USE_LOCKS: bool = True
    # Locks older than this belong to a killed run and may be taken over
    MIGRATION_LOCK_TTL_SECONDS: int = 3600
    MIGRATION_DEFAULT_LANGUAGE: str = "es"
    MIGRATION_DEFAULT_TIMEZONE: str = "America/Mexico_City"

    # ============== Pydantic v2 ==============
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
