# quimera/deps/auth.py
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError

from quimera.core.errors import PermissionDenied, Unauthenticated
from quimera.core.settings import settings
from quimera.security.jwt import decode_token

# Reusable HTTP bearer scheme (non-fatal if header is missing)
_bearer = HTTPBearer(auto_error=False)


def _uid_from_jwt(token: str) -> str:
    try:
        payload = decode_token(token)
    except ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except JWTError:
        raise Unauthenticated("Invalid token")
    sub = payload.get("sub")
    if not sub:
        raise Unauthenticated("Invalid token")
    return str(sub)


def _uid_from_firebase(token: str) -> str:
    from firebase_admin import auth as fb_auth

    from quimera.db.firestore import get_firebase_app

    try:
        decoded = fb_auth.verify_id_token(token, app=get_firebase_app())
    except (ValueError, fb_auth.InvalidIdTokenError, fb_auth.ExpiredIdTokenError, fb_auth.RevokedIdTokenError):
        raise Unauthenticated("Invalid token")
    return str(decoded["uid"])


def resolve_uid(token: str) -> str:
    if (settings.AUTH_PROVIDER or "jwt").lower() == "firebase":
        return _uid_from_firebase(token)
    return _uid_from_jwt(token)


def get_current_user_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> str:
    if not creds or not creds.credentials:
        raise Unauthenticated("Authentication required")
    return resolve_uid(creds.credentials)


def require_events_token(
    x_events_token: Optional[str] = Header(None, alias="X-Events-Token"),
) -> None:
    expected = settings.EVENTS_INGEST_TOKEN
    if not expected:
        raise PermissionDenied("Event ingestion is disabled")
    if not x_events_token or not hmac.compare_digest(x_events_token, expected):
        raise Unauthenticated("Invalid events token")
