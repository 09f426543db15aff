# quimera/services/authz.py
# ── Verificación de permisos: admin de plataforma o membresía con rol de gestión
from __future__ import annotations

from typing import Optional

from quimera.core.settings import settings
from quimera.db.collections import COLLECTION_TENANT_MEMBERS, COLLECTION_USERS, doc_path
from quimera.db.store import DocumentStore
from quimera.models.tenant import WEBHOOK_MANAGER_ROLES


def is_platform_admin(db: DocumentStore, user_id: str) -> bool:
    """Platform Owner/SuperAdmin: users/{uid}.role in PLATFORM_ADMIN_ROLES."""
    if not user_id:
        return False
    user = db.get(doc_path(COLLECTION_USERS, user_id)) or {}
    role = str(user.get("role") or "").lower()
    return role in {r.lower() for r in settings.PLATFORM_ADMIN_ROLES}


def find_managed_tenant(db: DocumentStore, user_id: str) -> Optional[str]:
    """First tenant where the user holds a webhook-manager role."""
    snaps = db.query(
        COLLECTION_TENANT_MEMBERS,
        [("userId", "==", user_id), ("role", "in", list(WEBHOOK_MANAGER_ROLES))],
        limit=1,
    )
    if not snaps:
        return None
    return snaps[0].data.get("tenantId")


def has_manager_membership(db: DocumentStore, user_id: str, tenant_id: str) -> bool:
    snaps = db.query(
        COLLECTION_TENANT_MEMBERS,
        [
            ("userId", "==", user_id),
            ("tenantId", "==", tenant_id),
            ("role", "in", list(WEBHOOK_MANAGER_ROLES)),
        ],
        limit=1,
    )
    return bool(snaps)


def can_manage_webhooks_for(db: DocumentStore, user_id: str, tenant_id: str) -> bool:
    """
    Único predicado de autorización para crear/editar/borrar/probar webhooks.
    Admin de plataforma -> siempre; si no, membresía con rol de gestión en el tenant.
    """
    if not user_id or not tenant_id:
        return False
    if is_platform_admin(db, user_id):
        return True
    return has_manager_membership(db, user_id, tenant_id)
