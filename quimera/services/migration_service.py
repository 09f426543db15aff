"""
Copy legacy per-user data (``users/{uid}/...``) into the multi-tenant layout
(``tenants/{tenantId}/...``).

Migration is additive: source documents are never deleted, every copied
document gains ``migratedAt`` and ``originalPath``, and target ids reuse the
source ids so a re-run overwrites instead of duplicating. Users flagged
``migratedToMultiTenant`` are skipped.

Failures inside one collection are reported and the run continues with the
next collection; failures creating the tenant or membership abort the run.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from quimera.core.settings import settings
from quimera.db.collections import (
    COLLECTION_MIGRATION_LOCKS,
    COLLECTION_TENANT_MEMBERS,
    COLLECTION_TENANTS,
    COLLECTION_USERS,
    SUBCOLLECTION_DOMAINS,
    SUBCOLLECTION_FILES,
    SUBCOLLECTION_LEADS,
    SUBCOLLECTION_POSTS,
    SUBCOLLECTION_PROJECTS,
    SUBCOLLECTION_STORES,
    doc_path,
)
from quimera.db.store import SERVER_TIMESTAMP, DocumentExists, DocumentStore
from quimera.models.tenant import (
    AGENCY_OWNER,
    TenantBranding,
    TenantLimits,
    TenantMembership,
    TenantPermissions,
    TenantSettings,
    TenantUsage,
)

logger = logging.getLogger(__name__)

# Orden de migración por usuario y subcolecciones anidadas de cada entidad
NESTED_COLLECTIONS: Dict[str, Tuple[str, ...]] = {
    SUBCOLLECTION_PROJECTS: ("ecommerce", "settings", "emailAudiences", "emailCampaigns", "emailLogs"),
    SUBCOLLECTION_POSTS: (),
    SUBCOLLECTION_LEADS: ("activities",),
    SUBCOLLECTION_FILES: (),
    SUBCOLLECTION_STORES: (
        "settings",
        "products",
        "categories",
        "orders",
        "customers",
        "discounts",
        "shippingZones",
        "reviews",
        "analytics",
    ),
    SUBCOLLECTION_DOMAINS: (),
}

PLAN_LIMITS: Dict[str, TenantLimits] = {
    "free": TenantLimits(max_projects=3, max_users=1, max_storage_gb=5, max_ai_credits=100),
    "pro": TenantLimits(max_projects=20, max_users=5, max_storage_gb=50, max_ai_credits=1000),
    "enterprise": TenantLimits(max_projects=100, max_users=50, max_storage_gb=500, max_ai_credits=10000),
}

# Política actual: el dueño migrado recibe todos los permisos
DEFAULT_PERMISSIONS = TenantPermissions()

SLUG_MAX_LEN = 50
SLUG_ID_SUFFIX_LEN = 6


def get_default_limits_for_plan(plan: Optional[str]) -> TenantLimits:
    return PLAN_LIMITS.get(plan or "free", PLAN_LIMITS["free"])


def generate_slug(name: str) -> str:
    s = unicodedata.normalize("NFD", (name or "").lower())
    s = "".join(ch for ch in s if unicodedata.category(ch) != "Mn")
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")[:SLUG_MAX_LEN]


def tenant_slug(name: str, tenant_id: str) -> str:
    return f"{generate_slug(name)}-{tenant_id[:SLUG_ID_SUFFIX_LEN]}"


# -----------------------------
# Resultados
# -----------------------------
@dataclass
class MigrationOptions:
    dry_run: bool = False
    user_id: Optional[str] = None
    batch_size: int = 10


@dataclass
class CollectionResult:
    collection: str
    count: int = 0
    error: Optional[str] = None


@dataclass
class UserMigrationResult:
    user_id: str
    tenant_id: str
    tenant_created: bool = False
    collections: List[CollectionResult] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [f"User {self.user_id} {c.collection}: {c.error}" for c in self.collections if c.error]

    def count_for(self, collection: str) -> int:
        return sum(c.count for c in self.collections if c.collection == collection)


# collection -> report attribute
_COUNT_FIELDS = {
    SUBCOLLECTION_PROJECTS: "projects_migrated",
    SUBCOLLECTION_POSTS: "posts_migrated",
    SUBCOLLECTION_LEADS: "leads_migrated",
    SUBCOLLECTION_FILES: "files_migrated",
    SUBCOLLECTION_STORES: "stores_migrated",
    SUBCOLLECTION_DOMAINS: "domains_migrated",
}


@dataclass
class MigrationReport:
    users_processed: int = 0
    tenants_created: int = 0
    projects_migrated: int = 0
    posts_migrated: int = 0
    leads_migrated: int = 0
    files_migrated: int = 0
    stores_migrated: int = 0
    domains_migrated: int = 0
    errors: List[str] = field(default_factory=list)

    def add(self, result: UserMigrationResult) -> "MigrationReport":
        self.users_processed += 1
        if result.tenant_created:
            self.tenants_created += 1
        for collection, attr in _COUNT_FIELDS.items():
            setattr(self, attr, getattr(self, attr) + result.count_for(collection))
        self.errors.extend(result.errors)
        return self

    def as_dict(self) -> Dict[str, Any]:
        return {
            "usersProcessed": self.users_processed,
            "tenantsCreated": self.tenants_created,
            "projectsMigrated": self.projects_migrated,
            "postsMigrated": self.posts_migrated,
            "leadsMigrated": self.leads_migrated,
            "filesMigrated": self.files_migrated,
            "storesMigrated": self.stores_migrated,
            "domainsMigrated": self.domains_migrated,
            "errors": list(self.errors),
        }

    def summary_lines(self) -> List[str]:
        lines = [
            f"Users processed: {self.users_processed}",
            f"Tenants created: {self.tenants_created}",
            f"Projects migrated: {self.projects_migrated}",
            f"Posts migrated: {self.posts_migrated}",
            f"Leads migrated: {self.leads_migrated}",
            f"Files migrated: {self.files_migrated}",
            f"Stores migrated: {self.stores_migrated}",
            f"Domains migrated: {self.domains_migrated}",
        ]
        if self.errors:
            lines.append("")
            lines.append(f"Errors ({len(self.errors)}):")
            lines.extend(f"  - {e}" for e in self.errors)
        return lines


# -----------------------------
# Copia de colecciones
# -----------------------------
def _copy_documents(
    db: DocumentStore,
    source: str,
    target: str,
    nested: Sequence[str],
    dry_run: bool,
) -> int:
    count = 0
    for snap in db.list_documents(source):
        if dry_run:
            logger.info("  [DRY RUN] Would migrate document: %s", snap.id)
        else:
            db.set(
                doc_path(target, snap.id),
                {**snap.data, "migratedAt": SERVER_TIMESTAMP, "originalPath": snap.path},
            )
        count += 1

        for name in nested:
            n = _copy_documents(db, doc_path(snap.path, name), doc_path(target, snap.id, name), (), dry_run)
            if n > 0:
                logger.info("    Migrated %s %s documents", n, name)
    return count


def migrate_collection(db: DocumentStore, source: str, target: str, dry_run: bool = False) -> int:
    return _copy_documents(db, source, target, (), dry_run)


def migrate_nested_collection(
    db: DocumentStore,
    source: str,
    target: str,
    nested_collections: Sequence[str],
    dry_run: bool = False,
) -> int:
    return _copy_documents(db, source, target, tuple(nested_collections), dry_run)


# -----------------------------
# Usuario -> tenant
# -----------------------------
def build_tenant_document(user_id: str, user_data: Dict[str, Any]) -> Dict[str, Any]:
    tenant_id = user_id
    email = user_data.get("email") or ""
    name = user_data.get("name") or (email.split("@")[0] if email else "") or "My Workspace"
    plan = user_data.get("subscriptionPlan") or user_data.get("plan") or "free"

    tenant_settings = TenantSettings(
        default_language=settings.MIGRATION_DEFAULT_LANGUAGE,
        timezone=settings.MIGRATION_DEFAULT_TIMEZONE,
    )
    return {
        "id": tenant_id,
        "name": name,
        "slug": tenant_slug(name, tenant_id),
        "type": "individual",
        "ownerUserId": user_id,
        "subscriptionPlan": plan,
        "status": "active",
        "limits": get_default_limits_for_plan(plan).to_document(),
        "usage": TenantUsage(project_count=0, user_count=1).to_document(),
        "branding": TenantBranding(company_name=name).to_document(),
        "settings": tenant_settings.to_document(),
        "migratedAt": SERVER_TIMESTAMP,
        "migratedFromUserId": user_id,
        "createdAt": user_data.get("createdAt") or SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }


def build_membership_document(tenant_id: str, user_id: str, user_data: Dict[str, Any]) -> Dict[str, Any]:
    return TenantMembership(
        tenant_id=tenant_id,
        user_id=user_id,
        role=AGENCY_OWNER,
        permissions=DEFAULT_PERMISSIONS.to_document(),
        invited_by=user_id,
        joined_at=SERVER_TIMESTAMP,
        user_name=user_data.get("name") or "",
        user_email=user_data.get("email") or "",
        user_photo_url=user_data.get("photoURL") or "",
    ).to_document()


def migrate_user_to_tenant(
    db: DocumentStore,
    user_id: str,
    user_data: Dict[str, Any],
    options: MigrationOptions,
) -> UserMigrationResult:
    dry_run = options.dry_run
    logger.info("Migrating user: %s (%s)", user_id, user_data.get("name") or user_data.get("email") or "unnamed")

    tenant_doc = build_tenant_document(user_id, user_data)
    tenant_id = tenant_doc["id"]
    result = UserMigrationResult(user_id=user_id, tenant_id=tenant_id)
    tenant_path = doc_path(COLLECTION_TENANTS, tenant_id)
    user_path = doc_path(COLLECTION_USERS, user_id)

    if dry_run:
        logger.info("  [DRY RUN] Would create tenant: %s", tenant_id)
    else:
        db.set(tenant_path, tenant_doc)
        result.tenant_created = True

    membership_id = TenantMembership.key(tenant_id, user_id)
    if dry_run:
        logger.info("  [DRY RUN] Would create membership: %s", membership_id)
    else:
        db.set(
            doc_path(COLLECTION_TENANT_MEMBERS, membership_id),
            build_membership_document(tenant_id, user_id, user_data),
        )

    for collection, nested in NESTED_COLLECTIONS.items():
        try:
            count = migrate_nested_collection(
                db,
                doc_path(user_path, collection),
                doc_path(tenant_path, collection),
                nested,
                dry_run,
            )
            logger.info("  Migrated %s %s", count, collection)
            result.collections.append(CollectionResult(collection, count))
            if collection == SUBCOLLECTION_PROJECTS and not dry_run and count > 0:
                db.update(tenant_path, {"usage.projectCount": count})
        except Exception as exc:
            logger.error("  Error migrating %s for user %s: %s", collection, user_id, exc)
            result.collections.append(CollectionResult(collection, 0, str(exc)))

    if not dry_run:
        db.update(
            user_path,
            {
                "tenantId": tenant_id,
                "additionalTenants": [tenant_id],
                "migratedToMultiTenant": True,
                "migratedAt": SERVER_TIMESTAMP,
            },
        )
    return result


# -----------------------------
# Lock por usuario
# -----------------------------
def lock_is_stale(lock: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """A lock whose claimedAt is older than MIGRATION_LOCK_TTL_SECONDS belongs to a dead run."""
    claimed_at = lock.get("claimedAt")
    if isinstance(claimed_at, str):
        try:
            claimed_at = datetime.fromisoformat(claimed_at.replace("Z", "+00:00"))
        except ValueError:
            claimed_at = None
    if not isinstance(claimed_at, datetime):
        return True
    if claimed_at.tzinfo is None:
        claimed_at = claimed_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return now - claimed_at > timedelta(seconds=settings.MIGRATION_LOCK_TTL_SECONDS)


def _claim_user(db: DocumentStore, user_id: str) -> bool:
    def _takeover(lock: Dict[str, Any]) -> bool:
        if not lock_is_stale(lock):
            return False
        logger.warning("Taking over stale migration lock for user %s (claimedAt=%s)", user_id, lock.get("claimedAt"))
        return True

    try:
        db.create_or_replace(
            doc_path(COLLECTION_MIGRATION_LOCKS, user_id),
            {"userId": user_id, "claimedAt": SERVER_TIMESTAMP},
            replace_if=_takeover,
        )
        return True
    except DocumentExists:
        return False


def _release_user(db: DocumentStore, user_id: str) -> None:
    db.delete(doc_path(COLLECTION_MIGRATION_LOCKS, user_id))


def _migrate_one(
    db: DocumentStore,
    user_id: str,
    user_data: Dict[str, Any],
    options: MigrationOptions,
    report: MigrationReport,
) -> None:
    use_lock = settings.MIGRATION_USE_LOCKS and not options.dry_run
    if not use_lock:
        report.add(migrate_user_to_tenant(db, user_id, user_data, options))
        return

    if not _claim_user(db, user_id):
        logger.warning("User %s is locked by another migration run. Skipping.", user_id)
        report.errors.append(f"User {user_id} lock: migration already in progress")
        return
    try:
        # Re-check under the lock; another run may have finished meanwhile
        fresh = db.get(doc_path(COLLECTION_USERS, user_id)) or user_data
        if fresh.get("migratedToMultiTenant") is True:
            logger.info("User %s already migrated. Skipping.", user_id)
            return
        report.add(migrate_user_to_tenant(db, user_id, fresh, options))
    finally:
        _release_user(db, user_id)


def find_users_to_migrate(db: DocumentStore, batch_size: int) -> List[Tuple[str, Dict[str, Any]]]:
    # Un filtro "!=" en Firestore excluiría usuarios sin el campo; paginamos y filtramos aquí
    out: List[Tuple[str, Dict[str, Any]]] = []
    cursor: Optional[str] = None
    while len(out) < batch_size:
        page = db.query(COLLECTION_USERS, limit=batch_size, start_after=cursor)
        for snap in page:
            if snap.data.get("migratedToMultiTenant") is True:
                continue
            out.append((snap.id, snap.data))
            if len(out) >= batch_size:
                break
        if len(page) < batch_size:
            break
        cursor = page[-1].id
    return out


def migrate(db: DocumentStore, options: MigrationOptions) -> MigrationReport:
    report = MigrationReport()
    logger.info(
        "Multi-tenant migration: mode=%s batch=%s user=%s",
        "DRY RUN" if options.dry_run else "LIVE",
        options.batch_size,
        options.user_id or "-",
    )

    if options.user_id:
        user_data = db.get(doc_path(COLLECTION_USERS, options.user_id))
        if user_data is None:
            logger.error("User not found: %s", options.user_id)
            return report
        if user_data.get("migratedToMultiTenant") is True:
            logger.info("User %s already migrated. Skipping.", options.user_id)
            return report
        _migrate_one(db, options.user_id, user_data, options, report)
        return report

    users = find_users_to_migrate(db, max(1, int(options.batch_size)))
    logger.info("Found %s users to migrate", len(users))
    for user_id, user_data in users:
        _migrate_one(db, user_id, user_data, options, report)
    return report
