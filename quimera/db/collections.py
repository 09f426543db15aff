"""Firestore collection names (schema-in-code).

Firestore has no DDL: collections appear on first write. These constants are
the single source of truth for the names shared by the webhook API, the
dispatcher and the migration engine.
"""

# Multi-tenant core
COLLECTION_TENANTS = "tenants"
COLLECTION_TENANT_MEMBERS = "tenantMembers"
COLLECTION_USERS = "users"

# Webhooks
COLLECTION_WEBHOOK_CONFIGS = "webhookConfigs"
COLLECTION_WEBHOOK_DELIVERY_LOGS = "webhookDeliveryLogs"

# Migration bookkeeping
COLLECTION_MIGRATION_LOCKS = "migrationLocks"

# Tenant-scoped subcollections
SUBCOLLECTION_PROJECTS = "projects"
SUBCOLLECTION_POSTS = "posts"
SUBCOLLECTION_LEADS = "leads"
SUBCOLLECTION_FILES = "files"
SUBCOLLECTION_STORES = "stores"
SUBCOLLECTION_DOMAINS = "domains"


def doc_path(*parts: str) -> str:
    return "/".join(str(p).strip("/") for p in parts)
