# quimera/models/tenant.py
from __future__ import annotations

from typing import Any, List, Optional

from quimera.models.base import FirestoreModel

AGENCY_OWNER = "agency_owner"
AGENCY_ADMIN = "agency_admin"
AGENCY_MEMBER = "agency_member"
OWNER = "owner"

# Roles de membresía que pueden administrar webhooks del tenant
WEBHOOK_MANAGER_ROLES = (AGENCY_OWNER, AGENCY_ADMIN, OWNER)



class TenantLimits(FirestoreModel):
    max_projects: int
    max_users: int
    max_storage_gb: int
    max_ai_credits: int

    # to_camel would give "maxStorageGb"
    def to_document(self, *, exclude_id: bool = True):
        return {
            "maxProjects": self.max_projects,
            "maxUsers": self.max_users,
            "maxStorageGB": self.max_storage_gb,
            "maxAiCredits": self.max_ai_credits,
        }


class TenantUsage(FirestoreModel):
    project_count: int = 0
    user_count: int = 1
    storage_used_gb: float = 0
    ai_credits_used: int = 0

    def to_document(self, *, exclude_id: bool = True):
        return {
            "projectCount": self.project_count,
            "userCount": self.user_count,
            "storageUsedGB": self.storage_used_gb,
            "aiCreditsUsed": self.ai_credits_used,
        }


class TenantBranding(FirestoreModel):
    primary_color: str = "#4f46e5"
    secondary_color: str = "#10b981"
    company_name: str = ""


class TenantSettings(FirestoreModel):
    allow_member_invites: bool = True
    default_member_role: str = AGENCY_MEMBER
    enabled_features: List[str] = ["projects", "cms", "leads"]
    require_two_factor: bool = False
    default_language: str = "es"
    timezone: str = "America/Mexico_City"


class TenantPermissions(FirestoreModel):
    can_manage_projects: bool = True
    can_manage_leads: bool = True
    can_manage_cms: bool = True
    can_manage_ecommerce: bool = True
    can_manage_files: bool = True
    can_manage_domains: bool = True
    can_invite_members: bool = True
    can_remove_members: bool = True
    can_view_analytics: bool = True
    can_manage_billing: bool = True
    can_manage_settings: bool = True
    can_export_data: bool = True

    def to_document(self, *, exclude_id: bool = True):
        doc = super().to_document(exclude_id=exclude_id)
        # to_camel would give "canManageCms"
        doc["canManageCMS"] = doc.pop("canManageCms")
        return doc


class TenantMembership(FirestoreModel):
    tenant_id: str
    user_id: str
    role: str
    permissions: Optional[Any] = None
    invited_by: Optional[str] = None
    joined_at: Optional[Any] = None
    user_name: str = ""
    user_email: str = ""
    user_photo_url: str = ""

    @staticmethod
    def key(tenant_id: str, user_id: str) -> str:
        return f"{tenant_id}_{user_id}"

    def to_document(self, *, exclude_id: bool = True):
        doc = super().to_document(exclude_id=exclude_id)
        # to_camel would give "userPhotoUrl"
        doc["userPhotoURL"] = doc.pop("userPhotoUrl", "")
        return doc
