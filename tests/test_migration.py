# tests/test_migration.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from quimera.core.settings import settings
from quimera.db.memory import InMemoryStore
from quimera.services.migration_service import (
    NESTED_COLLECTIONS,
    MigrationOptions,
    find_users_to_migrate,
    generate_slug,
    get_default_limits_for_plan,
    lock_is_stale,
    migrate,
    migrate_collection,
    migrate_user_to_tenant,
    tenant_slug,
)
from scripts.migrate_to_multi_tenant import main as cli_main
from scripts.migrate_to_multi_tenant import parse_args


def _seed_user(store: InMemoryStore, uid: str = "user123456", **fields):
    data = {"name": "Acme", "email": "ceo@acme.io", "subscriptionPlan": "pro", **fields}
    store.set(f"users/{uid}", data)
    return uid


def _seed_legacy_data(store: InMemoryStore, uid: str):
    store.set(f"users/{uid}/projects/p1", {"name": "Landing", "status": "draft"})
    store.set(f"users/{uid}/projects/p1/ecommerce/e1", {"enabled": True})
    store.set(f"users/{uid}/projects/p1/settings/s1", {"theme": "dark"})
    store.set(f"users/{uid}/projects/p1/emailAudiences/a1", {"name": "All"})
    store.set(f"users/{uid}/posts/post1", {"title": "Hello"})
    store.set(f"users/{uid}/leads/l1", {"email": "lead@x.io"})
    store.set(f"users/{uid}/leads/l1/activities/act1", {"type": "call"})
    store.set(f"users/{uid}/files/f1", {"name": "logo.png"})
    store.set(f"users/{uid}/stores/st1", {"name": "Shop"})
    store.set(f"users/{uid}/stores/st1/products/pr1", {"sku": "A"})
    store.set(f"users/{uid}/stores/st1/orders/o1", {"total": 10})
    store.set(f"users/{uid}/domains/d1", {"host": "acme.io"})


# -----------------------------
# Helpers puros
# -----------------------------
@pytest.mark.parametrize(
    "name, expected",
    [
        ("Acme", "acme"),
        ("Crème Brûlée & Co!", "creme-brulee-co"),
        ("  --Hola   Mundo--  ", "hola-mundo"),
        ("x" * 80, "x" * 50),
    ],
)
def test_generate_slug(name, expected):
    assert generate_slug(name) == expected


def test_plan_limits():
    pro = get_default_limits_for_plan("pro")
    assert (pro.max_projects, pro.max_users, pro.max_storage_gb, pro.max_ai_credits) == (20, 5, 50, 1000)
    assert get_default_limits_for_plan("enterprise").max_projects == 100
    assert get_default_limits_for_plan("platinum") == get_default_limits_for_plan("free")
    assert get_default_limits_for_plan(None).max_ai_credits == 100


def test_nested_collection_table():
    assert list(NESTED_COLLECTIONS) == ["projects", "posts", "leads", "files", "stores", "domains"]
    assert NESTED_COLLECTIONS["projects"] == ("ecommerce", "settings", "emailAudiences", "emailCampaigns", "emailLogs")
    assert NESTED_COLLECTIONS["leads"] == ("activities",)
    assert len(NESTED_COLLECTIONS["stores"]) == 9


# -----------------------------
# Migración
# -----------------------------
def test_pro_user_gets_pro_limits_and_owner_membership(store):
    uid = _seed_user(store)
    report = migrate(store, MigrationOptions(user_id=uid))

    assert report.users_processed == 1
    assert report.tenants_created == 1
    tenant = store.get(f"tenants/{uid}")
    assert tenant["limits"]["maxProjects"] == 20
    assert tenant["limits"]["maxStorageGB"] == 50
    assert tenant["slug"] == "acme-user12"
    assert tenant["type"] == "individual"
    assert tenant["ownerUserId"] == uid
    assert tenant["branding"]["companyName"] == "Acme"
    assert tenant["settings"]["defaultMemberRole"] == "agency_member"

    member = store.get(f"tenantMembers/{uid}_{uid}")
    assert member["role"] == "agency_owner"
    assert member["userEmail"] == "ceo@acme.io"
    assert all(member["permissions"].values())
    assert "canManageCMS" in member["permissions"]

    user = store.get(f"users/{uid}")
    assert user["migratedToMultiTenant"] is True
    assert user["tenantId"] == uid
    assert user["additionalTenants"] == [uid]


def test_tenant_name_falls_back_to_email_and_plan_field(store):
    uid = _seed_user(store, "u-email", name=None, subscriptionPlan=None, plan="enterprise")
    migrate(store, MigrationOptions(user_id=uid))
    tenant = store.get(f"tenants/{uid}")
    assert tenant["name"] == "ceo"
    assert tenant["subscriptionPlan"] == "enterprise"


def test_same_name_users_get_distinct_slugs(store):
    _seed_user(store, "aaaaaa111")
    _seed_user(store, "bbbbbb222")
    report = migrate(store, MigrationOptions(batch_size=10))

    assert report.users_processed == 2
    slugs = {store.get("tenants/aaaaaa111")["slug"], store.get("tenants/bbbbbb222")["slug"]}
    assert slugs == {"acme-aaaaaa", "acme-bbbbbb"}
    assert tenant_slug("Acme", "aaaaaa111") != tenant_slug("Acme", "bbbbbb222")


def test_nested_collections_are_complete(store):
    uid = _seed_user(store)
    _seed_legacy_data(store, uid)

    report = migrate(store, MigrationOptions(user_id=uid))

    base = f"tenants/{uid}"
    for sub in ("ecommerce", "settings", "emailAudiences"):
        assert store.count(f"{base}/projects/p1/{sub}") == 1
    assert store.count(f"{base}/leads/l1/activities") == 1
    assert store.count(f"{base}/stores/st1/products") == 1
    assert store.count(f"{base}/stores/st1/orders") == 1

    copied = store.get(f"{base}/projects/p1")
    assert copied["name"] == "Landing"
    assert copied["originalPath"] == f"users/{uid}/projects/p1"
    assert copied["migratedAt"] is not None
    assert store.get(f"{base}/projects/p1/settings/s1")["originalPath"] == f"users/{uid}/projects/p1/settings/s1"

    assert (report.projects_migrated, report.posts_migrated, report.leads_migrated) == (1, 1, 1)
    assert (report.files_migrated, report.stores_migrated, report.domains_migrated) == (1, 1, 1)
    assert store.get(base)["usage"]["projectCount"] == 1

    # copia, no movimiento
    assert store.get(f"users/{uid}/projects/p1") == {"name": "Landing", "status": "draft"}


def test_rerun_without_guard_does_not_duplicate(store):
    uid = _seed_user(store)
    _seed_legacy_data(store, uid)
    user = store.get(f"users/{uid}")

    migrate_user_to_tenant(store, uid, user, MigrationOptions())
    first = store.count(f"tenants/{uid}/projects"), store.count(f"tenants/{uid}/stores/st1/products")
    migrate_user_to_tenant(store, uid, user, MigrationOptions())
    second = store.count(f"tenants/{uid}/projects"), store.count(f"tenants/{uid}/stores/st1/products")

    assert first == second == (1, 1)
    assert store.count("tenantMembers") == 1


def test_guard_skips_already_migrated_users(store):
    uid = _seed_user(store)
    assert migrate(store, MigrationOptions(user_id=uid)).users_processed == 1

    again_single = migrate(store, MigrationOptions(user_id=uid))
    again_batch = migrate(store, MigrationOptions(batch_size=10))
    assert again_single.users_processed == 0
    assert again_batch.users_processed == 0


def test_batch_limit_and_users_without_flag(store):
    for i in range(3):
        _seed_user(store, f"user{i}")
    store.set("users/done", {"name": "Done", "migratedToMultiTenant": True})

    first = migrate(store, MigrationOptions(batch_size=2))
    second = migrate(store, MigrationOptions(batch_size=2))

    assert first.users_processed == 2
    assert second.users_processed == 1
    assert store.get("tenants/done") is None


class _CountingStore(InMemoryStore):
    def __init__(self):
        super().__init__()
        self.read = 0

    def query(self, collection_path, filters=(), limit=None, start_after=None):
        page = super().query(collection_path, filters, limit=limit, start_after=start_after)
        if collection_path == "users":
            self.read += len(page)
        return page


def test_batch_selection_reads_only_what_it_needs():
    store = _CountingStore()
    for i in range(5):
        store.set(f"users/a{i}", {"name": "Done", "migratedToMultiTenant": True})
    for i in range(40):
        _seed_user(store, f"b{i:02d}")

    users = find_users_to_migrate(store, 3)

    assert [uid for uid, _ in users] == ["b00", "b01", "b02"]
    # tres páginas de 3: a0-a2, a3-b00, b01-b03
    assert store.read == 9


def test_batch_selection_walks_past_migrated_pages(store):
    for i in range(7):
        store.set(f"users/a{i}", {"migratedToMultiTenant": True})
    _seed_user(store, "z1")

    assert [uid for uid, _ in find_users_to_migrate(store, 2)] == ["z1"]


def test_unknown_user_is_a_noop(store):
    report = migrate(store, MigrationOptions(user_id="ghost"))
    assert report.users_processed == 0
    assert store.count("tenants") == 0


def test_dry_run_writes_nothing(store, caplog):
    uid = _seed_user(store)
    _seed_legacy_data(store, uid)
    writes_before = store.writes
    caplog.set_level(logging.INFO, logger="quimera.services.migration_service")

    report = migrate(store, MigrationOptions(dry_run=True, user_id=uid))

    assert store.writes == writes_before
    assert store.count("tenants") == 0
    assert store.count("tenantMembers") == 0
    assert store.count(f"tenants/{uid}/projects") == 0
    assert store.get(f"users/{uid}").get("migratedToMultiTenant") is None
    assert report.users_processed == 1
    assert report.tenants_created == 0
    assert report.projects_migrated == 1
    assert "[DRY RUN] Would migrate document: p1" in caplog.text
    assert "[DRY RUN] Would create tenant" in caplog.text


class _FlakyStore(InMemoryStore):
    def __init__(self, broken: str):
        super().__init__()
        self.broken = broken

    def list_documents(self, collection_path):
        if collection_path == self.broken:
            raise RuntimeError("deadline exceeded")
        return super().list_documents(collection_path)


def test_collection_failure_is_reported_and_run_continues():
    store = _FlakyStore("users/u1/posts")
    _seed_user(store, "u1")
    _seed_legacy_data(store, "u1")

    report = migrate(store, MigrationOptions(user_id="u1"))

    assert report.errors == ["User u1 posts: deadline exceeded"]
    assert report.posts_migrated == 0
    assert report.domains_migrated == 1
    assert store.get("users/u1")["migratedToMultiTenant"] is True


def test_held_lock_skips_user(store):
    uid = _seed_user(store)
    store.create(f"migrationLocks/{uid}", {"userId": uid, "claimedAt": datetime.now(timezone.utc)})

    report = migrate(store, MigrationOptions(user_id=uid))

    assert report.users_processed == 0
    assert report.errors == [f"User {uid} lock: migration already in progress"]
    assert store.get(f"tenants/{uid}") is None


def test_stale_lock_from_killed_run_is_taken_over(store):
    uid = _seed_user(store)
    _seed_legacy_data(store, uid)
    three_days_ago = datetime.now(timezone.utc) - timedelta(days=3)
    store.create(f"migrationLocks/{uid}", {"userId": uid, "claimedAt": three_days_ago})

    report = migrate(store, MigrationOptions(user_id=uid))

    assert report.errors == []
    assert report.users_processed == 1
    assert store.get(f"tenants/{uid}") is not None
    assert store.get(f"users/{uid}")["migratedToMultiTenant"] is True
    assert store.count("migrationLocks") == 0


def test_lock_ttl_is_configurable(monkeypatch):
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    lock = {"claimedAt": now - timedelta(minutes=10)}

    monkeypatch.setattr(settings, "MIGRATION_LOCK_TTL_SECONDS", 3600)
    assert lock_is_stale(lock, now=now) is False
    monkeypatch.setattr(settings, "MIGRATION_LOCK_TTL_SECONDS", 300)
    assert lock_is_stale(lock, now=now) is True

    assert lock_is_stale({"claimedAt": "2024-05-01T11:59:00Z"}, now=now) is False
    assert lock_is_stale({"claimedAt": datetime(2024, 5, 1, 11, 59)}, now=now) is False
    assert lock_is_stale({"userId": "u1"}, now=now) is True


def test_lock_is_released(store, monkeypatch):
    monkeypatch.setattr(settings, "MIGRATION_USE_LOCKS", True)
    uid = _seed_user(store)
    migrate(store, MigrationOptions(user_id=uid))
    assert store.count("migrationLocks") == 0


def test_migrate_collection_returns_count(store):
    store.set("users/u1/posts/a", {"t": 1})
    store.set("users/u1/posts/b", {"t": 2})
    assert migrate_collection(store, "users/u1/posts", "tenants/u1/posts") == 2
    assert store.count("tenants/u1/posts") == 2


# -----------------------------
# CLI
# -----------------------------
def test_parse_args():
    opts = parse_args(["--dry-run", "--user=abc", "--batch=25"])
    assert (opts.dry_run, opts.user_id, opts.batch_size) == (True, "abc", 25)
    defaults = parse_args([])
    assert (defaults.dry_run, defaults.user_id, defaults.batch_size) == (False, None, 10)


def test_cli_success_prints_summary(store, capsys):
    uid = _seed_user(store)
    _seed_legacy_data(store, uid)

    code = cli_main(["--user=" + uid], db=store)

    out = capsys.readouterr().out
    assert code == 0
    assert "Users processed: 1" in out
    assert "Projects migrated: 1" in out
    assert "Migration completed successfully!" in out


class _DownStore(InMemoryStore):
    def query(self, collection_path, filters=(), limit=None, start_after=None):
        raise RuntimeError("firestore unreachable")


def test_cli_fatal_error_exits_1(capsys):
    code = cli_main(["--batch=5"], db=_DownStore())
    assert code == 1
    assert "Migration failed: firestore unreachable" in capsys.readouterr().out
