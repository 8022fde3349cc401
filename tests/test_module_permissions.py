import sqlite3
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dentalhub import database
from dentalhub.permissions import (
    ModuleAccessResolver,
    ModuleKey,
    NoTenantSelectedError,
    PermissionUpdateError,
)
from dentalhub.roles import PermissionRole


class FakeRuleStore:
    """In-memory rule store keyed by (tenant_id, module_key, role)."""

    def __init__(self) -> None:
        self.rows: dict = {}
        self.reads = 0
        self.writes = 0
        self.fail_reads = False
        self.fail_writes = False

    def list_module_permissions(self, tenant_id):
        self.reads += 1
        if self.fail_reads:
            raise sqlite3.OperationalError("database is locked")
        return [dict(row) for (row_tenant, _, _), row in self.rows.items() if row_tenant == tenant_id]

    def upsert_module_permission(self, tenant_id, corporation_id, module_key, role, allowed):
        self.writes += 1
        if self.fail_writes:
            raise sqlite3.OperationalError("disk I/O error")
        row = {
            "tenant_id": tenant_id,
            "corporation_id": corporation_id,
            "module_key": module_key,
            "role": role,
            "allowed": allowed,
        }
        self.rows[(tenant_id, module_key, role)] = row
        return row


@pytest.fixture()
def store() -> FakeRuleStore:
    return FakeRuleStore()


@pytest.fixture()
def resolver(store: FakeRuleStore) -> ModuleAccessResolver:
    return ModuleAccessResolver(store)


def test_tenant_without_rules_allows_every_module_and_role(resolver):
    access = resolver.for_context(1, current_role="staff")
    for module in ModuleKey:
        for role in PermissionRole:
            assert access.can_access_module(module, role) is True
    assert access.permissions == []


def test_override_denies_then_restores_access(resolver):
    access = resolver.for_context(1, current_role="admin")

    access.set_permission(ModuleKey.SCHEDULE, PermissionRole.STAFF, False)
    assert access.can_access_module("schedule", "staff") is False

    access.set_permission(ModuleKey.SCHEDULE, PermissionRole.STAFF, True)
    assert access.can_access_module("schedule", "staff") is True


def test_repeated_upsert_keeps_a_single_rule(resolver, store):
    access = resolver.for_context(1)
    access.set_permission("schedule", "staff", False)
    access.set_permission("schedule", "staff", False)

    matching = [rule for rule in access.permissions if rule.module_key == "schedule" and rule.role == "staff"]
    assert len(matching) == 1
    assert len(store.rows) == 1


def test_rule_for_one_role_leaves_other_roles_untouched(resolver):
    access = resolver.for_context(1)
    access.set_permission("schedule", "staff", False)

    assert access.can_access_module("schedule", "staff") is False
    assert access.can_access_module("schedule", "dentist") is True
    assert access.can_access_module("schedule", "hygienist") is True
    assert access.can_access_module("billing", "staff") is True


def test_example_scenario_staff_schedule_override(resolver):
    access = resolver.for_context(1, current_role="staff")
    assert access.can_access_module("schedule", "staff") is True

    access.set_permission("schedule", "staff", False)

    assert access.can_access_module("schedule", "staff") is False
    assert access.can_access_module("schedule", "dentist") is True


def test_effective_role_prefers_explicit_then_current_then_staff(resolver):
    admin_view = resolver.for_context(1, current_role="admin")
    admin_view.set_permission("reports", "staff", False)
    admin_view.set_permission("reports", "admin", False)

    assert admin_view.can_access_module("reports") is False
    assert admin_view.can_access_module("reports", "dentist") is True

    anonymous = resolver.for_context(1, current_role=None)
    assert anonymous.effective_role() == "staff"
    assert anonymous.can_access_module("reports") is False


def test_rules_are_scoped_to_their_tenant(resolver):
    resolver.for_context(1).set_permission("analytics", "dentist", False)

    assert resolver.for_context(1).can_access_module("analytics", "dentist") is False
    assert resolver.for_context(2).can_access_module("analytics", "dentist") is True


def test_checks_reuse_the_loaded_rule_set(resolver, store):
    access = resolver.for_context(1)
    for _ in range(5):
        access.can_access_module("patients", "staff")
    resolver.for_context(1).can_access_module("patients", "dentist")
    assert store.reads == 1


def test_read_failure_degrades_to_default_allow(resolver, store):
    store.rows[(1, "schedule", "staff")] = {
        "tenant_id": 1,
        "corporation_id": None,
        "module_key": "schedule",
        "role": "staff",
        "allowed": False,
    }
    store.fail_reads = True

    assert resolver.list_rules(1) == {}
    assert resolver.for_context(1).can_access_module("schedule", "staff") is True

    store.fail_reads = False
    access = resolver.for_context(1)
    assert [access.can_access_module("schedule", "staff") for _ in range(3)] == [False, False, False]


def test_failed_read_is_not_cached(resolver, store):
    store.fail_reads = True
    for _ in range(3):
        assert resolver.for_context(1).can_access_module("schedule", "staff") is True
    assert store.reads == 3

    store.fail_reads = False
    resolver.for_context(1).set_permission("schedule", "staff", False)
    reads_after_write = store.reads
    assert resolver.for_context(1).can_access_module("schedule", "staff") is False
    assert store.reads == reads_after_write


def test_unusable_row_is_skipped_without_dropping_other_rules(resolver, store):
    store.rows[(1, "schedule", "staff")] = {
        "tenant_id": 1,
        "corporation_id": None,
        "module_key": "schedule",
        "role": "staff",
        "allowed": False,
    }
    store.rows[(1, "schedule", "patient")] = {
        "tenant_id": 1,
        "corporation_id": None,
        "module_key": "schedule",
        "role": "patient",
        "allowed": False,
    }

    access = resolver.for_context(1)

    assert access.can_access_module("schedule", "staff") is False
    assert access.can_access_module("schedule", "patient") is True
    assert [(rule.module_key, rule.role) for rule in access.permissions] == [("schedule", "staff")]


def test_write_failure_raises_and_keeps_loaded_rules(resolver, store):
    access = resolver.for_context(1)
    access.set_permission("schedule", "staff", False)
    reads_before = store.reads
    store.fail_writes = True

    with pytest.raises(PermissionUpdateError):
        access.set_permission("schedule", "staff", True)

    assert access.can_access_module("schedule", "staff") is False
    assert store.reads == reads_before


def test_set_permission_without_tenant_is_rejected(resolver, store):
    access = resolver.for_context(None, current_role="admin")
    with pytest.raises(NoTenantSelectedError):
        access.set_permission("schedule", "staff", False)
    assert store.writes == 0
    assert access.can_access_module("schedule") is True


def test_corporation_is_stored_but_not_part_of_the_lookup(resolver, store):
    resolver.for_context(1, corporation_id="corp-a").set_permission("schedule", "staff", False)
    assert store.rows[(1, "schedule", "staff")]["corporation_id"] == "corp-a"

    other_corporation = resolver.for_context(1, corporation_id="corp-b")
    assert other_corporation.can_access_module("schedule", "staff") is False


def test_matrix_and_allowed_modules_reflect_overrides(resolver):
    access = resolver.for_context(1, current_role="hygienist")
    access.set_permission("xray_diagnostics", "hygienist", False)

    allowed = access.allowed_modules()
    assert ModuleKey.XRAY_DIAGNOSTICS not in allowed
    assert len(allowed) == len(ModuleKey) - 1

    row = next(item for item in access.matrix() if item["module_key"] == "xray_diagnostics")
    assert row["label"] == "X-Ray Diagnostics"
    assert row["roles"] == {"admin": True, "dentist": True, "hygienist": False, "staff": True}


def test_sqlite_store_enforces_one_rule_per_tenant_module_role(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_PATH", tmp_path / "rules.db")
    database.init_db()
    tenant = database.create_tenant({"name": "North", "clinic_code": "north"})

    resolver = ModuleAccessResolver(database)
    access = resolver.for_context(tenant["id"], corporation_id="corp-1")
    access.set_permission("schedule", "staff", False)
    access.set_permission("schedule", "staff", False)
    access.set_permission("schedule", "dentist", True)

    rows = database.list_module_permissions(tenant["id"])
    assert [(row["module_key"], row["role"], row["allowed"]) for row in rows] == [
        ("schedule", "dentist", True),
        ("schedule", "staff", False),
    ]
    assert all(row["corporation_id"] == "corp-1" for row in rows)
    assert access.can_access_module("schedule", "staff") is False
