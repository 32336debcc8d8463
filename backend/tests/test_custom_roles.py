"""Tests for the custom role store: CRUD, inheritance, templates, assignments."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from sekolah_rbac.auth.custom_roles import (
    DEFAULT_ROLE_TEMPLATES,
    CustomRoleStore,
    template_references,
)
from sekolah_rbac.auth.permissions import PERMISSIONS, ROLE_PERMISSION_MATRIX
from sekolah_rbac.schemas.roles import CustomRoleCreate, CustomRoleUpdate
from sekolah_rbac.storage.blobs import MemoryBlobStorage


class FailingStorage:
    """Storage whose every call blows up."""

    def load(self, key):
        raise RuntimeError("storage offline")

    def save(self, key, data):
        raise RuntimeError("storage offline")


class ReadOnlyStorage(MemoryBlobStorage):
    """Reads work; every write is refused."""

    def save(self, key, data):
        return False


@pytest.mark.unit
class TestCustomRoleCrud:
    """Create, read, update and delete custom roles."""

    def test_create_generates_id(self, role_store: CustomRoleStore):
        role = role_store.create(CustomRoleCreate(name="Coach", permissions=["content.read"]))

        assert role.id.startswith("custom_role_")
        assert role.is_custom is True
        assert role.created_at == role.updated_at
        assert role_store.get(role.id) == role

    def test_create_with_explicit_id(self, role_store: CustomRoleStore):
        role = role_store.create({"id": "coach", "name": "Coach"})

        assert role.id == "coach"
        assert [r.id for r in role_store.list()] == ["coach"]

    def test_duplicate_id_is_rejected(self, role_store: CustomRoleStore):
        role_store.create({"id": "coach", "name": "Coach"})

        assert role_store.create({"id": "coach", "name": "Other Coach"}) is None
        assert role_store.get("coach").name == "Coach"

    def test_get_missing(self, role_store: CustomRoleStore):
        assert role_store.get("missing") is None
        assert role_store.get("") is None

    def test_update(self, role_store: CustomRoleStore):
        role = role_store.create({"id": "coach", "name": "Coach", "base_role_id": "teacher"})

        updated = role_store.update("coach", CustomRoleUpdate(name="Head Coach", permissions=["osis.events"]))

        assert updated.name == "Head Coach"
        assert updated.permissions == ["osis.events"]
        assert updated.base_role_id == "teacher"
        assert updated.created_at == role.created_at
        assert updated.updated_at >= role.updated_at
        assert role_store.get("coach").name == "Head Coach"

    def test_update_can_clear_base_role(self, role_store: CustomRoleStore):
        role_store.create({"id": "coach", "name": "Coach", "base_role_id": "teacher"})

        updated = role_store.update("coach", {"base_role_id": None})

        assert updated.base_role_id is None
        assert updated.name == "Coach"

    def test_update_ignores_explicit_nulls(self, role_store: CustomRoleStore):
        role_store.create({"id": "coach", "name": "Coach", "permissions": ["content.read"]})

        updated = role_store.update("coach", {"name": None, "permissions": None})

        assert updated.name == "Coach"
        assert updated.permissions == ["content.read"]

    def test_update_missing(self, role_store: CustomRoleStore):
        assert role_store.update("missing", {"name": "X"}) is None

    def test_delete(self, role_store: CustomRoleStore):
        role_store.create({"id": "coach", "name": "Coach"})

        assert role_store.delete("coach") is True
        assert role_store.delete("coach") is False
        assert role_store.list() == []

    def test_state_survives_new_store_on_same_storage(self, storage: MemoryBlobStorage):
        CustomRoleStore(storage).create({"id": "coach", "name": "Coach"})

        assert CustomRoleStore(storage).get("coach").name == "Coach"

    def test_key_prefix_isolates_stores(self, storage: MemoryBlobStorage):
        CustomRoleStore(storage, key_prefix="school_a").create({"id": "coach", "name": "Coach"})

        assert CustomRoleStore(storage, key_prefix="school_b").list() == []


@pytest.mark.unit
class TestInheritance:
    """Effective permissions through inherits_from."""

    def test_chain_unions_permissions(self, role_store: CustomRoleStore):
        role_store.create({"id": "c", "name": "C", "permissions": ["osis.events"]})
        role_store.create({"id": "b", "name": "B", "permissions": ["ppdb.manage"], "inherits_from": ["c"]})
        role_store.create({"id": "a", "name": "A", "permissions": ["users.read"], "inherits_from": ["b"]})

        assert set(role_store.effective_permissions("a")) == {"users.read", "ppdb.manage", "osis.events"}

    def test_duplicates_are_removed(self, role_store: CustomRoleStore):
        role_store.create({"id": "b", "name": "B", "permissions": ["users.read", "content.read"]})
        role_store.create({"id": "a", "name": "A", "permissions": ["users.read"], "inherits_from": ["b"]})

        assert role_store.effective_permissions("a") == ["users.read", "content.read"]

    def test_cycle_terminates(self, role_store: CustomRoleStore):
        role_store.create({"id": "a", "name": "A", "permissions": ["users.read"], "inherits_from": ["b"]})
        role_store.create({"id": "b", "name": "B", "permissions": ["osis.events"], "inherits_from": ["a"]})

        assert set(role_store.effective_permissions("a")) == {"users.read", "osis.events"}
        assert set(role_store.effective_permissions("b")) == {"users.read", "osis.events"}

    def test_self_reference_terminates(self, role_store: CustomRoleStore):
        role_store.create({"id": "a", "name": "A", "permissions": ["users.read"], "inherits_from": ["a"]})

        assert role_store.effective_permissions("a") == ["users.read"]

    def test_diamond(self, role_store: CustomRoleStore):
        role_store.create({"id": "root", "name": "Root", "permissions": ["system.stats"]})
        role_store.create({"id": "left", "name": "L", "permissions": ["users.read"], "inherits_from": ["root"]})
        role_store.create({"id": "right", "name": "R", "permissions": ["content.read"], "inherits_from": ["root"]})
        role_store.create({"id": "top", "name": "T", "inherits_from": ["left", "right"]})

        assert set(role_store.effective_permissions("top")) == {"system.stats", "users.read", "content.read"}

    def test_unresolved_parent_uses_fallback_matrix(self, role_store: CustomRoleStore):
        role_store.create({"id": "a", "name": "A", "permissions": ["ppdb.manage"], "inherits_from": ["ghost"]})

        effective = role_store.effective_permissions("a", fallback_base_role="student")

        assert effective[0] == "ppdb.manage"
        assert set(effective[1:]) == set(ROLE_PERMISSION_MATRIX["student"])

    def test_unknown_root_uses_fallback_matrix(self, role_store: CustomRoleStore):
        assert role_store.effective_permissions("ghost", "parent") == list(ROLE_PERMISSION_MATRIX["parent"])
        assert role_store.effective_permissions("ghost") == []


@pytest.mark.unit
class TestTemplates:
    """Built-in and stored role templates."""

    def test_builtin_templates(self, role_store: CustomRoleStore):
        ids = [t.id for t in role_store.list_templates()]

        assert ids[: len(DEFAULT_ROLE_TEMPLATES)] == [t.id for t in DEFAULT_ROLE_TEMPLATES]
        assert "template_librarian" in ids
        assert all(t.is_system for t in DEFAULT_ROLE_TEMPLATES)

    def test_builtin_templates_reference_catalog(self):
        for ids in template_references().values():
            assert all(pid in PERMISSIONS for pid in ids)

    def test_create_template(self, role_store: CustomRoleStore):
        template = role_store.create_template(
            {"name": "Lab Assistant", "base_role_id": "staff", "permissions": ["inventory.read"]}
        )

        assert template.id.startswith("custom_template_")
        assert template.is_system is False
        assert role_store.get_template(template.id) == template
        assert len(role_store.list_templates()) == len(DEFAULT_ROLE_TEMPLATES) + 1

    def test_create_from_template(self, role_store: CustomRoleStore):
        role = role_store.create_from_template("template_finance", created_by="kepsek-1")

        assert role.name == "Finance Staff (Custom)"
        assert role.base_role_id == "staff"
        assert "payments.create" in role.permissions
        assert role.inherits_from == []
        assert role.created_by == "kepsek-1"
        assert role_store.get(role.id) == role

    def test_instances_are_independent(self, role_store: CustomRoleStore):
        first = role_store.create_from_template("template_librarian")
        second = role_store.create_from_template("template_librarian")

        role_store.update(first.id, {"permissions": []})

        assert role_store.get(second.id).permissions == role_store.get_template("template_librarian").permissions

    def test_unknown_template(self, role_store: CustomRoleStore):
        assert role_store.create_from_template("template_missing") is None
        assert role_store.get_template("template_missing") is None


@pytest.mark.unit
class TestAssignments:
    """User to custom role assignments."""

    def test_assign_and_list(self, role_store: CustomRoleStore):
        role_store.create({"id": "a", "name": "A"})
        role_store.create({"id": "b", "name": "B"})

        role_store.assign("u1", "b")
        role_store.assign("u1", "a")
        role_store.assign("u1", "b")

        assert role_store.get_assignments("u1") == ["b", "a"]
        assert [r.id for r in role_store.get_user_roles("u1")] == ["b", "a"]

    def test_unassign(self, role_store: CustomRoleStore):
        role_store.create({"id": "a", "name": "A"})
        role_store.assign("u1", "a")

        role_store.unassign("u1", "a")
        role_store.unassign("u1", "a")

        assert role_store.get_assignments("u1") == []

    def test_deleted_role_is_skipped(self, role_store: CustomRoleStore):
        role_store.create({"id": "a", "name": "A"})
        role_store.assign("u1", "a")
        role_store.delete("a")

        assert role_store.get_assignments("u1") == ["a"]
        assert role_store.get_user_roles("u1") == []

    def test_unknown_user(self, role_store: CustomRoleStore):
        assert role_store.get_user_roles("nobody") == []


@pytest.mark.unit
class TestStorageTolerance:
    """Broken storage degrades to empty state."""

    def test_malformed_roles_blob(self):
        storage = MemoryBlobStorage({"sekolah_rbac:custom_roles": b"not json at all"})
        store = CustomRoleStore(storage)

        assert store.list() == []
        assert store.create({"id": "a", "name": "A"}) is not None
        assert [r.id for r in store.list()] == ["a"]

    def test_malformed_assignments_blob(self):
        storage = MemoryBlobStorage({"sekolah_rbac:custom_role_assignments": b'["u1"]'})

        assert CustomRoleStore(storage).get_user_roles("u1") == []

    def test_storage_errors_are_not_raised(self):
        store = CustomRoleStore(FailingStorage())

        assert store.list() == []
        assert store.create({"id": "a", "name": "A"}) is None
        assert store.get("a") is None
        assert store.effective_permissions("a", "student") == list(ROLE_PERMISSION_MATRIX["student"])
        assert store.assign("u1", "a") is False
        assert store.delete("a") is False
        assert store.get_assignments("u1") == []

    def test_refused_writes_are_reported(self, storage: MemoryBlobStorage):
        CustomRoleStore(storage).create({"id": "a", "name": "A"})
        store = CustomRoleStore(ReadOnlyStorage(dict(storage._data)))

        assert store.create({"id": "b", "name": "B"}) is None
        assert store.update("a", {"name": "Renamed"}) is None
        assert store.delete("a") is False
        assert store.assign("u1", "a") is False
        assert store.create_template({"name": "T", "base_role_id": "staff"}) is None
        assert store.create_from_template("template_finance") is None

        assert [r.id for r in store.list()] == ["a"]
        assert store.get("a").name == "A"
        assert store.get_assignments("u1") == []

    def test_noop_assignment_changes_need_no_write(self, storage: MemoryBlobStorage):
        store = CustomRoleStore(storage)
        store.create({"id": "a", "name": "A"})
        store.assign("u1", "a")
        readonly = CustomRoleStore(ReadOnlyStorage(dict(storage._data)))

        assert readonly.assign("u1", "a") is True
        assert readonly.unassign("u2", "a") is True
        assert readonly.unassign("u1", "a") is False


@pytest.mark.unit
class TestMalformedInput:
    """Bad dicts are rejected with None instead of raising."""

    @pytest.mark.parametrize(
        "data",
        [
            {"name": ""},
            {"description": "no name"},
            {"name": "A", "permissions": "users.read"},
            {"name": "A", "inherits_from": [1, {"x": 2}]},
            "not a mapping",
            None,
        ],
    )
    def test_create(self, role_store: CustomRoleStore, data):
        assert role_store.create(data) is None
        assert role_store.list() == []

    @pytest.mark.parametrize("patch", [{"name": ""}, {"permissions": 5}, ["name"]])
    def test_update(self, role_store: CustomRoleStore, patch):
        role_store.create({"id": "a", "name": "A"})

        assert role_store.update("a", patch) is None
        assert role_store.get("a").name == "A"

    @pytest.mark.parametrize(
        "data",
        [{"name": "T"}, {"name": "", "base_role_id": "staff"}, {"name": "T", "base_role_id": None}],
    )
    def test_create_template(self, role_store: CustomRoleStore, data):
        assert role_store.create_template(data) is None
        assert len(role_store.list_templates()) == len(DEFAULT_ROLE_TEMPLATES)


@pytest.mark.unit
class TestConcurrentWrites:
    """Read-modify-write sequences from many threads lose nothing."""

    def test_parallel_creates(self, role_store: CustomRoleStore):
        with ThreadPoolExecutor(max_workers=16) as pool:
            created = list(pool.map(lambda i: role_store.create({"id": f"r{i}", "name": f"R{i}"}), range(200)))

        assert all(role is not None for role in created)
        assert sorted(r.id for r in role_store.list()) == sorted(f"r{i}" for i in range(200))

    def test_parallel_duplicate_creates(self, role_store: CustomRoleStore):
        with ThreadPoolExecutor(max_workers=16) as pool:
            created = list(pool.map(lambda _: role_store.create({"id": "same", "name": "S"}), range(50)))

        assert sum(role is not None for role in created) == 1
        assert [r.id for r in role_store.list()] == ["same"]

    def test_parallel_assignments(self, role_store: CustomRoleStore):
        for i in range(100):
            role_store.create({"id": f"r{i}", "name": f"R{i}"})

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda i: role_store.assign(f"u{i % 4}", f"r{i}"), range(100)))

        assert all(results)
        for user in range(4):
            assert sorted(role_store.get_assignments(f"u{user}")) == sorted(
                f"r{i}" for i in range(100) if i % 4 == user
            )

    def test_parallel_updates_and_deletes(self, role_store: CustomRoleStore):
        for i in range(60):
            role_store.create({"id": f"r{i}", "name": f"R{i}"})

        def work(i):
            if i % 2:
                return role_store.delete(f"r{i}")
            return role_store.update(f"r{i}", {"name": f"Renamed {i}"}) is not None

        with ThreadPoolExecutor(max_workers=16) as pool:
            assert all(pool.map(work, range(60)))

        remaining = role_store.list()
        assert sorted(r.id for r in remaining) == sorted(f"r{i}" for i in range(0, 60, 2))
        assert all(r.name == f"Renamed {r.id[1:]}" for r in remaining)
