"""Tests for effective permission resolution."""

import itertools

import pytest

from flock.core.errors import NotFoundError
from flock.core.rbac import PermissionResolver, RoleStore, ScopedResolver
from flock.core.rbac.roles import get_system_role_permissions
from flock.store import InMemoryTableService, Table
from tests.factories import create_user


def _strings(permissions):
    return {str(p) for p in permissions}


class TestPermissionResolver:
    """Test union of primary role, assignments and override."""

    def test_primary_role(self, tables, resolver, system_roles):
        user_id = create_user(tables, role="volunteer")
        assert _strings(resolver.resolve(user_id)) == set(get_system_role_permissions("volunteer"))

    def test_primary_role_case_insensitive(self, tables, resolver, system_roles):
        user_id = create_user(tables, role="Volunteer")
        assert "events:checkin" in _strings(resolver.resolve(user_id))

    def test_union_of_all_sources(self, tables, resolver, role_store, system_roles):
        """Primary role, assignment and override each add permissions."""
        worship = role_store.create("worship_team", ["media:update"])
        user_id = create_user(tables, role="volunteer", permissions=["finance:read"])
        role_store.assign(user_id, worship.id, assigned_by="admin")

        granted = _strings(resolver.resolve(user_id))
        assert "events:checkin" in granted
        assert "media:update" in granted
        assert "finance:read" in granted

    def test_sources_explain_every_permission(self, tables, resolver, role_store, system_roles):
        worship = role_store.create("worship_team", ["media:read", "media:update"])
        user_id = create_user(tables, role="volunteer", permissions=["media:read"])
        role_store.assign(user_id, worship.id, assigned_by="admin")

        grant = resolver.explain(user_id)
        assert sorted(grant.sources["media:read"]) == [
            "assignment:worship_team", "override", "role:volunteer",
        ]
        assert grant.sources["media:update"] == ["assignment:worship_team"]
        assert set(grant.sources) == _strings(grant.permissions)

    def test_explain_to_dict(self, tables, resolver, system_roles):
        user_id = create_user(tables, role="readonly")
        data = resolver.explain(user_id).to_dict()
        assert data["user_id"] == user_id
        assert data["permissions"] == sorted(data["permissions"])
        assert data["sources"]["members:read"] == ["role:readonly"]

    def test_unknown_user_raises(self, resolver):
        with pytest.raises(NotFoundError):
            resolver.resolve("nobody")

    def test_inactive_user_has_nothing(self, tables, resolver, system_roles):
        user_id = create_user(tables, role="admin", status="disabled")
        assert resolver.resolve(user_id) == frozenset()

    def test_user_without_status_has_nothing(self, tables, resolver, system_roles):
        user_id = create_user(tables, role="admin", status="")
        assert resolver.resolve(user_id) == frozenset()

    def test_unknown_primary_role_contributes_nothing(self, tables, resolver, system_roles):
        user_id = create_user(tables, role="bishop", permissions=["events:read"])
        assert _strings(resolver.resolve(user_id)) == {"events:read"}

    def test_malformed_override_contributes_nothing(self, tables, resolver, system_roles):
        """A bad override cell is ignored, never fatal."""
        user_id = create_user(tables, role="readonly", raw_permissions="{not json")
        assert _strings(resolver.resolve(user_id)) == set(get_system_role_permissions("readonly"))

    def test_unknown_override_token_dropped(self, tables, resolver, system_roles):
        user_id = create_user(tables, permissions=["events:read", "*:*", "members:fly"])
        assert _strings(resolver.resolve(user_id)) == {"events:read"}

    def test_disabled_role_grants_nothing(self, tables, resolver, role_store, system_roles):
        worship = role_store.create("worship_team", ["media:update"])
        user_id = create_user(tables)
        role_store.assign(user_id, worship.id, assigned_by="admin")
        assert "media:update" in _strings(resolver.resolve(user_id))

        role_store.set_enabled(worship.id, False)
        assert resolver.resolve(user_id) == frozenset()

    def test_revoked_assignment_grants_nothing(self, tables, resolver, role_store):
        worship = role_store.create("worship_team", ["media:update"])
        user_id = create_user(tables)
        role_store.assign(user_id, worship.id, assigned_by="admin")
        role_store.revoke(user_id, worship.id, revoked_by="admin")
        assert resolver.resolve(user_id) == frozenset()

    def test_revoke_keeps_permissions_granted_elsewhere(self, tables, resolver, role_store, system_roles):
        """Revoking one assignment leaves what the primary role, the override or another assignment grants."""
        worship = role_store.create("worship_team", ["events:checkin", "media:update", "finance:read"])
        media = role_store.create("media_team", ["media:update"])
        user_id = create_user(tables, role="volunteer", permissions=["surveys:read"])
        role_store.assign(user_id, worship.id, assigned_by="admin")
        role_store.assign(user_id, media.id, assigned_by="admin")

        assert role_store.revoke(user_id, worship.id, revoked_by="admin") == 1
        granted = _strings(resolver.resolve(user_id))
        assert "events:checkin" in granted
        assert "media:update" in granted
        assert "surveys:read" in granted
        assert "finance:read" not in granted

    @pytest.mark.parametrize("order", list(itertools.permutations(["a1", "a2", "a3"])))
    def test_assignment_order_does_not_matter(self, order):
        roles = [
            {"id": "r1", "name": "ushers", "permissions": '["events:checkin"]', "status": "active"},
            {"id": "r2", "name": "media_team", "permissions": '["media:read", "media:update"]', "status": "active"},
            {"id": "r3", "name": "treasurers", "permissions": '["finance:read"]', "status": "disabled"},
        ]
        assignments = {
            "a1": {"id": "a1", "user_id": "u1", "role_id": "r1", "status": "active"},
            "a2": {"id": "a2", "user_id": "u1", "role_id": "r2", "status": "active"},
            "a3": {"id": "a3", "user_id": "u1", "role_id": "r3", "status": "active"},
        }
        tables = InMemoryTableService({
            Table.ROLES: roles,
            Table.ROLE_ASSIGNMENTS: [assignments[a] for a in order],
        })
        create_user(tables, user_id="u1", permissions=["members:read"])

        granted = _strings(PermissionResolver(RoleStore(tables)).resolve("u1"))
        assert granted == {"events:checkin", "media:read", "media:update", "members:read"}

    def test_dangling_assignment_ignored(self, tables, resolver):
        user_id = create_user(tables, permissions=["events:read"])
        tables.append(Table.ROLE_ASSIGNMENTS, {
            "user_id": user_id, "role_id": "gone", "status": "active",
        })
        assert _strings(resolver.resolve(user_id)) == {"events:read"}

    def test_reflects_changes_immediately(self, tables, resolver, role_store, system_roles):
        """Nothing is cached between calls."""
        user_id = create_user(tables, role="volunteer")
        assert "finance:read" not in _strings(resolver.resolve(user_id))
        role_store.update(system_roles["volunteer"].id, {"permissions": ["finance:read"]})
        assert _strings(resolver.resolve(user_id)) == {"finance:read"}


class TestScopedResolver:
    """Test per-request memoization."""

    def test_memoizes_until_invalidated(self, tables, role_store, system_roles):
        scoped = ScopedResolver(PermissionResolver(role_store))
        user_id = create_user(tables, role="volunteer")
        before = scoped.resolve(user_id)

        role_store.update_user_access(user_id, role_name="admin")
        assert scoped.resolve(user_id) == before

        scoped.invalidate(user_id)
        assert "members:delete" in _strings(scoped.resolve(user_id))

    def test_invalidate_everyone(self, tables, role_store, system_roles):
        scoped = ScopedResolver(PermissionResolver(role_store))
        first = create_user(tables, role="readonly")
        second = create_user(tables, role="readonly")
        scoped.resolve(first)
        scoped.resolve(second)

        role_store.update(system_roles["readonly"].id, {"permissions": []})
        scoped.invalidate()
        assert scoped.resolve(first) == frozenset()
        assert scoped.resolve(second) == frozenset()

    def test_exposes_role_store(self, role_store):
        assert ScopedResolver(PermissionResolver(role_store)).roles is role_store
