"""Tests for role and user access endpoints."""

from tests.factories import auth_headers, create_user


class TestAuthentication:
    """Tests for bearer token handling."""

    def test_missing_token(self, client):
        response = client.get("/api/roles")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_bad_token(self, client):
        response = client.get("/api/roles", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_unknown_user_is_forbidden(self, client):
        response = client.get("/api/roles", headers=auth_headers("ghost"))
        assert response.status_code == 403
        assert response.json()["details"]["required_permission"] == "roles:manage"


class TestRolesAPI:
    """Tests for /api/roles."""

    def test_list_roles(self, client, admin):
        response = client.get("/api/roles", headers=admin)
        assert response.status_code == 200
        names = {r["name"] for r in response.json()}
        assert names == {"admin", "pastor", "leader", "staff", "volunteer", "readonly"}

    def test_staff_cannot_manage_roles(self, client, staff):
        response = client.get("/api/roles", headers=staff)
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_permission_catalog_for_any_user(self, client, volunteer):
        response = client.get("/api/roles/permissions", headers=volunteer)
        assert response.status_code == 200
        data = response.json()
        assert len(data["permissions"]) == 42
        assert all(g["permissions"] for g in data["groups"])

    def test_create_get_update_delete(self, client, admin):
        response = client.post("/api/roles", headers=admin, json={
            "name": "worship_team",
            "permissions": ["events:read", "media:read"],
        })
        assert response.status_code == 201
        role = response.json()
        assert role["is_system_role"] is False
        assert role["permissions"] == ["events:read", "media:read"]

        response = client.get(f"/api/roles/{role['id']}", headers=admin)
        assert response.json()["name"] == "worship_team"

        response = client.patch(f"/api/roles/{role['id']}", headers=admin, json={
            "description": "Sunday band",
        })
        assert response.status_code == 200
        assert response.json()["description"] == "Sunday band"

        response = client.delete(f"/api/roles/{role['id']}", headers=admin)
        assert response.status_code == 204
        assert client.get(f"/api/roles/{role['id']}", headers=admin).status_code == 404

    def test_create_invalid_permission(self, client, admin):
        response = client.post("/api/roles", headers=admin, json={
            "name": "bad", "permissions": ["members:fly"],
        })
        assert response.status_code == 422
        assert response.json()["error"] == "invalid"

    def test_create_duplicate(self, client, admin):
        response = client.post("/api/roles", headers=admin, json={"name": "Admin"})
        assert response.status_code == 409

    def test_system_role_rename_forbidden(self, client, admin, system_roles):
        response = client.patch(
            f"/api/roles/{system_roles['admin'].id}", headers=admin, json={"name": "root"}
        )
        assert response.status_code == 403

    def test_unknown_patch_field(self, client, admin):
        role = client.post("/api/roles", headers=admin, json={"name": "ushers"}).json()
        response = client.patch(f"/api/roles/{role['id']}", headers=admin, json={"colour": "red"})
        assert response.status_code == 422

    def test_system_role_delete_forbidden(self, client, admin, system_roles):
        response = client.delete(f"/api/roles/{system_roles['volunteer'].id}", headers=admin)
        assert response.status_code == 403

    def test_disable_and_enable(self, client, admin):
        role = client.post("/api/roles", headers=admin, json={"name": "ushers"}).json()
        assert client.post(f"/api/roles/{role['id']}/disable", headers=admin).json()["status"] == "disabled"
        assert client.post(f"/api/roles/{role['id']}/enable", headers=admin).json()["status"] == "active"

    def test_role_assignments(self, client, admin, tables):
        role = client.post("/api/roles", headers=admin, json={"name": "ushers"}).json()
        user_id = create_user(tables)
        client.post(f"/api/users/{user_id}/roles", headers=admin, json={"role_id": role["id"]})

        response = client.get(f"/api/roles/{role['id']}/assignments", headers=admin)
        assert [a["user_id"] for a in response.json()] == [user_id]

        assert client.delete(f"/api/roles/{role['id']}", headers=admin).status_code == 409


class TestUsersAPI:
    """Tests for /api/users."""

    def test_assign_and_revoke(self, client, admin, tables):
        role = client.post("/api/roles", headers=admin, json={
            "name": "ushers", "permissions": ["events:checkin"],
        }).json()
        user_id = create_user(tables)

        response = client.post(f"/api/users/{user_id}/roles", headers=admin, json={"role_id": role["id"]})
        assert response.status_code == 201
        assert response.json()["role_name"] == "ushers"

        listed = client.get(f"/api/users/{user_id}/roles", headers=admin).json()
        assert [a["role_id"] for a in listed] == [role["id"]]

        response = client.delete(f"/api/users/{user_id}/roles/{role['id']}", headers=admin)
        assert response.json() == {"revoked": 1}
        assert client.get(f"/api/users/{user_id}/roles", headers=admin).json() == []

    def test_assign_unknown_role(self, client, admin, tables):
        user_id = create_user(tables)
        response = client.post(f"/api/users/{user_id}/roles", headers=admin, json={"role_id": "nope"})
        assert response.status_code == 404
        assert response.json()["details"] == {"table": "Roles", "id": "nope"}

    def test_own_permissions(self, client, tables):
        user_id = create_user(tables, role="volunteer")
        response = client.get(f"/api/users/{user_id}/permissions", headers=auth_headers(user_id))
        assert response.status_code == 200
        assert "events:checkin" in response.json()["permissions"]
        assert response.json()["sources"]["events:checkin"] == ["role:volunteer"]

    def test_others_permissions_need_roles_manage(self, client, tables, admin):
        target = create_user(tables, role="readonly")
        snoop = create_user(tables, role="staff")
        assert client.get(f"/api/users/{target}/permissions", headers=auth_headers(snoop)).status_code == 403
        assert client.get(f"/api/users/{target}/permissions", headers=admin).status_code == 200

    def test_promote_volunteer(self, client, tables, admin):
        """A volunteer denied members:delete is allowed after promotion."""
        user_id = create_user(tables, role="volunteer")
        before = client.get(f"/api/users/{user_id}/permissions", headers=admin).json()
        assert "members:delete" not in before["permissions"]

        response = client.patch(f"/api/users/{user_id}/access", headers=admin, json={"role": "admin"})
        assert response.json()["role"] == "admin"

        after = client.get(f"/api/users/{user_id}/permissions", headers=admin).json()
        assert "members:delete" in after["permissions"]

    def test_update_override(self, client, tables, admin):
        user_id = create_user(tables)
        response = client.patch(f"/api/users/{user_id}/access", headers=admin, json={
            "permissions": ["finance:read"],
        })
        assert response.json()["permissions"] == ["finance:read"]

    def test_update_access_invalid_status(self, client, tables, admin):
        user_id = create_user(tables)
        response = client.patch(f"/api/users/{user_id}/access", headers=admin, json={"status": "gone"})
        assert response.status_code == 422
