"""Tests for member endpoints."""

from flock.store import Table
from tests.factories import auth_headers, create_member, create_rule, create_tag, create_user


class TestMembersAPI:
    """Tests for /api/members."""

    def test_sensitive_fields_hidden(self, client, volunteer, tables):
        member_id = create_member(tables, health_notes="asthma")
        record = client.get(f"/api/members/{member_id}", headers=volunteer).json()
        assert "health_notes" not in record
        assert record["id"] == member_id

    def test_sensitive_fields_visible_to_pastor(self, client, tables):
        pastor = auth_headers(create_user(tables, role="pastor"))
        member_id = create_member(tables, health_notes="asthma")
        assert client.get(f"/api/members/{member_id}", headers=pastor).json()["health_notes"] == "asthma"

    def test_unknown_member(self, client, volunteer):
        response = client.get("/api/members/ghost", headers=volunteer)
        assert response.status_code == 404
        assert response.json()["details"]["table"] == "Members"

    def test_update_retags_inline(self, client, staff, tables, inline_tagging):
        tag_id = create_tag(tables, name="new-friend")
        create_rule(tables, tag_id, "faith_status", "equals", "seeker")
        member_id = create_member(tables, faith_status="baptized")

        response = client.patch(f"/api/members/{member_id}", headers=staff, json={"faith_status": "seeker"})

        assert response.status_code == 200
        body = response.json()
        assert body["faith_status"] == "seeker"
        assert body["tagging"]["added"] == [tag_id]
        assert tables.get(Table.MEMBERS, member_id)["tags"] == tag_id

    def test_update_queues_tagging(self, client, staff, tables, queued):
        member_id = create_member(tables)
        response = client.patch(f"/api/members/{member_id}", headers=staff, json={"phone": "555"})
        assert "tagging" not in response.json()
        assert queued == [("apply", (member_id,))]

    def test_tag_columns_protected(self, client, staff, tables):
        member_id = create_member(tables)
        response = client.patch(f"/api/members/{member_id}", headers=staff, json={"tags": "x"})
        assert response.status_code == 422

    def test_sensitive_update_needs_permission(self, client, staff, tables):
        member_id = create_member(tables)
        response = client.patch(f"/api/members/{member_id}", headers=staff, json={"health_notes": "x"})
        assert response.status_code == 403
        assert response.json()["details"]["required_permission"] == "members:sensitive"
        assert tables.get(Table.MEMBERS, member_id).get("health_notes") is None

    def test_volunteer_cannot_update(self, client, volunteer, tables):
        member_id = create_member(tables)
        response = client.patch(f"/api/members/{member_id}", headers=volunteer, json={"phone": "1"})
        assert response.status_code == 403


class TestManualTagsAPI:
    """Tests for /api/members/{id}/tags."""

    def test_add_remove(self, client, staff, tables):
        tag_id = create_tag(tables)
        member_id = create_member(tables)

        response = client.post(f"/api/members/{member_id}/tags/{tag_id}", headers=staff)
        assert response.json()["manual_tags"] == [tag_id]

        response = client.delete(f"/api/members/{member_id}/tags/{tag_id}", headers=staff)
        assert response.json()["removed"] == [tag_id]

    def test_replace(self, client, staff, tables):
        first = create_tag(tables)
        second = create_tag(tables)
        member_id = create_member(tables, tags=first, manual_tags=first)

        response = client.put(f"/api/members/{member_id}/tags", headers=staff, json={"tag_ids": [second]})
        assert response.json()["tags"] == [second]

    def test_unknown_tag(self, client, staff, tables):
        member_id = create_member(tables)
        response = client.post(f"/api/members/{member_id}/tags/missing", headers=staff)
        assert response.status_code == 404
