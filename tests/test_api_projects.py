"""
Projects & Users API tests — project CRUD, membership, user management.

Tests cover:
  - Only superadmin/admin create projects; creator joins as project superadmin
  - admin_ids join as project admins and must live in the tenant
  - Project listing follows membership
  - Member add/update/remove; removing revokes visibility
  - User creation role rules, uniqueness, deletion and tenant overview
"""

import pytest

from agileflow.models.auth import ProjectMember, RoleId, User
from agileflow.models.project import Project


@pytest.fixture()
def root_headers(headers_for, superadmin):
    return headers_for(superadmin)


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Projects
# ═══════════════════════════════════════════════════════════════

class TestProjects:
    def test_create_adds_creator_and_admins(self, client, root_headers, superadmin, admin_user):
        resp = client.post("/api/v1/projects", headers=root_headers, json={
            "name": "Apollo", "description": "Moonshot", "admin_ids": [admin_user.id],
        })
        assert resp.status_code == 201
        project = resp.get_json()["project"]
        assert project["creator_id"] == superadmin.id

        roles = {m.user_id: m.role for m in ProjectMember.query.filter_by(project_id=project["id"])}
        assert roles == {superadmin.id: "superadmin", admin_user.id: "admin"}

    def test_dev_cannot_create(self, client, headers_for, dev_user):
        resp = client.post("/api/v1/projects", headers=headers_for(dev_user), json={"name": "Nope"})
        assert resp.status_code == 403
        assert Project.query.count() == 0

    def test_admin_creates_and_sees_own_project(self, client, headers_for, admin_user):
        headers = headers_for(admin_user)
        created = client.post("/api/v1/projects", headers=headers, json={"name": "Mine"}).get_json()
        listed = client.get("/api/v1/projects", headers=headers).get_json()
        assert [p["id"] for p in listed["projects"]] == [created["project"]["id"]]

    def test_name_required(self, client, root_headers):
        resp = client.post("/api/v1/projects", headers=root_headers, json={"name": "  "})
        assert resp.status_code == 400

    def test_admin_from_other_tenant_rejected(self, client, root_headers, make_tenant, make_user):
        stranger = make_user(make_tenant("globex"), RoleId.ADMIN, username="x")
        resp = client.post("/api/v1/projects", headers=root_headers,
                           json={"name": "Apollo", "admin_ids": [stranger.id]})
        assert resp.status_code == 404
        assert Project.query.count() == 0

    def test_admin_ids_must_be_list(self, client, root_headers, admin_user):
        resp = client.post("/api/v1/projects", headers=root_headers,
                           json={"name": "Apollo", "admin_ids": admin_user.id})
        assert resp.status_code == 400

    def test_listing_follows_membership(self, client, headers_for, tenant, superadmin, dev_user,
                                        make_project, add_member):
        visible = make_project(tenant, superadmin, name="Visible")
        make_project(tenant, superadmin, name="Hidden")
        add_member(visible, dev_user)

        body = client.get("/api/v1/projects", headers=headers_for(dev_user)).get_json()

        assert [p["name"] for p in body["projects"]] == ["Visible"]

    def test_get_hidden_project_is_404(self, client, headers_for, tenant, dev_user, make_project):
        project = make_project(tenant)
        assert client.get(f"/api/v1/projects/{project.id}",
                          headers=headers_for(dev_user)).status_code == 404

    def test_only_superadmin_deletes(self, client, headers_for, root_headers, tenant,
                                     admin_user, make_project, add_member):
        project = make_project(tenant)
        add_member(project, admin_user, role="admin")
        denied = client.delete(f"/api/v1/projects/{project.id}", headers=headers_for(admin_user))
        assert denied.status_code == 403

        resp = client.delete(f"/api/v1/projects/{project.id}", headers=root_headers)
        assert resp.status_code == 200
        assert ProjectMember.query.count() == 0


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Membership
# ═══════════════════════════════════════════════════════════════

class TestMembers:
    def test_add_update_remove(self, client, root_headers, headers_for, tenant, dev_user, make_project):
        project = make_project(tenant)
        url = f"/api/v1/projects/{project.id}/members"

        added = client.post(url, headers=root_headers, json={"user_id": dev_user.id})
        assert added.status_code == 201
        assert added.get_json()["member"]["role"] == "member"
        assert client.get(f"/api/v1/projects/{project.id}",
                          headers=headers_for(dev_user)).status_code == 200

        promoted = client.post(url, headers=root_headers, json={"user_id": dev_user.id, "role": "admin"})
        assert promoted.get_json()["member"]["role"] == "admin"
        assert ProjectMember.query.filter_by(project_id=project.id).count() == 1

        removed = client.delete(f"{url}/{dev_user.id}", headers=root_headers)
        assert removed.status_code == 200
        assert client.get(f"/api/v1/projects/{project.id}",
                          headers=headers_for(dev_user)).status_code == 404

    def test_remove_non_member(self, client, root_headers, tenant, dev_user, make_project):
        project = make_project(tenant)
        resp = client.delete(f"/api/v1/projects/{project.id}/members/{dev_user.id}", headers=root_headers)
        assert resp.status_code == 404

    def test_unknown_project_role(self, client, root_headers, tenant, dev_user, make_project):
        project = make_project(tenant)
        resp = client.post(f"/api/v1/projects/{project.id}/members", headers=root_headers,
                           json={"user_id": dev_user.id, "role": "owner"})
        assert resp.status_code == 400

    def test_list_members(self, client, root_headers, tenant, dev_user, make_project, add_member):
        project = make_project(tenant)
        add_member(project, dev_user)
        body = client.get(f"/api/v1/projects/{project.id}/members", headers=root_headers).get_json()
        assert [m["user"]["username"] for m in body["members"]] == ["dave"]


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Users
# ═══════════════════════════════════════════════════════════════

class TestUsers:
    def test_admin_creates_dev(self, client, headers_for, admin_user, tenant, make_project):
        project = make_project(tenant)
        resp = client.post("/api/v1/users", headers=headers_for(admin_user), json={
            "username": "newbie", "password": "SecurePass123!", "role_id": "dev",
            "email": "newbie@acme.io", "project_id": project.id,
        })
        assert resp.status_code == 201
        user = resp.get_json()["user"]
        assert user["role_name"] == "Developer"
        assert ProjectMember.query.filter_by(user_id=user["id"], project_id=project.id).count() == 1

    @pytest.mark.parametrize("role", ["admin", "superadmin"])
    def test_admin_cannot_create_admin_level(self, client, headers_for, admin_user, role):
        resp = client.post("/api/v1/users", headers=headers_for(admin_user), json={
            "username": "boss", "password": "SecurePass123!", "role_id": role,
        })
        assert resp.status_code == 403

    def test_superadmin_creates_admin(self, client, root_headers):
        resp = client.post("/api/v1/users", headers=root_headers, json={
            "username": "boss", "password": "SecurePass123!", "role_id": "admin",
        })
        assert resp.status_code == 201

    def test_unknown_role(self, client, root_headers):
        resp = client.post("/api/v1/users", headers=root_headers, json={
            "username": "x", "password": "SecurePass123!", "role_id": "owner",
        })
        assert resp.status_code == 400

    def test_duplicate_username_conflict(self, client, root_headers, dev_user):
        resp = client.post("/api/v1/users", headers=root_headers, json={
            "username": "dave", "password": "SecurePass123!", "role_id": "dev",
        })
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_dev_lists_only_co_members(self, client, headers_for, tenant, dev_user, admin_user,
                                       make_user, make_project, add_member):
        loner = make_user(tenant, RoleId.QA, username="loner")
        project = make_project(tenant)
        add_member(project, dev_user)
        add_member(project, admin_user)

        body = client.get("/api/v1/users", headers=headers_for(dev_user)).get_json()

        names = {u["username"] for u in body["users"]}
        assert names == {"dave", "alice"}
        assert loner.username not in names

    def test_dev_reads_only_co_member_profiles(self, client, headers_for, tenant, dev_user,
                                               admin_user, make_user, make_project, add_member):
        loner = make_user(tenant, RoleId.QA, username="loner")
        project = make_project(tenant)
        add_member(project, dev_user)
        add_member(project, admin_user)
        headers = headers_for(dev_user)

        assert client.get(f"/api/v1/users/{admin_user.id}", headers=headers).status_code == 200
        assert client.get(f"/api/v1/users/{dev_user.id}", headers=headers).status_code == 200
        hidden = client.get(f"/api/v1/users/{loner.id}", headers=headers)
        assert hidden.status_code == 404
        assert hidden.get_json()["code"] == "ERR_NOT_FOUND"

    def test_dev_without_projects_reads_only_self(self, client, headers_for, dev_user, admin_user):
        headers = headers_for(dev_user)
        assert client.get("/api/v1/me", headers=headers).status_code == 200
        assert client.get(f"/api/v1/users/{admin_user.id}", headers=headers).status_code == 404

    def test_delete_user(self, client, root_headers, headers_for, dev_user):
        dev_headers = headers_for(dev_user)
        resp = client.delete(f"/api/v1/users/{dev_user.id}", headers=root_headers)
        assert resp.status_code == 200
        assert User.query.filter_by(username="dave").count() == 0
        # stateless access token survives, but the user row is gone
        assert client.get("/api/v1/me", headers=dev_headers).status_code == 404

    def test_cannot_delete_self(self, client, root_headers, superadmin):
        resp = client.delete(f"/api/v1/users/{superadmin.id}", headers=root_headers)
        assert resp.status_code == 400


class TestTenantOverview:
    def test_usage_summary(self, client, root_headers, tenant, make_project):
        make_project(tenant)
        body = client.get("/api/v1/tenant", headers=root_headers).get_json()
        assert body["tenant"]["slug"] == "acme"
        assert body["usage"]["projects"] == {"used": 1, "limit": 10}
        assert body["usage"]["members"] == {"used": 1, "limit": 25}

    def test_columns(self, client, root_headers):
        body = client.get("/api/v1/columns", headers=root_headers).get_json()
        assert [c["title"] for c in body["columns"]] == ["To Do", "In Progress", "Review", "Done"]
