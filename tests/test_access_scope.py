"""
Access Scope Resolver tests — visible project sets and role write gates.

Tests cover:
  - superadmin → Unrestricted; everyone else → Restricted(member projects)
  - An empty Restricted set hides everything project-bound
  - Memberships in another tenant never leak into the scope
  - role_allowed / can_assign_role / require_role
"""

import pytest

from agileflow.core.exceptions import AuthorizationError
from agileflow.models.auth import MANAGER_ROLES, RoleId
from agileflow.models.project import Project
from agileflow.services.access_scope import (
    Restricted,
    Unrestricted,
    apply_scope,
    can_assign_role,
    require_role,
    role_allowed,
    scope_allows,
)


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Resolution
# ═══════════════════════════════════════════════════════════════

class TestVisibleProjects:
    def test_superadmin_is_unrestricted(self, services, superadmin, tenant, make_project):
        make_project(tenant)
        scope = services.scope.visible_project_ids(superadmin.id, RoleId.SUPERADMIN, tenant.id)
        assert isinstance(scope, Unrestricted)

    def test_member_sees_only_member_projects(self, services, tenant, dev_user,
                                              make_project, add_member):
        """A dev in P1 only: scope is exactly {P1}."""
        p1 = make_project(tenant, name="P1")
        make_project(tenant, name="P2")
        add_member(p1, dev_user)
        scope = services.scope.visible_project_ids(dev_user.id, RoleId.DEV, tenant.id)
        assert scope == Restricted(frozenset({p1.id}))

    def test_admin_is_restricted_too(self, services, tenant, admin_user, make_project):
        make_project(tenant)
        scope = services.scope.visible_project_ids(admin_user.id, RoleId.ADMIN, tenant.id)
        assert isinstance(scope, Restricted)
        assert scope.project_ids == frozenset()

    def test_empty_scope_is_not_unrestricted(self, services, tenant, dev_user):
        scope = services.scope.visible_project_ids(dev_user.id, RoleId.DEV, tenant.id)
        assert isinstance(scope, Restricted)
        assert not scope.allows("anything")
        assert not scope.allows(None)

    def test_foreign_tenant_membership_ignored(self, services, make_tenant, make_user,
                                               make_project, add_member, tenant, dev_user):
        other = make_tenant("globex")
        foreign = make_project(other, name="Foreign")
        add_member(foreign, dev_user)
        scope = services.scope.visible_project_ids(dev_user.id, RoleId.DEV, tenant.id)
        assert scope.project_ids == frozenset()

    def test_for_principal(self, services, principal_for, tenant, dev_user,
                           make_project, add_member):
        project = make_project(tenant)
        add_member(project, dev_user)
        assert services.scope.for_principal(principal_for(dev_user)).allows(project.id)


class TestScopeFilters:
    def test_apply_scope_with_empty_set_returns_nothing(self, tenant, make_project):
        make_project(tenant)
        query = apply_scope(Project.query_for_tenant(tenant.id), Project.id,
                            Restricted(frozenset()))
        assert query.all() == []

    def test_apply_scope_unrestricted_is_noop(self, tenant, make_project):
        make_project(tenant, name="A")
        make_project(tenant, name="B")
        query = apply_scope(Project.query_for_tenant(tenant.id), Project.id, Unrestricted())
        assert query.count() == 2

    def test_unassigned_admitted_only_on_request(self):
        scope = Restricted(frozenset({"p1"}))
        assert scope_allows(scope, None, include_unassigned=True)
        assert not scope_allows(scope, None)
        assert scope_allows(scope, "p1")
        assert not scope_allows(scope, "p2", include_unassigned=True)


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Role gates
# ═══════════════════════════════════════════════════════════════

class TestRoleGates:
    @pytest.mark.parametrize("role,expected", [
        (RoleId.SUPERADMIN, True),
        (RoleId.ADMIN, True),
        (RoleId.DEV, False),
        (RoleId.QA, False),
        ("owner", False),
    ])
    def test_role_allowed_for_managers(self, role, expected):
        assert role_allowed(role, MANAGER_ROLES) is expected

    @pytest.mark.parametrize("actor,target,expected", [
        (RoleId.SUPERADMIN, RoleId.SUPERADMIN, True),
        (RoleId.SUPERADMIN, RoleId.ADMIN, True),
        (RoleId.ADMIN, RoleId.DEV, True),
        (RoleId.ADMIN, RoleId.QA, True),
        (RoleId.ADMIN, RoleId.ADMIN, False),
        (RoleId.ADMIN, RoleId.SUPERADMIN, False),
        (RoleId.DEV, RoleId.QA, False),
    ])
    def test_can_assign_role(self, actor, target, expected):
        assert can_assign_role(actor, target) is expected

    def test_require_role_raises_for_dev(self, principal_for, dev_user):
        with pytest.raises(AuthorizationError):
            require_role(principal_for(dev_user), MANAGER_ROLES, "create projects")

    def test_require_role_passes_for_admin(self, principal_for, admin_user):
        require_role(principal_for(admin_user), MANAGER_ROLES, "create projects")
