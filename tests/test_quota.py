"""
Quota Enforcer tests — plan limits for projects and members.

Tests cover:
  - within_limit rule, including UNLIMITED (-1)
  - Free plan: the second project is refused over HTTP (400 ERR_QUOTA_EXCEEDED)
  - Member quota on user creation
  - The accepted check-then-insert window
  - Plan changes copy catalog limits onto the tenant
"""

import pytest

from agileflow.core.exceptions import QuotaExceededError, ValidationError
from agileflow.models import db
from agileflow.models.auth import PLANS, UNLIMITED, RoleId
from agileflow.models.project import Project
from agileflow.services.quota_service import QuotaResource, apply_plan, within_limit


class TestWithinLimit:
    @pytest.mark.parametrize("count,limit,expected", [
        (0, 1, True),
        (1, 1, False),
        (4, 5, True),
        (5, 5, False),
        (0, 0, False),
        (10_000, UNLIMITED, True),
    ])
    def test_rule(self, count, limit, expected):
        assert within_limit(count, limit) is expected


class TestQuotaEnforcer:
    def test_usage_counts_only_own_tenant(self, services, make_tenant, make_project):
        acme = make_tenant("acme")
        globex = make_tenant("globex", plan="pro")
        make_project(globex, name="G1")
        make_project(globex, name="G2")
        assert services.quota.usage(acme.id, QuotaResource.PROJECTS) == 0
        assert services.quota.usage(globex.id, QuotaResource.PROJECTS) == 2

    def test_enforce_raises_at_limit(self, services, make_tenant, make_project):
        acme = make_tenant("acme")  # free: 1 project
        make_project(acme)
        with pytest.raises(QuotaExceededError) as exc_info:
            services.quota.enforce(acme.id, QuotaResource.PROJECTS)
        assert exc_info.value.limit == 1
        assert exc_info.value.details == {"resource": "projects", "limit": 1}

    def test_unlimited_always_passes(self, services, make_tenant, make_project):
        big = make_tenant("bigco", plan="enterprise")
        for i in range(3):
            make_project(big, name=f"P{i}")
        assert services.quota.check_limit(big.id, QuotaResource.PROJECTS) is True
        services.quota.enforce(big.id, QuotaResource.PROJECTS)

    def test_member_quota_blocks_user_creation(self, services, make_tenant, make_user,
                                               principal_for):
        small = make_tenant("tiny")  # free: 5 members
        owner = make_user(small, RoleId.SUPERADMIN, username="owner")
        for i in range(4):
            make_user(small, RoleId.DEV, username=f"dev{i}")
        with pytest.raises(QuotaExceededError):
            services.users.create_user(principal_for(owner), {
                "username": "one-too-many", "password": "SecurePass123!", "role_id": "dev",
            })

    def test_check_then_insert_window_is_soft(self, services, make_tenant):
        """Both checks pass before either insert lands: the limit can be overshot by one."""
        acme = make_tenant("acme")
        assert services.quota.check_limit(acme.id, QuotaResource.PROJECTS)
        assert services.quota.check_limit(acme.id, QuotaResource.PROJECTS)
        db.session.add_all([
            Project(tenant_id=acme.id, name="racer-1"),
            Project(tenant_id=acme.id, name="racer-2"),
        ])
        db.session.commit()
        assert services.quota.usage(acme.id, QuotaResource.PROJECTS) == 2
        assert services.quota.check_limit(acme.id, QuotaResource.PROJECTS) is False

    def test_summary(self, services, tenant, superadmin, make_project):
        make_project(tenant)
        summary = services.quota.summary(tenant.id)
        assert summary["projects"] == {"used": 1, "limit": PLANS["pro"]["max_projects"]}
        assert summary["members"]["used"] == 1


class TestApplyPlan:
    def test_copies_limits(self, make_tenant):
        acme = make_tenant("acme")
        apply_plan(acme, "enterprise")
        assert acme.plan == "enterprise"
        assert acme.max_projects == UNLIMITED
        assert acme.max_members == UNLIMITED
        assert acme.subscription_status == "active"

    def test_unknown_plan_rejected(self, make_tenant):
        with pytest.raises(ValidationError):
            apply_plan(make_tenant("acme"), "platinum")

    def test_set_plan_lifts_limit(self, services, make_tenant, make_project):
        acme = make_tenant("acme")
        make_project(acme)
        services.tenants.set_plan("acme", "pro")
        assert services.quota.check_limit(acme.id, QuotaResource.PROJECTS) is True

    def test_set_plan_cli(self, app, make_tenant):
        make_tenant("acme")
        runner = app.test_cli_runner()

        result = runner.invoke(args=["set-plan", "acme", "enterprise"])
        assert result.exit_code == 0
        assert "plan=enterprise" in result.output

        bad = runner.invoke(args=["set-plan", "acme", "platinum"])
        assert bad.exit_code != 0
        assert "Unknown plan" in bad.output


# ═══════════════════════════════════════════════════════════════
# HTTP: free plan, second project refused
# ═══════════════════════════════════════════════════════════════

class TestProjectQuotaOverHttp:
    def test_second_project_refused_on_free_plan(self, client, make_tenant, make_user,
                                                 headers_for):
        acme = make_tenant("acme")
        owner = make_user(acme, RoleId.SUPERADMIN, username="owner", email="owner@acme.io")
        headers = headers_for(owner)

        first = client.post("/api/v1/projects", json={"name": "First"}, headers=headers)
        assert first.status_code == 201

        second = client.post("/api/v1/projects", json={"name": "Second"}, headers=headers)
        assert second.status_code == 400
        body = second.get_json()
        assert body["code"] == "ERR_QUOTA_EXCEEDED"
        assert body["details"]["limit"] == 1
        assert Project.query_for_tenant(acme.id).count() == 1
