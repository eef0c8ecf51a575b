"""
Quota Enforcer — plan limits on projects and members per tenant.

A limit of ``-1`` (UNLIMITED) always passes; otherwise creation is allowed
while the current count is strictly below the limit.

The check and the subsequent insert are separate statements: two
concurrent creations can both observe ``count == limit - 1`` and both
succeed. This soft-quota window is accepted.
"""

import logging
from enum import Enum

import sqlalchemy as sa

from agileflow.core.exceptions import NotFoundError, QuotaExceededError, ValidationError
from agileflow.models.auth import PLANS, UNLIMITED, Tenant, User
from agileflow.models.project import Project

logger = logging.getLogger(__name__)


class QuotaResource(str, Enum):
    PROJECTS = "projects"
    MEMBERS = "members"


_LIMIT_COLUMN = {
    QuotaResource.PROJECTS: "max_projects",
    QuotaResource.MEMBERS: "max_members",
}


def within_limit(count: int, limit: int) -> bool:
    """Pure limit rule."""
    if limit == UNLIMITED:
        return True
    return count < limit


class QuotaEnforcer:
    def __init__(self, session):
        self.session = session

    def _tenant(self, tenant_id: str) -> Tenant:
        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError(resource="Tenant", resource_id=tenant_id)
        return tenant

    def usage(self, tenant_id: str, resource: QuotaResource) -> int:
        model = Project if QuotaResource(resource) is QuotaResource.PROJECTS else User
        return self.session.execute(
            sa.select(sa.func.count()).select_from(model).where(model.tenant_id == tenant_id)
        ).scalar_one()

    def limit(self, tenant_id: str, resource: QuotaResource) -> int:
        return getattr(self._tenant(tenant_id), _LIMIT_COLUMN[QuotaResource(resource)])

    def check_limit(self, tenant_id: str, resource: QuotaResource) -> bool:
        resource = QuotaResource(resource)
        limit = self.limit(tenant_id, resource)
        if limit == UNLIMITED:
            return True
        return within_limit(self.usage(tenant_id, resource), limit)

    def enforce(self, tenant_id: str, resource: QuotaResource) -> None:
        """Raise QuotaExceededError when ``check_limit`` fails."""
        resource = QuotaResource(resource)
        if not self.check_limit(tenant_id, resource):
            limit = self.limit(tenant_id, resource)
            logger.warning("Quota exceeded: tenant=%s resource=%s limit=%s",
                           tenant_id, resource.value, limit)
            raise QuotaExceededError(resource, limit)

    def summary(self, tenant_id: str) -> dict:
        tenant = self._tenant(tenant_id)
        return {
            res.value: {
                "used": self.usage(tenant_id, res),
                "limit": getattr(tenant, _LIMIT_COLUMN[res]),
            }
            for res in QuotaResource
        }


def apply_plan(tenant: Tenant, plan_id: str) -> Tenant:
    """Set the tenant's plan and copy the catalog limits onto it."""
    plan = PLANS.get(plan_id)
    if plan is None:
        raise ValidationError(
            f"Unknown plan '{plan_id}'", details={"plan": f"one of {sorted(PLANS)}"},
        )
    tenant.plan = plan_id
    tenant.max_projects = plan["max_projects"]
    tenant.max_members = plan["max_members"]
    tenant.subscription_status = "active"
    return tenant
