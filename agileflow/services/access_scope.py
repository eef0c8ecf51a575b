"""Access scope resolver — which projects a caller may see.

``superadmin`` sees the whole tenant (``Unrestricted``); every other role
sees exactly the projects it holds a ``ProjectMember`` row for
(``Restricted``). An empty ``Restricted`` set is valid and means nothing
project-bound is visible; it is never confused with ``Unrestricted``.

Role write gates are plain functions over ``RoleId`` with no I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Union

import sqlalchemy as sa

from agileflow.core.exceptions import AuthorizationError
from agileflow.models.auth import ProjectMember, RoleId
from agileflow.models.project import Project

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unrestricted:
    """Tenant-wide visibility; callers filter by tenant only."""

    def allows(self, project_id: str | None) -> bool:
        return True


@dataclass(frozen=True)
class Restricted:
    """Visibility limited to ``project_ids`` (possibly empty)."""

    project_ids: frozenset[str]

    def allows(self, project_id: str | None) -> bool:
        return project_id is not None and project_id in self.project_ids


ProjectScope = Union[Unrestricted, Restricted]

UNRESTRICTED = Unrestricted()


class AccessScopeResolver:
    """Resolves a caller's visible project set from membership rows."""

    def __init__(self, session):
        self.session = session

    def visible_project_ids(self, user_id: str, role: RoleId, tenant_id: str) -> ProjectScope:
        if RoleId(role) is RoleId.SUPERADMIN:
            return UNRESTRICTED
        rows = self.session.execute(
            sa.select(ProjectMember.project_id)
            .join(Project, Project.id == ProjectMember.project_id)
            .where(ProjectMember.user_id == user_id, Project.tenant_id == tenant_id)
        ).scalars()
        return Restricted(frozenset(rows))

    def for_principal(self, principal) -> ProjectScope:
        return self.visible_project_ids(principal.user_id, principal.role, principal.tenant_id)


def scope_condition(column, scope: ProjectScope, *, include_unassigned: bool = False):
    """SQL predicate restricting ``column`` to the scope, or None if unrestricted.

    ``include_unassigned`` also admits rows whose project is NULL
    (tenant-wide epics and sprints).
    """
    if isinstance(scope, Unrestricted):
        return None
    if scope.project_ids:
        cond = column.in_(sorted(scope.project_ids))
    else:
        cond = sa.false()
    if include_unassigned:
        cond = sa.or_(cond, column.is_(None))
    return cond


def apply_scope(query, column, scope: ProjectScope, *, include_unassigned: bool = False):
    cond = scope_condition(column, scope, include_unassigned=include_unassigned)
    if cond is None:
        return query
    return query.filter(cond)


def scope_allows(scope: ProjectScope, project_id: str | None, *,
                 include_unassigned: bool = False) -> bool:
    if project_id is None and include_unassigned:
        return True
    return scope.allows(project_id)


# ── Role write gates ────────────────────────────────────────────────────────

def role_allowed(role: RoleId | str, allowed: Iterable[RoleId]) -> bool:
    """True when ``role`` is one of ``allowed``. Unknown roles are denied."""
    try:
        role = RoleId(role)
    except ValueError:
        return False
    return role in frozenset(allowed)


def require_role(principal, allowed: Iterable[RoleId], action: str = "perform this action") -> None:
    if not role_allowed(principal.role, allowed):
        logger.warning(
            "User %s (%s) denied: cannot %s", principal.user_id, principal.role.value, action,
        )
        raise AuthorizationError(f"Your role cannot {action}")


def can_assign_role(actor_role: RoleId, target_role: RoleId) -> bool:
    """Admins may create dev/qa users only; superadmins may create any role."""
    actor_role, target_role = RoleId(actor_role), RoleId(target_role)
    if actor_role is RoleId.SUPERADMIN:
        return True
    if actor_role is RoleId.ADMIN:
        return target_role not in (RoleId.SUPERADMIN, RoleId.ADMIN)
    return False
