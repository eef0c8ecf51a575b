"""
Project Service — projects and project membership.

Project creation passes the tenant's PROJECTS quota first; the creator
joins as project ``superadmin`` and any ``admin_ids`` join as ``admin``.
"""

import logging

from agileflow.core.exceptions import NotFoundError, ValidationError
from agileflow.models.auth import MANAGER_ROLES, ProjectMember, ProjectRole, RoleId, User
from agileflow.models.project import Project
from agileflow.services.access_scope import apply_scope, require_role
from agileflow.services.helpers.scoped_queries import get_scoped
from agileflow.services.quota_service import QuotaResource
from agileflow.utils.helpers import check_text, require_fields

logger = logging.getLogger(__name__)


def _parse_project_role(value) -> ProjectRole:
    if value in (None, ""):
        return ProjectRole.MEMBER
    try:
        return ProjectRole(value)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown project role '{value}'", details={"role": [r.value for r in ProjectRole]},
        ) from exc


class ProjectService:
    def __init__(self, session, quota, scope_resolver):
        self.session = session
        self.quota = quota
        self.scope_resolver = scope_resolver

    def list_projects(self, principal) -> list[Project]:
        scope = self.scope_resolver.for_principal(principal)
        query = Project.query_for_tenant(principal.tenant_id)
        query = apply_scope(query, Project.id, scope)
        return query.order_by(Project.created_at.desc()).all()

    def get_project(self, principal, project_id: str) -> Project:
        project = get_scoped(Project, project_id, tenant_id=principal.tenant_id, session=self.session)
        scope = self.scope_resolver.for_principal(principal)
        if not scope.allows(project.id):
            raise NotFoundError(resource="Project", resource_id=project_id)
        return project

    def create_project(self, principal, data: dict) -> Project:
        require_role(principal, MANAGER_ROLES, "create projects")
        require_fields(data, "name")
        check_text(data, "description")
        admin_ids = data.get("admin_ids") or []
        if not isinstance(admin_ids, list):
            raise ValidationError("admin_ids must be a list", details={"admin_ids": "list"})
        admins = [
            get_scoped(User, uid, tenant_id=principal.tenant_id, session=self.session)
            for uid in dict.fromkeys(admin_ids) if uid != principal.user_id
        ]

        self.quota.enforce(principal.tenant_id, QuotaResource.PROJECTS)

        project = Project(
            tenant_id=principal.tenant_id,
            name=data["name"].strip(),
            description=data.get("description") or "",
            creator_id=principal.user_id,
        )
        self.session.add(project)
        self.session.flush()
        self.session.add(ProjectMember(
            project_id=project.id, user_id=principal.user_id, role=ProjectRole.SUPERADMIN.value,
        ))
        for admin in admins:
            self.session.add(ProjectMember(
                project_id=project.id, user_id=admin.id, role=ProjectRole.ADMIN.value,
            ))
        self.session.commit()
        logger.info("Project %s created in tenant %s", project.id, principal.tenant_id)
        return project

    def delete_project(self, principal, project_id: str) -> None:
        require_role(principal, {RoleId.SUPERADMIN}, "delete projects")
        project = get_scoped(Project, project_id, tenant_id=principal.tenant_id, session=self.session)
        self.session.query(ProjectMember).filter(ProjectMember.project_id == project.id).delete(
            synchronize_session=False,
        )
        self.session.delete(project)
        self.session.commit()
        logger.info("Project %s deleted by %s", project_id, principal.user_id)

    # ── Members ─────────────────────────────────────────────────────────

    def list_members(self, principal, project_id: str) -> list[ProjectMember]:
        project = self.get_project(principal, project_id)
        return (
            self.session.query(ProjectMember)
            .filter(ProjectMember.project_id == project.id)
            .order_by(ProjectMember.joined_at.asc())
            .all()
        )

    def add_member(self, principal, project_id: str, data: dict) -> ProjectMember:
        """Add or update a membership. The user must belong to the caller's tenant."""
        require_role(principal, MANAGER_ROLES, "manage project members")
        require_fields(data, "user_id")
        project = get_scoped(Project, project_id, tenant_id=principal.tenant_id, session=self.session)
        user = get_scoped(User, data["user_id"], tenant_id=principal.tenant_id, session=self.session)
        role = _parse_project_role(data.get("role"))

        member = (
            self.session.query(ProjectMember)
            .filter_by(project_id=project.id, user_id=user.id)
            .first()
        )
        if member is None:
            member = ProjectMember(project_id=project.id, user_id=user.id, role=role.value)
            self.session.add(member)
        else:
            member.role = role.value
        self.session.commit()
        return member

    def remove_member(self, principal, project_id: str, user_id: str) -> bool:
        require_role(principal, MANAGER_ROLES, "manage project members")
        project = get_scoped(Project, project_id, tenant_id=principal.tenant_id, session=self.session)
        deleted = (
            self.session.query(ProjectMember)
            .filter_by(project_id=project.id, user_id=user_id)
            .delete(synchronize_session=False)
        )
        self.session.commit()
        return bool(deleted)
