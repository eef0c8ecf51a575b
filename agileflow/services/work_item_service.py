"""
Work Item Service — epics, features, sprints, tasks and task comments.

Every read passes the tenant filter and the caller's project scope. Tasks
and features are visible only inside a visible project; epics and sprints
may also be tenant-wide (``project_id`` NULL) and are then visible to all.

Task writes follow a fixed order:

    validate → mutate + closure → commit → audit → cascade

Audit failures are swallowed by the recorder. A cascade failure is rolled
back, logged and reported to the caller as ``cascade_error``; the task
mutation itself stays committed.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from agileflow.core.exceptions import NotFoundError, ValidationError
from agileflow.models.audit import AuditAction
from agileflow.models.auth import MANAGER_ROLES, User
from agileflow.models.project import BoardColumn, Project
from agileflow.models.work_items import (
    Comment,
    Epic,
    EpicStatus,
    Feature,
    FeatureStatus,
    Priority,
    RoughEstimate,
    Sprint,
    SprintStatus,
    Task,
    TaskStatus,
    TaskType,
)
from agileflow.services.access_scope import (
    apply_scope,
    require_role,
    scope_allows,
)
from agileflow.services.audit_service import build_changes
from agileflow.services.helpers.scoped_queries import get_scoped
from agileflow.utils.helpers import check_text, coerce_int, parse_date, require_fields

logger = logging.getLogger(__name__)

# Fields a PATCH /tasks/<id> may carry
TASK_UPDATABLE = (
    "title", "statement", "description", "acceptance_criteria", "definition_of_done",
    "blocker", "story_points", "status", "priority", "type", "assignee_id",
    "reporter_id", "epic_id", "feature_id", "sprint_id", "parent_id", "column_id",
)
_TASK_TEXT = (
    "statement", "description", "acceptance_criteria", "definition_of_done", "blocker",
)
_PARENT_FIELDS = ("epic_id", "feature_id")
_REF_FIELDS = ("project_id", "epic_id", "feature_id", "sprint_id", "parent_id", "column_id")
_USER_FIELDS = ("assignee_id", "reporter_id", "owner_id")


def parse_enum(enum_cls, value, field: str, default=None):
    """Closed-enum validation for incoming strings. ``None``/"" → default."""
    if value in (None, ""):
        if default is None:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return default
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {field} '{value}'", details={field: [m.value for m in enum_cls]},
        ) from exc


class WorkItemService:
    def __init__(self, session, scope_resolver, audit, cascade):
        self.session = session
        self.scope_resolver = scope_resolver
        self.audit = audit
        self.cascade = cascade

    # ═══════════════════════════════════════════════════════════
    # Listing
    # ═══════════════════════════════════════════════════════════
    def _list(self, principal, model, *, include_unassigned: bool, filters: dict | None = None):
        scope = self.scope_resolver.for_principal(principal)
        query = apply_scope(
            model.query_for_tenant(principal.tenant_id), model.project_id, scope,
            include_unassigned=include_unassigned,
        )
        for column, value in (filters or {}).items():
            if value:
                query = query.filter(getattr(model, column) == value)
        return query.order_by(model.created_at.desc())

    def list_tasks(self, principal, filters: dict | None = None):
        return self._list(principal, Task, include_unassigned=False, filters=filters)

    def list_features(self, principal, filters: dict | None = None):
        return self._list(principal, Feature, include_unassigned=False, filters=filters)

    def list_epics(self, principal, filters: dict | None = None):
        return self._list(principal, Epic, include_unassigned=True, filters=filters)

    def list_sprints(self, principal, filters: dict | None = None):
        return self._list(principal, Sprint, include_unassigned=True, filters=filters)

    # ═══════════════════════════════════════════════════════════
    # Scoped lookups
    # ═══════════════════════════════════════════════════════════
    def _get(self, principal, model, pk, *, scope=None, include_unassigned=False):
        scope = scope or self.scope_resolver.for_principal(principal)
        return get_scoped(
            model, pk, tenant_id=principal.tenant_id, scope=scope,
            session=self.session, include_unassigned=include_unassigned,
        )

    def get_task(self, principal, task_id: str) -> Task:
        return self._get(principal, Task, task_id)

    def get_epic(self, principal, epic_id: str) -> Epic:
        return self._get(principal, Epic, epic_id, include_unassigned=True)

    def get_feature(self, principal, feature_id: str) -> Feature:
        return self._get(principal, Feature, feature_id)

    def get_sprint(self, principal, sprint_id: str) -> Sprint:
        return self._get(principal, Sprint, sprint_id, include_unassigned=True)

    def _project_in_scope(self, principal, scope, project_id: str | None) -> str | None:
        if not project_id:
            return None
        project = get_scoped(Project, project_id, tenant_id=principal.tenant_id, session=self.session)
        if not scope.allows(project.id):
            raise NotFoundError(resource="Project", resource_id=project_id)
        return project.id

    def _resolve_parents(self, principal, scope, epic_id, feature_id, project_id=None):
        """Validate epic/feature references and derive the task's project.

        An explicit ``epic_id`` must match the epic of a feature that hangs
        under one; a missing ``epic_id`` is taken from the feature. The
        project comes from the epic, else the feature, else the payload.
        """
        epic = feature = None
        if feature_id:
            feature = get_scoped(Feature, feature_id, tenant_id=principal.tenant_id,
                                 scope=scope, session=self.session)
            if feature.epic_id:
                if epic_id and epic_id != feature.epic_id:
                    raise ValidationError(
                        "epic_id does not match the feature's epic",
                        details={"epic_id": "mismatch", "feature_id": feature.id},
                    )
                epic_id = feature.epic_id
        if epic_id:
            epic = get_scoped(Epic, epic_id, tenant_id=principal.tenant_id, scope=scope,
                              session=self.session, include_unassigned=True)

        if epic is not None and epic.project_id:
            project_id = epic.project_id
        elif feature is not None and feature.project_id:
            project_id = feature.project_id
        else:
            project_id = self._project_in_scope(principal, scope, project_id)

        if not scope_allows(scope, project_id):
            raise ValidationError(
                "project_id is required for tasks outside a visible epic",
                details={"project_id": "required"},
            )
        return (epic.id if epic else None), (feature.id if feature else None), project_id

    def _check_users(self, principal, data: dict) -> None:
        """Assignee, reporter and owner must be users of the caller's tenant."""
        for name in _USER_FIELDS:
            if data.get(name):
                get_scoped(User, data[name], tenant_id=principal.tenant_id, session=self.session)

    def _check_refs(self, principal, scope, data: dict, task: Task | None = None):
        self._check_users(principal, data)
        if data.get("sprint_id"):
            get_scoped(Sprint, data["sprint_id"], tenant_id=principal.tenant_id, scope=scope,
                       session=self.session, include_unassigned=True)
        if data.get("parent_id"):
            if task is not None and data["parent_id"] == task.id:
                raise ValidationError("A task cannot be its own parent", details={"parent_id": "self"})
            get_scoped(Task, data["parent_id"], tenant_id=principal.tenant_id, scope=scope,
                       session=self.session)
        if data.get("column_id"):
            get_scoped(BoardColumn, data["column_id"], tenant_id=principal.tenant_id,
                       session=self.session)

    # ═══════════════════════════════════════════════════════════
    # Tasks
    # ═══════════════════════════════════════════════════════════
    def create_task(self, principal, data: dict) -> tuple[Task, dict]:
        require_fields(data, "title")
        check_text(data, *_TASK_TEXT, *_REF_FIELDS, *_USER_FIELDS)
        scope = self.scope_resolver.for_principal(principal)
        status = parse_enum(TaskStatus, data.get("status"), "status", TaskStatus.TODO)
        priority = parse_enum(Priority, data.get("priority"), "priority", Priority.P3)
        task_type = parse_enum(TaskType, data.get("type"), "type", TaskType.STORY)
        story_points = coerce_int(data.get("story_points") or 0, "story_points", minimum=0)

        epic_id, feature_id, project_id = self._resolve_parents(
            principal, scope, data.get("epic_id"), data.get("feature_id"), data.get("project_id"),
        )
        self._check_refs(principal, scope, data)

        task = Task(
            tenant_id=principal.tenant_id,
            project_id=project_id,
            epic_id=epic_id,
            feature_id=feature_id,
            sprint_id=data.get("sprint_id") or None,
            parent_id=data.get("parent_id") or None,
            column_id=data.get("column_id") or None,
            title=data["title"].strip(),
            story_points=story_points,
            status=status.value,
            priority=priority.value,
            type=task_type.value,
            assignee_id=data.get("assignee_id") or None,
            reporter_id=data.get("reporter_id") or principal.user_id,
            creator_id=principal.user_id,
            **{f: data.get(f) for f in _TASK_TEXT if data.get(f) is not None},
        )
        self.session.add(task)
        self.session.flush()
        self.cascade.apply_closure(task)
        self.session.commit()

        self.audit.record(principal.tenant_id, "task", task.id, principal.user_id,
                          AuditAction.CREATE, build_changes(data))
        outcome = self._run_cascade(principal, task.id)
        return task, outcome

    def update_task(self, principal, task_id: str, data: dict) -> tuple[Task, dict]:
        """Partial update. Unknown or read-only fields are rejected before any write."""
        if not data:
            raise ValidationError("Empty update", details={"body": "no fields"})
        unknown = [k for k in data if k not in TASK_UPDATABLE]
        if unknown:
            raise ValidationError(
                f"Fields not updatable: {', '.join(sorted(unknown))}",
                details={k: "not updatable" for k in unknown},
            )
        check_text(data, "title", *_TASK_TEXT, *_REF_FIELDS, *_USER_FIELDS)
        scope = self.scope_resolver.for_principal(principal)
        task = get_scoped(Task, task_id, tenant_id=principal.tenant_id, scope=scope,
                          session=self.session)
        previous_feature_id, previous_epic_id = task.feature_id, task.epic_id

        # Validate everything before touching the row.
        updates = {}
        if "title" in data:
            require_fields(data, "title")
            updates["title"] = data["title"].strip()
        if "status" in data:
            updates["status"] = parse_enum(TaskStatus, data["status"], "status").value
        if "priority" in data:
            updates["priority"] = parse_enum(Priority, data["priority"], "priority").value
        if "type" in data:
            updates["type"] = parse_enum(TaskType, data["type"], "type").value
        if "story_points" in data:
            updates["story_points"] = coerce_int(data["story_points"] or 0, "story_points", minimum=0)
        for name in _TASK_TEXT:
            if name in data:
                updates[name] = data[name]
        for name in ("assignee_id", "reporter_id", "sprint_id", "parent_id", "column_id"):
            if name in data:
                updates[name] = data[name] or None
        self._check_refs(principal, scope, data, task)

        if any(name in data for name in _PARENT_FIELDS):
            feature_id = data.get("feature_id", task.feature_id) or None
            if "epic_id" in data:
                epic_id = data["epic_id"] or None
            elif "feature_id" in data and feature_id:
                # A move to another feature follows that feature's epic.
                epic_id = None
            else:
                epic_id = task.epic_id
            updates["epic_id"], updates["feature_id"], updates["project_id"] = self._resolve_parents(
                principal, scope, epic_id, feature_id, task.project_id,
            )

        for name, value in updates.items():
            setattr(task, name, value)
        self.cascade.apply_closure(task)
        self.session.commit()

        self.audit.record(principal.tenant_id, "task", task.id, principal.user_id,
                          AuditAction.UPDATE, build_changes(data))
        outcome = self._run_cascade(
            principal, task.id,
            previous_feature_id=previous_feature_id, previous_epic_id=previous_epic_id,
        )
        return task, outcome

    def delete_task(self, principal, task_id: str) -> dict:
        require_role(principal, MANAGER_ROLES, "delete tasks")
        task = self.get_task(principal, task_id)
        feature_id, epic_id = task.feature_id, task.epic_id
        changes = {"title": task.title, "status": task.status}
        self.session.delete(task)
        self.session.commit()

        self.audit.record(principal.tenant_id, "task", task_id, principal.user_id,
                          AuditAction.DELETE, changes)
        return self._run_cascade(
            principal, task_id, previous_feature_id=feature_id, previous_epic_id=epic_id,
        )

    def _run_cascade(self, principal, task_id: str, **previous) -> dict:
        try:
            result = self.cascade.on_task_mutated(
                task_id, tenant_id=principal.tenant_id, actor_id=principal.user_id, **previous,
            )
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Cascade failed for task %s (tenant %s)", task_id, principal.tenant_id)
            return {"cascade_error": "Lifecycle propagation failed; parents will settle on the next change"}
        return {"cascade": result.to_dict()}

    # ═══════════════════════════════════════════════════════════
    # Epics / Features / Sprints
    # ═══════════════════════════════════════════════════════════
    def create_epic(self, principal, data: dict) -> Epic:
        require_fields(data, "title")
        check_text(data, "description", "business_value", "project_id", "owner_id")
        self._check_users(principal, data)
        scope = self.scope_resolver.for_principal(principal)
        epic = Epic(
            tenant_id=principal.tenant_id,
            project_id=self._project_in_scope(principal, scope, data.get("project_id")),
            title=data["title"].strip(),
            business_value=data.get("business_value"),
            description=data.get("description") or "",
            status=parse_enum(EpicStatus, data.get("status"), "status", EpicStatus.BACKLOG).value,
            priority=parse_enum(Priority, data.get("priority"), "priority", Priority.P3).value,
            owner_id=data.get("owner_id") or None,
            creator_id=principal.user_id,
            start_date=parse_date(data.get("start_date"), "start_date"),
            end_date=parse_date(data.get("end_date"), "end_date"),
        )
        self.session.add(epic)
        self.session.commit()
        self.audit.record(principal.tenant_id, "epic", epic.id, principal.user_id,
                          AuditAction.CREATE, build_changes(data))
        return epic

    def create_feature(self, principal, data: dict) -> Feature:
        """Features inherit their project from the epic they hang under."""
        require_fields(data, "title")
        check_text(data, "benefit_hypothesis", "acceptance_criteria", "tags", "project_id", "epic_id",
                   "assignee_id")
        self._check_users(principal, data)
        scope = self.scope_resolver.for_principal(principal)
        epic = None
        if data.get("epic_id"):
            epic = get_scoped(Epic, data["epic_id"], tenant_id=principal.tenant_id, scope=scope,
                              session=self.session, include_unassigned=True)
        if epic is not None and epic.project_id:
            project_id = epic.project_id
        else:
            project_id = self._project_in_scope(principal, scope, data.get("project_id"))
        if not scope_allows(scope, project_id):
            raise ValidationError("project_id is required", details={"project_id": "required"})

        estimate = data.get("rough_estimate")
        feature = Feature(
            tenant_id=principal.tenant_id,
            epic_id=epic.id if epic else None,
            project_id=project_id,
            title=data["title"].strip(),
            benefit_hypothesis=data.get("benefit_hypothesis"),
            acceptance_criteria=data.get("acceptance_criteria"),
            rough_estimate=parse_enum(RoughEstimate, estimate, "rough_estimate").value if estimate else None,
            status=parse_enum(FeatureStatus, data.get("status"), "status", FeatureStatus.DRAFT).value,
            tags=data.get("tags"),
            assignee_id=data.get("assignee_id") or None,
            creator_id=principal.user_id,
        )
        self.session.add(feature)
        self.session.commit()
        self.audit.record(principal.tenant_id, "feature", feature.id, principal.user_id,
                          AuditAction.CREATE, build_changes(data))
        if feature.epic_id:
            # A new unverified feature reopens a Completed epic.
            self._settle_epic(principal, feature.epic_id)
        return feature

    def create_sprint(self, principal, data: dict) -> Sprint:
        require_fields(data, "name")
        check_text(data, "goal", "project_id", "assignee_id")
        self._check_users(principal, data)
        scope = self.scope_resolver.for_principal(principal)
        start = parse_date(data.get("start_date"), "start_date")
        end = parse_date(data.get("end_date"), "end_date")
        if start and end and end < start:
            raise ValidationError("end_date precedes start_date", details={"end_date": "before start"})
        velocity = data.get("actual_velocity")
        if velocity not in (None, ""):
            try:
                velocity = float(velocity)
            except (TypeError, ValueError) as exc:
                raise ValidationError(
                    "actual_velocity must be a number", details={"actual_velocity": "number"},
                ) from exc
        else:
            velocity = None
        sprint = Sprint(
            tenant_id=principal.tenant_id,
            project_id=self._project_in_scope(principal, scope, data.get("project_id")),
            name=data["name"].strip(),
            goal=data.get("goal"),
            start_date=start,
            end_date=end,
            status=parse_enum(SprintStatus, data.get("status"), "status", SprintStatus.PLANNED).value,
            target_capacity=coerce_int(data.get("target_capacity") or 0, "target_capacity", minimum=0),
            actual_velocity=velocity,
            assignee_id=data.get("assignee_id") or None,
            creator_id=principal.user_id,
        )
        self.session.add(sprint)
        self.session.commit()
        self.audit.record(principal.tenant_id, "sprint", sprint.id, principal.user_id,
                          AuditAction.CREATE, build_changes(data))
        return sprint

    def delete_epic(self, principal, epic_id: str) -> None:
        epic = self.get_epic(principal, epic_id)
        self._delete(principal, "epic", epic, {"title": epic.title})

    def delete_feature(self, principal, feature_id: str) -> None:
        feature = self.get_feature(principal, feature_id)
        epic_id = feature.epic_id
        self._delete(principal, "feature", feature, {"title": feature.title})
        if epic_id:
            # The remaining features may now all be Verified.
            self._settle_epic(principal, epic_id)

    def _settle_epic(self, principal, epic_id: str) -> None:
        try:
            self.cascade.settle_epic(principal.tenant_id, epic_id, principal.user_id)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Epic %s not re-settled after feature change", epic_id)

    def delete_sprint(self, principal, sprint_id: str) -> None:
        sprint = self.get_sprint(principal, sprint_id)
        self._delete(principal, "sprint", sprint, {"name": sprint.name})

    def _delete(self, principal, entity_type: str, obj, changes: dict) -> None:
        entity_id = obj.id
        self.session.delete(obj)
        self.session.commit()
        logger.info("%s %s deleted by %s", entity_type, entity_id, principal.user_id)
        self.audit.record(principal.tenant_id, entity_type, entity_id, principal.user_id,
                          AuditAction.DELETE, changes)

    # ═══════════════════════════════════════════════════════════
    # Comments
    # ═══════════════════════════════════════════════════════════
    def list_comments(self, principal, task_id: str) -> list[Comment]:
        task = self.get_task(principal, task_id)
        return (
            Comment.query_for_tenant(principal.tenant_id)
            .filter(Comment.task_id == task.id)
            .order_by(Comment.created_at.asc())
            .all()
        )

    def add_comment(self, principal, task_id: str, data: dict) -> Comment:
        require_fields(data, "content")
        task = self.get_task(principal, task_id)
        comment = Comment(
            tenant_id=principal.tenant_id,
            task_id=task.id,
            user_id=principal.user_id,
            content=data["content"].strip(),
        )
        self.session.add(comment)
        self.session.commit()
        return comment
