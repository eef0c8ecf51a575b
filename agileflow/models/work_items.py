"""
Work-item hierarchy — Epic → Feature → Task, plus Sprints and Comments.

Lifecycle fields (``status``, ``closed_at``, ``Epic.progress``) are owned by
the cascade engine once a task changes; see services/cascade_service.py.

``project_id`` on Feature and Task is derived from the parent Epic at write
time so scope filters never need a join.
"""

from datetime import datetime, timezone
from enum import Enum

from agileflow.models import db
from agileflow.models.base import TenantModel


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════
class TaskStatus(str, Enum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DONE = "Done"


class TaskType(str, Enum):
    TASK = "task"
    STORY = "story"
    BUG = "bug"
    ISSUE = "issue"


class Priority(str, Enum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class FeatureStatus(str, Enum):
    DRAFT = "Draft"
    READY_FOR_DEV = "Ready for Dev"
    IN_PROGRESS = "In Progress"
    VERIFIED = "Verified"


class EpicStatus(str, Enum):
    BACKLOG = "Backlog"
    IN_APPROVAL = "In Approval"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"


class SprintStatus(str, Enum):
    PLANNED = "Planned"
    ACTIVE = "Active"
    CLOSED = "Closed"


class RoughEstimate(str, Enum):
    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"


def _user_fk():
    return db.ForeignKey("users.id", ondelete="SET NULL")


# ═══════════════════════════════════════════════════════════════
# EPIC
# ═══════════════════════════════════════════════════════════════
class Epic(TenantModel):
    __tablename__ = "epics"

    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    business_value = db.Column(db.Text)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(30), nullable=False, default=EpicStatus.BACKLOG.value)
    priority = db.Column(db.String(5), nullable=False, default=Priority.P3.value)
    owner_id = db.Column(db.String(36), _user_fk())
    creator_id = db.Column(db.String(36), _user_fk())
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    progress = db.Column(db.Float, nullable=False, default=0.0)
    closed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "business_value": self.business_value,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "owner_id": self.owner_id,
            "creator_id": self.creator_id,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "progress": self.progress,
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════
# FEATURE
# ═══════════════════════════════════════════════════════════════
class Feature(TenantModel):
    __tablename__ = "features"

    epic_id = db.Column(
        db.String(36), db.ForeignKey("epics.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    benefit_hypothesis = db.Column(db.Text)
    acceptance_criteria = db.Column(db.Text)
    rough_estimate = db.Column(db.String(2))
    status = db.Column(db.String(30), nullable=False, default=FeatureStatus.DRAFT.value)
    tags = db.Column(db.String(500))
    assignee_id = db.Column(db.String(36), _user_fk())
    creator_id = db.Column(db.String(36), _user_fk())
    closed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "epic_id": self.epic_id,
            "project_id": self.project_id,
            "title": self.title,
            "benefit_hypothesis": self.benefit_hypothesis,
            "acceptance_criteria": self.acceptance_criteria,
            "rough_estimate": self.rough_estimate,
            "status": self.status,
            "tags": self.tags,
            "assignee_id": self.assignee_id,
            "creator_id": self.creator_id,
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════
# SPRINT
# ═══════════════════════════════════════════════════════════════
class Sprint(TenantModel):
    __tablename__ = "sprints"

    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    goal = db.Column(db.Text)
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    status = db.Column(db.String(20), nullable=False, default=SprintStatus.PLANNED.value)
    target_capacity = db.Column(db.Integer, default=0)
    actual_velocity = db.Column(db.Float)
    assignee_id = db.Column(db.String(36), _user_fk())
    creator_id = db.Column(db.String(36), _user_fk())
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "goal": self.goal,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "status": self.status,
            "target_capacity": self.target_capacity,
            "actual_velocity": self.actual_velocity,
            "assignee_id": self.assignee_id,
            "creator_id": self.creator_id,
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════
# TASK
# ═══════════════════════════════════════════════════════════════
class Task(TenantModel):
    __tablename__ = "tasks"

    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    epic_id = db.Column(
        db.String(36), db.ForeignKey("epics.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    feature_id = db.Column(
        db.String(36), db.ForeignKey("features.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    sprint_id = db.Column(
        db.String(36), db.ForeignKey("sprints.id", ondelete="SET NULL"), nullable=True,
    )
    parent_id = db.Column(
        db.String(36), db.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True,
    )
    column_id = db.Column(
        db.String(64), db.ForeignKey("board_columns.id", ondelete="SET NULL"), nullable=True,
    )
    title = db.Column(db.String(300), nullable=False)
    statement = db.Column(db.Text)
    description = db.Column(db.Text, default="")
    acceptance_criteria = db.Column(db.Text)
    definition_of_done = db.Column(db.Text)
    blocker = db.Column(db.Text)
    story_points = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.TODO.value)
    priority = db.Column(db.String(5), nullable=False, default=Priority.P3.value)
    type = db.Column(db.String(10), nullable=False, default=TaskType.STORY.value)
    assignee_id = db.Column(db.String(36), _user_fk())
    reporter_id = db.Column(db.String(36), _user_fk())
    creator_id = db.Column(db.String(36), _user_fk())
    closed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.Index("ix_tasks_tenant_project", "tenant_id", "project_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "epic_id": self.epic_id,
            "feature_id": self.feature_id,
            "sprint_id": self.sprint_id,
            "parent_id": self.parent_id,
            "column_id": self.column_id,
            "title": self.title,
            "statement": self.statement,
            "description": self.description,
            "acceptance_criteria": self.acceptance_criteria,
            "definition_of_done": self.definition_of_done,
            "blocker": self.blocker,
            "story_points": self.story_points,
            "status": self.status,
            "priority": self.priority,
            "type": self.type,
            "assignee_id": self.assignee_id,
            "reporter_id": self.reporter_id,
            "creator_id": self.creator_id,
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════
# COMMENT
# ═══════════════════════════════════════════════════════════════
class Comment(TenantModel):
    __tablename__ = "comments"

    task_id = db.Column(
        db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(36), _user_fk())
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
            "content": self.content,
            "created_at": _iso(self.created_at),
        }
