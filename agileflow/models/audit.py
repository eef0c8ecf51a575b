"""
AgileFlow
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for work-item events.
"""

from datetime import datetime, timezone
from enum import Enum

from agileflow.models import db
from agileflow.models.base import new_id


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    PROGRESS_CHANGE = "progress_change"


AUDIT_ENTITY_TYPES = ("epic", "feature", "sprint", "task", "project", "user")


class AuditLog(db.Model):
    """
    One row per action. ``changes`` is the ordered field → value map of
    the payload that caused the event (not a before/after diff).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "tenant_id", "entity_type", "entity_id"),
        db.Index("idx_audit_ts", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(
        db.String(36),
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    user_id = db.Column(
        db.String(36),
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="NULL for system-initiated entries",
    )
    action = db.Column(db.String(30), nullable=False)
    changes = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
            "action": self.action,
            "changes": self.changes or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"
