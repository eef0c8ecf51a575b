"""Project and board-column models.

Projects are the unit of visibility for non-superadmin users (through
``ProjectMember``) and count toward the tenant's ``max_projects``.
Board columns are per tenant; exactly one is terminal (the Done column).
"""

from datetime import datetime, timezone

from agileflow.models import db
from agileflow.models.base import TenantModel


def _utcnow():
    return datetime.now(timezone.utc)


class Project(TenantModel):
    __tablename__ = "projects"

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    creator_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    members = db.relationship(
        "ProjectMember", back_populates="project", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "creator_id": self.creator_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# key, title, order, terminal
DEFAULT_COLUMNS = (
    ("todo", "To Do", 0, False),
    ("in-progress", "In Progress", 1, False),
    ("review", "Review", 2, False),
    ("done", "Done", 3, True),
)


class BoardColumn(TenantModel):
    __tablename__ = "board_columns"

    id = db.Column(db.String(64), primary_key=True)  # "{tenant_id}-{key}"
    key = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(100), nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    is_terminal = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "key", name="uq_board_column_key"),
    )

    @staticmethod
    def column_id(tenant_id: str, key: str) -> str:
        return f"{tenant_id}-{key}"

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "title": self.title,
            "order": self.order,
            "is_terminal": self.is_terminal,
        }


def seed_default_columns(tenant_id: str) -> list[BoardColumn]:
    columns = [
        BoardColumn(
            id=BoardColumn.column_id(tenant_id, key),
            tenant_id=tenant_id, key=key, title=title, order=order, is_terminal=terminal,
        )
        for key, title, order, terminal in DEFAULT_COLUMNS
    ]
    db.session.add_all(columns)
    return columns
