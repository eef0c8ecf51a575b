"""Custom field definitions and per-entity values."""

from datetime import datetime, timezone
from enum import Enum

from agileflow.models import db
from agileflow.models.base import TenantModel


def _utcnow():
    return datetime.now(timezone.utc)


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


CUSTOM_FIELD_ENTITY_TYPES = ("epic", "feature", "sprint", "task", "bug", "issue")


class CustomFieldDefinition(TenantModel):
    """Dynamic field definition per entity type within a tenant."""

    __tablename__ = "custom_field_definitions"

    entity_type = db.Column(db.String(30), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    field_type = db.Column(db.String(20), nullable=False, default=FieldType.STRING.value)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    values = db.relationship(
        "CustomFieldValue",
        backref="field_definition",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "entity_type", "name", name="uq_cfd_tenant_entity_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "name": self.name,
            "type": self.field_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class CustomFieldValue(TenantModel):
    """Stored value for a custom field on a specific entity."""

    __tablename__ = "custom_field_values"

    field_definition_id = db.Column(
        db.String(36),
        db.ForeignKey("custom_field_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_id = db.Column(db.String(64), nullable=False)
    value = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("field_definition_id", "entity_id", name="uq_cfv_field_entity"),
        db.Index("ix_cfv_entity", "entity_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "field_definition_id": self.field_definition_id,
            "value": self.value,
        }
