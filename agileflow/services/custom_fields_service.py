"""
Custom Fields service layer.

Definitions are per tenant and entity type; only superadmin/admin manage
them. Values are upserted per entity and checked against the definition's
type before they are stored as text. Every commit in this module is the
transaction owner for its operation.
"""

import logging

from agileflow.core.exceptions import ConflictError, ValidationError
from agileflow.models.auth import MANAGER_ROLES
from agileflow.models.custom_fields import (
    CUSTOM_FIELD_ENTITY_TYPES,
    CustomFieldDefinition,
    CustomFieldValue,
    FieldType,
)
from agileflow.models.work_items import Epic, Feature, Sprint, Task
from agileflow.services.access_scope import require_role
from agileflow.services.helpers.scoped_queries import get_scoped
from agileflow.utils.helpers import parse_date, require_fields

logger = logging.getLogger(__name__)

# entity_type → model holding the entity (bug/issue are task types)
_ENTITY_MODELS = {
    "epic": Epic,
    "feature": Feature,
    "sprint": Sprint,
    "task": Task,
    "bug": Task,
    "issue": Task,
}
_UNASSIGNED_OK = (Epic, Sprint)


def _check_entity_type(entity_type: str) -> str:
    if entity_type not in CUSTOM_FIELD_ENTITY_TYPES:
        raise ValidationError(
            f"Unknown entity_type '{entity_type}'",
            details={"entity_type": list(CUSTOM_FIELD_ENTITY_TYPES)},
        )
    return entity_type


def coerce_field_value(field_type: str, value) -> str | None:
    """Validate ``value`` against the field type; returns the stored text form."""
    if value is None or value == "":
        return None
    field_type = FieldType(field_type)
    if field_type is FieldType.NUMBER:
        if isinstance(value, bool):
            raise ValidationError("Expected a number", details={"value": "number"})
        try:
            return str(float(value)) if not isinstance(value, int) else str(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Expected a number", details={"value": "number"}) from exc
    if field_type is FieldType.BOOLEAN:
        if isinstance(value, bool):
            return "true" if value else "false"
        if str(value).lower() in ("true", "false"):
            return str(value).lower()
        raise ValidationError("Expected true or false", details={"value": "boolean"})
    if field_type is FieldType.DATE:
        return parse_date(value, "value").isoformat()
    return str(value)


class CustomFieldService:
    def __init__(self, session, scope_resolver):
        self.session = session
        self.scope_resolver = scope_resolver

    # ── Definitions ─────────────────────────────────────────────────────

    def list_definitions(self, principal, entity_type: str | None = None):
        query = CustomFieldDefinition.query_for_tenant(principal.tenant_id)
        if entity_type:
            query = query.filter(CustomFieldDefinition.entity_type == _check_entity_type(entity_type))
        return query.order_by(CustomFieldDefinition.entity_type, CustomFieldDefinition.name).all()

    def create_definition(self, principal, data: dict) -> CustomFieldDefinition:
        require_role(principal, MANAGER_ROLES, "create custom fields")
        require_fields(data, "entity_type", "name")
        entity_type = _check_entity_type(data["entity_type"])
        try:
            field_type = FieldType(data.get("type") or FieldType.STRING.value)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown field type '{data.get('type')}'", details={"type": [t.value for t in FieldType]},
            ) from exc
        name = data["name"].strip()

        exists = CustomFieldDefinition.query_for_tenant(principal.tenant_id).filter_by(
            entity_type=entity_type, name=name,
        ).first()
        if exists:
            raise ConflictError("CustomFieldDefinition", "name", name)

        definition = CustomFieldDefinition(
            tenant_id=principal.tenant_id,
            entity_type=entity_type,
            name=name,
            field_type=field_type.value,
        )
        self.session.add(definition)
        self.session.commit()
        logger.info("Custom field %s (%s/%s) created in tenant %s",
                    definition.id, entity_type, name, principal.tenant_id)
        return definition

    def delete_definition(self, principal, definition_id: str) -> None:
        require_role(principal, MANAGER_ROLES, "delete custom fields")
        definition = get_scoped(CustomFieldDefinition, definition_id,
                                tenant_id=principal.tenant_id, session=self.session)
        self.session.delete(definition)
        self.session.commit()

    # ── Values ──────────────────────────────────────────────────────────

    def _entity(self, principal, entity_type: str, entity_id: str):
        model = _ENTITY_MODELS[_check_entity_type(entity_type)]
        return get_scoped(
            model, entity_id, tenant_id=principal.tenant_id,
            scope=self.scope_resolver.for_principal(principal), session=self.session,
            include_unassigned=model in _UNASSIGNED_OK,
        )

    def get_values(self, principal, entity_type: str, entity_id: str) -> list[dict]:
        entity = self._entity(principal, entity_type, entity_id)
        rows = (
            self.session.query(CustomFieldValue, CustomFieldDefinition)
            .join(CustomFieldDefinition,
                  CustomFieldDefinition.id == CustomFieldValue.field_definition_id)
            .filter(
                CustomFieldValue.tenant_id == principal.tenant_id,
                CustomFieldValue.entity_id == entity.id,
                CustomFieldDefinition.entity_type == entity_type,
            )
            .order_by(CustomFieldDefinition.name)
            .all()
        )
        return [{**value.to_dict(), "name": definition.name, "type": definition.field_type}
                for value, definition in rows]

    def set_values(self, principal, entity_type: str, entity_id: str, values: dict) -> list[dict]:
        """Upsert ``{field_definition_id: value}`` for one entity in one commit."""
        if not isinstance(values, dict):
            raise ValidationError("values must be an object", details={"values": "object"})
        entity = self._entity(principal, entity_type, entity_id)

        pending = []
        for definition_id, raw in values.items():
            definition = get_scoped(CustomFieldDefinition, definition_id,
                                    tenant_id=principal.tenant_id, session=self.session)
            if definition.entity_type != entity_type:
                raise ValidationError(
                    f"Field '{definition.name}' belongs to {definition.entity_type}",
                    details={definition_id: "wrong entity type"},
                )
            pending.append((definition, coerce_field_value(definition.field_type, raw)))

        for definition, text in pending:
            row = (
                CustomFieldValue.query_for_tenant(principal.tenant_id)
                .filter_by(field_definition_id=definition.id, entity_id=entity.id)
                .first()
            )
            if row is None:
                self.session.add(CustomFieldValue(
                    tenant_id=principal.tenant_id,
                    field_definition_id=definition.id,
                    entity_id=entity.id,
                    value=text,
                ))
            else:
                row.value = text
        self.session.commit()
        logger.info("Custom field values upserted: %s %s count=%d", entity_type, entity.id, len(pending))
        return self.get_values(principal, entity_type, entity_id)
