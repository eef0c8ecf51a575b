"""
Audit Recorder — append-only trail for work-item events.

``record`` runs after the primary mutation has committed and commits its
own row. A failure is logged and swallowed: audit never turns a
successful mutation into an error response.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from agileflow.models.audit import AuditAction, AuditLog

logger = logging.getLogger(__name__)


def serialize_value(value):
    """JSON-safe form of a payload value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {str(k): serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [serialize_value(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def build_changes(payload: dict | None, *, exclude=("user_id", "password")) -> dict:
    """Ordered field → value map of the incoming payload."""
    return {
        str(key): serialize_value(value)
        for key, value in (payload or {}).items()
        if key not in exclude
    }


class AuditRecorder:
    def __init__(self, session):
        self.session = session

    def record(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        user_id: str | None,
        action: AuditAction | str,
        changes: dict | None = None,
    ) -> AuditLog | None:
        """Append one audit row. Returns None when the write failed."""
        try:
            entry = AuditLog(
                tenant_id=tenant_id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                user_id=user_id,
                action=AuditAction(action).value,
                changes=build_changes(changes, exclude=()),
            )
            self.session.add(entry)
            self.session.commit()
            return entry
        except (SQLAlchemyError, ValueError):
            self.session.rollback()
            logger.exception(
                "Audit write failed: tenant=%s %s/%s action=%s",
                tenant_id, entity_type, entity_id, action,
            )
            return None

    def list_for_entity(self, tenant_id: str, entity_type: str, entity_id: str) -> list[AuditLog]:
        return (
            self.session.query(AuditLog)
            .filter(
                AuditLog.tenant_id == tenant_id,
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == entity_id,
            )
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .all()
        )
