"""
Audit blueprint.

Endpoints:
    GET  /api/v1/audit-logs/<entity_type>/<entity_id>  — entity history, newest first
"""

from flask import Blueprint, jsonify

from agileflow.blueprints import principal
from agileflow.models.audit import AUDIT_ENTITY_TYPES
from agileflow.services.container import get_services
from agileflow.utils.errors import E, api_error

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


@audit_bp.route("/audit-logs/<entity_type>/<entity_id>", methods=["GET"])
def list_entity_audit_logs(entity_type, entity_id):
    if entity_type not in AUDIT_ENTITY_TYPES:
        return api_error(E.VALIDATION_INVALID, f"Unknown entity type '{entity_type}'",
                         details={"entity_type": list(AUDIT_ENTITY_TYPES)})
    logs = get_services().audit.list_for_entity(principal().tenant_id, entity_type, entity_id)
    return jsonify({"audit_logs": [log.to_dict() for log in logs], "total": len(logs)}), 200
