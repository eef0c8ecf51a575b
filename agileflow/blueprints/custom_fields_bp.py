"""
Custom Fields Blueprint

Prefix: /api/v1

Endpoints:
  Custom Field Definitions:
    GET/POST  /custom-fields                               -- List (?entity_type=) / create
    DELETE    /custom-fields/<fid>                         -- Delete definition and its values

  Custom Field Values:
    GET/PUT   /custom-fields/values/<entity_type>/<eid>    -- Get / upsert values for an entity
"""

from flask import Blueprint, jsonify, request

from agileflow.blueprints import json_body, principal
from agileflow.middleware.permission_required import require_roles
from agileflow.models.auth import RoleId
from agileflow.services.container import get_services

custom_fields_bp = Blueprint("custom_fields", __name__, url_prefix="/api/v1")


@custom_fields_bp.route("/custom-fields", methods=["GET"])
def list_field_definitions_route():
    fields = get_services().custom_fields.list_definitions(
        principal(), request.args.get("entity_type") or None,
    )
    return jsonify({"fields": [f.to_dict() for f in fields], "total": len(fields)}), 200


@custom_fields_bp.route("/custom-fields", methods=["POST"])
@require_roles(RoleId.SUPERADMIN, RoleId.ADMIN)
def create_field_definition_route():
    field = get_services().custom_fields.create_definition(principal(), json_body())
    return jsonify({"field": field.to_dict()}), 201


@custom_fields_bp.route("/custom-fields/<fid>", methods=["DELETE"])
@require_roles(RoleId.SUPERADMIN, RoleId.ADMIN)
def delete_field_definition_route(fid):
    get_services().custom_fields.delete_definition(principal(), fid)
    return jsonify({"message": "Custom field deleted"}), 200


@custom_fields_bp.route("/custom-fields/values/<entity_type>/<eid>", methods=["GET"])
def get_entity_values_route(entity_type, eid):
    values = get_services().custom_fields.get_values(principal(), entity_type, eid)
    return jsonify({"values": values}), 200


@custom_fields_bp.route("/custom-fields/values/<entity_type>/<eid>", methods=["PUT"])
def set_entity_values_route(entity_type, eid):
    """Body: { "values": { "<field_definition_id>": <value>, ... } }"""
    values = get_services().custom_fields.set_values(
        principal(), entity_type, eid, json_body().get("values") or {},
    )
    return jsonify({"values": values}), 200
