"""
Projects Blueprint.

  GET    /api/v1/projects                          — visible projects
  POST   /api/v1/projects                          — create (superadmin/admin, quota)
  GET    /api/v1/projects/<id>                     — single project
  DELETE /api/v1/projects/<id>                     — delete (superadmin)
  GET    /api/v1/projects/<id>/members             — list members
  POST   /api/v1/projects/<id>/members             — add / change role
  DELETE /api/v1/projects/<id>/members/<user_id>   — remove member
"""

from flask import Blueprint, jsonify

from agileflow.blueprints import json_body, principal
from agileflow.middleware.permission_required import require_roles
from agileflow.models.auth import RoleId
from agileflow.services.container import get_services
from agileflow.utils.errors import E, api_error

projects_bp = Blueprint("projects", __name__, url_prefix="/api/v1")


@projects_bp.route("/projects", methods=["GET"])
def list_projects():
    projects = get_services().projects.list_projects(principal())
    return jsonify({"projects": [p.to_dict() for p in projects], "total": len(projects)}), 200


@projects_bp.route("/projects", methods=["POST"])
@require_roles(RoleId.SUPERADMIN, RoleId.ADMIN)
def create_project():
    project = get_services().projects.create_project(principal(), json_body())
    return jsonify({"project": project.to_dict()}), 201


@projects_bp.route("/projects/<project_id>", methods=["GET"])
def get_project(project_id):
    project = get_services().projects.get_project(principal(), project_id)
    return jsonify({"project": project.to_dict()}), 200


@projects_bp.route("/projects/<project_id>", methods=["DELETE"])
@require_roles(RoleId.SUPERADMIN)
def delete_project(project_id):
    get_services().projects.delete_project(principal(), project_id)
    return jsonify({"message": "Project deleted"}), 200


# ── Members ──────────────────────────────────────────────────────────────────

@projects_bp.route("/projects/<project_id>/members", methods=["GET"])
def list_members(project_id):
    members = get_services().projects.list_members(principal(), project_id)
    return jsonify({"members": [m.to_dict() for m in members]}), 200


@projects_bp.route("/projects/<project_id>/members", methods=["POST"])
@require_roles(RoleId.SUPERADMIN, RoleId.ADMIN)
def add_member(project_id):
    member = get_services().projects.add_member(principal(), project_id, json_body())
    return jsonify({"member": member.to_dict()}), 201


@projects_bp.route("/projects/<project_id>/members/<user_id>", methods=["DELETE"])
@require_roles(RoleId.SUPERADMIN, RoleId.ADMIN)
def remove_member(project_id, user_id):
    if not get_services().projects.remove_member(principal(), project_id, user_id):
        return api_error(E.NOT_FOUND, "Member not found")
    return jsonify({"message": "Member removed"}), 200
