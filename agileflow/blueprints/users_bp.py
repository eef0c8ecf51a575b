"""
Users Blueprint — user management and invitations.

  GET    /api/v1/me                               — current user
  GET    /api/v1/users                            — scoped user list (?project_id=)
  POST   /api/v1/users                            — create (superadmin/admin, quota)
  GET    /api/v1/users/<id>                       — single user
  DELETE /api/v1/users/<id>                       — delete (superadmin)
  POST   /api/v1/users/<id>/change-password       — self or superadmin
  GET    /api/v1/invitations                      — pending and past invitations
  POST   /api/v1/invitations                      — invite by email (quota)
"""

import logging

from flask import Blueprint, jsonify, request

from agileflow.blueprints import json_body, principal
from agileflow.middleware.permission_required import require_roles
from agileflow.models.auth import RoleId
from agileflow.services.container import get_services
from agileflow.utils.helpers import check_text

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__, url_prefix="/api/v1")

_MANAGERS = (RoleId.SUPERADMIN, RoleId.ADMIN)


@users_bp.route("/me", methods=["GET"])
def me():
    user = get_services().users.get_user(principal(), principal().user_id)
    return jsonify({"user": user.to_dict()}), 200


@users_bp.route("/users", methods=["GET"])
def list_users():
    users = get_services().users.list_users(principal(), request.args.get("project_id"))
    return jsonify({"users": [u.to_dict() for u in users], "total": len(users)}), 200


@users_bp.route("/users", methods=["POST"])
@require_roles(*_MANAGERS)
def create_user():
    user = get_services().users.create_user(principal(), json_body())
    return jsonify({"user": user.to_dict()}), 201


@users_bp.route("/users/<user_id>", methods=["GET"])
def get_user(user_id):
    user = get_services().users.get_user(principal(), user_id)
    return jsonify({"user": user.to_dict()}), 200


@users_bp.route("/users/<user_id>", methods=["DELETE"])
@require_roles(RoleId.SUPERADMIN)
def delete_user(user_id):
    get_services().users.delete_user(principal(), user_id)
    return jsonify({"message": "User deleted"}), 200


@users_bp.route("/users/<user_id>/change-password", methods=["POST"])
def change_password(user_id):
    data = json_body()
    check_text(data, "current_password", "new_password")
    get_services().users.change_password(
        principal(), user_id, data.get("current_password"), data.get("new_password"),
    )
    return jsonify({"message": "Password updated"}), 200


# ── Invitations ──────────────────────────────────────────────────────────────

@users_bp.route("/invitations", methods=["GET"])
@require_roles(*_MANAGERS)
def list_invitations():
    invitations = get_services().users.list_invitations(principal())
    return jsonify({"invitations": [i.to_dict() for i in invitations]}), 200


@users_bp.route("/invitations", methods=["POST"])
@require_roles(*_MANAGERS)
def create_invitation():
    invitation = get_services().users.invite(principal(), json_body())
    return jsonify({"invitation": invitation.to_dict()}), 201
