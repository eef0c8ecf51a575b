"""
Work Items Blueprint — epics, features, sprints, tasks, comments.

  GET/POST   /api/v1/epics                 GET/DELETE /api/v1/epics/<id>
  GET/POST   /api/v1/features              GET/DELETE /api/v1/features/<id>
  GET/POST   /api/v1/sprints               GET/DELETE /api/v1/sprints/<id>
  GET/POST   /api/v1/tasks                 GET/PATCH/DELETE /api/v1/tasks/<id>
  GET/POST   /api/v1/tasks/<id>/comments

Listings accept ``limit``/``offset`` plus equality filters on the query
string. Task writes return the cascade outcome next to the task.
"""

from flask import Blueprint, jsonify, request

from agileflow.blueprints import json_body, paginate_query, principal
from agileflow.middleware.permission_required import require_roles
from agileflow.models.auth import RoleId
from agileflow.services.container import get_services

work_items_bp = Blueprint("work_items", __name__, url_prefix="/api/v1")

_FILTERS = {
    "tasks": ("project_id", "epic_id", "feature_id", "sprint_id", "status", "assignee_id", "type"),
    "features": ("project_id", "epic_id", "status"),
    "epics": ("project_id", "status"),
    "sprints": ("project_id", "status"),
}


def _filters(kind: str) -> dict:
    return {name: request.args.get(name) for name in _FILTERS[kind] if request.args.get(name)}


def _listing(kind: str, query):
    items, total = paginate_query(query)
    return jsonify({kind: [i.to_dict() for i in items], "total": total}), 200


# ═══════════════════════════════════════════════════════════════
# Tasks
# ═══════════════════════════════════════════════════════════════
@work_items_bp.route("/tasks", methods=["GET"])
def list_tasks():
    return _listing("tasks", get_services().work_items.list_tasks(principal(), _filters("tasks")))


@work_items_bp.route("/tasks", methods=["POST"])
def create_task():
    task, outcome = get_services().work_items.create_task(principal(), json_body())
    return jsonify({"task": task.to_dict(), **outcome}), 201


@work_items_bp.route("/tasks/<task_id>", methods=["GET"])
def get_task(task_id):
    task = get_services().work_items.get_task(principal(), task_id)
    return jsonify({"task": task.to_dict()}), 200


@work_items_bp.route("/tasks/<task_id>", methods=["PATCH"])
def update_task(task_id):
    task, outcome = get_services().work_items.update_task(principal(), task_id, json_body())
    return jsonify({"task": task.to_dict(), **outcome}), 200


@work_items_bp.route("/tasks/<task_id>", methods=["DELETE"])
@require_roles(RoleId.SUPERADMIN, RoleId.ADMIN)
def delete_task(task_id):
    outcome = get_services().work_items.delete_task(principal(), task_id)
    return jsonify({"message": "Task deleted", **outcome}), 200


# ── Comments ─────────────────────────────────────────────────────────────────

@work_items_bp.route("/tasks/<task_id>/comments", methods=["GET"])
def list_comments(task_id):
    comments = get_services().work_items.list_comments(principal(), task_id)
    return jsonify({"comments": [c.to_dict() for c in comments]}), 200


@work_items_bp.route("/tasks/<task_id>/comments", methods=["POST"])
def add_comment(task_id):
    comment = get_services().work_items.add_comment(principal(), task_id, json_body())
    return jsonify({"comment": comment.to_dict()}), 201


# ═══════════════════════════════════════════════════════════════
# Epics
# ═══════════════════════════════════════════════════════════════
@work_items_bp.route("/epics", methods=["GET"])
def list_epics():
    return _listing("epics", get_services().work_items.list_epics(principal(), _filters("epics")))


@work_items_bp.route("/epics", methods=["POST"])
def create_epic():
    epic = get_services().work_items.create_epic(principal(), json_body())
    return jsonify({"epic": epic.to_dict()}), 201


@work_items_bp.route("/epics/<epic_id>", methods=["GET"])
def get_epic(epic_id):
    epic = get_services().work_items.get_epic(principal(), epic_id)
    return jsonify({"epic": epic.to_dict()}), 200


@work_items_bp.route("/epics/<epic_id>", methods=["DELETE"])
def delete_epic(epic_id):
    get_services().work_items.delete_epic(principal(), epic_id)
    return jsonify({"message": "Epic deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Features
# ═══════════════════════════════════════════════════════════════
@work_items_bp.route("/features", methods=["GET"])
def list_features():
    return _listing("features", get_services().work_items.list_features(principal(), _filters("features")))


@work_items_bp.route("/features", methods=["POST"])
def create_feature():
    feature = get_services().work_items.create_feature(principal(), json_body())
    return jsonify({"feature": feature.to_dict()}), 201


@work_items_bp.route("/features/<feature_id>", methods=["GET"])
def get_feature(feature_id):
    feature = get_services().work_items.get_feature(principal(), feature_id)
    return jsonify({"feature": feature.to_dict()}), 200


@work_items_bp.route("/features/<feature_id>", methods=["DELETE"])
def delete_feature(feature_id):
    get_services().work_items.delete_feature(principal(), feature_id)
    return jsonify({"message": "Feature deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Sprints
# ═══════════════════════════════════════════════════════════════
@work_items_bp.route("/sprints", methods=["GET"])
def list_sprints():
    return _listing("sprints", get_services().work_items.list_sprints(principal(), _filters("sprints")))


@work_items_bp.route("/sprints", methods=["POST"])
def create_sprint():
    sprint = get_services().work_items.create_sprint(principal(), json_body())
    return jsonify({"sprint": sprint.to_dict()}), 201


@work_items_bp.route("/sprints/<sprint_id>", methods=["GET"])
def get_sprint(sprint_id):
    sprint = get_services().work_items.get_sprint(principal(), sprint_id)
    return jsonify({"sprint": sprint.to_dict()}), 200


@work_items_bp.route("/sprints/<sprint_id>", methods=["DELETE"])
def delete_sprint(sprint_id):
    get_services().work_items.delete_sprint(principal(), sprint_id)
    return jsonify({"message": "Sprint deleted"}), 200
