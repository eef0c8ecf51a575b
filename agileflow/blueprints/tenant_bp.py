"""
Tenant Blueprint — workspace record, plan catalog and board columns.

  GET /api/v1/tenant         — caller's tenant with live quota usage
  GET /api/v1/billing/plans  — plan catalog (public)
  GET /api/v1/columns        — board columns ordered by position
"""

from flask import Blueprint, jsonify

from agileflow.blueprints import principal
from agileflow.models.auth import PLANS
from agileflow.services.container import get_services

tenant_bp = Blueprint("tenant", __name__, url_prefix="/api/v1")


@tenant_bp.route("/tenant", methods=["GET"])
def get_tenant():
    svc = get_services()
    tenant = svc.tenants.get(principal().tenant_id)
    return jsonify({"tenant": tenant.to_dict(), "usage": svc.quota.summary(tenant.id)}), 200


@tenant_bp.route("/billing/plans", methods=["GET"])
def list_plans():
    plans = [{"id": plan_id, **plan} for plan_id, plan in PLANS.items()]
    return jsonify({"plans": plans}), 200


@tenant_bp.route("/columns", methods=["GET"])
def list_columns():
    columns = get_services().tenants.columns(principal().tenant_id)
    return jsonify({"columns": [c.to_dict() for c in columns]}), 200
