"""
Auth Blueprint — registration, login and token endpoints.

  POST /api/v1/auth/register         — Workspace + superadmin → token pair
  POST /api/v1/auth/login            — Username/email + password → token pair
  POST /api/v1/auth/refresh          — Refresh token → new access token
  POST /api/v1/auth/logout           — Revoke every refresh token of the caller
  GET  /api/v1/auth/me               — Current user profile
  GET  /api/v1/auth/verify-email     — Confirm email with ?token=
  POST /api/v1/auth/forgot-password  — Issue reset token (always 200)
  POST /api/v1/auth/reset-password   — Token + new password
  POST /api/v1/auth/accept-invite    — Invitation token → user + token pair
"""

import logging

from flask import Blueprint, jsonify, request

from agileflow.blueprints import client_meta, json_body, principal
from agileflow.services.container import get_services
from agileflow.utils.errors import E, api_error
from agileflow.utils.helpers import check_text, text_or_none

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Body: { "workspace_name", "workspace_slug"?, "email", "password", "full_name" }
    """
    svc = get_services()
    tenant, user = svc.tenants.register(json_body())
    tokens = svc.sessions.issue(user, **client_meta())
    return jsonify({
        **tokens,
        "tenant_slug": tenant.slug,
        "tenant": tenant.to_dict(),
        "user": user.to_dict(),
    }), 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Body: { "username" | "email", "password", "tenant_slug"? }
    """
    data = json_body()
    check_text(data, "username", "email", "password", "tenant_slug")
    login_name = (data.get("username") or data.get("email") or "").strip()
    svc = get_services()
    user = svc.users.authenticate(login_name, data.get("password") or "", data.get("tenant_slug"))
    tokens = svc.sessions.issue(user, **client_meta())
    return jsonify({**tokens, "user": user.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """Body: { "refresh_token" }. Returns a new access token only."""
    access_token = get_services().sessions.rotate(text_or_none(json_body(), "refresh_token") or "")
    return jsonify({"access_token": access_token, "token_type": "Bearer"}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    revoked = get_services().sessions.revoke_all(principal().user_id)
    return jsonify({"message": "Logged out", "revoked_sessions": revoked}), 200


@auth_bp.route("/me", methods=["GET"])
def me():
    user = get_services().users.get_user(principal(), principal().user_id)
    return jsonify({"user": user.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# Email verification & password reset
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/verify-email", methods=["GET"])
def verify_email():
    if not get_services().users.verify_email(request.args.get("token", "")):
        return api_error(E.VALIDATION_INVALID, "Invalid or expired token")
    return jsonify({"message": "Email verified"}), 200


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    get_services().users.forgot_password(text_or_none(json_body(), "email") or "")
    return jsonify({"message": "If that email exists, a reset link has been sent"}), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = json_body()
    check_text(data, "token", "password")
    get_services().users.reset_password(data.get("token") or "", data.get("password") or "")
    return jsonify({"message": "Password updated"}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/accept-invite
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/accept-invite", methods=["POST"])
def accept_invite():
    """Body: { "token", "password", "full_name"? }"""
    data = json_body()
    check_text(data, "token", "password", "full_name")
    svc = get_services()
    user = svc.users.accept_invite(data.get("token") or "", data.get("password") or "",
                                   data.get("full_name"))
    tokens = svc.sessions.issue(user, **client_meta())
    return jsonify({**tokens, "user": user.to_dict()}), 201
