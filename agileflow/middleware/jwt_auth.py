"""
JWT Auth Middleware — authenticates every /api/v1 request with a Bearer token.

Sets ``g.principal`` (user_id, tenant_id, role, role_name, username) from
the access-token claims. Public endpoints are listed in ``JWT_PUBLIC_PATHS``
and match on whole path segments; everything else without a valid token
gets 401 before any blueprint code runs.

Chain order:
  timing.py  →  jwt_auth.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, request

from agileflow.core.exceptions import AuthenticationError
from agileflow.services.container import get_services
from agileflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths (and their sub-paths) that skip JWT auth entirely
JWT_PUBLIC_PATHS = (
    "/api/v1/auth/register",
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/auth/verify-email",
    "/api/v1/auth/forgot-password",
    "/api/v1/auth/reset-password",
    "/api/v1/auth/accept-invite",
    "/api/v1/billing/plans",
    "/api/v1/health",
)


def is_public_path(path: str) -> bool:
    if not path.startswith("/api/v1/"):
        return True
    path = path.rstrip("/")
    return any(path == public or path.startswith(public + "/") for public in JWT_PUBLIC_PATHS)


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.principal = None

        if request.method == "OPTIONS" or is_public_path(request.path):
            return None

        token = bearer_token()
        if token is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")

        try:
            g.principal = get_services().sessions.validate_access(token)
        except AuthenticationError as exc:
            logger.info("Rejected access token on %s %s: %s",
                        request.method, request.path, exc.message)
            return api_error(E.UNAUTHENTICATED, exc.message)
        return None
