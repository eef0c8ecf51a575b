"""
Permission Decorators — role gates for route protection.

Usage:
    @bp.route("/projects", methods=["POST"])
    @require_roles(RoleId.SUPERADMIN, RoleId.ADMIN)
    def create_project():
        ...

The check itself is ``role_allowed`` from the access scope module, a pure
function of the caller's role.
"""

import functools
import logging

from flask import g

from agileflow.services.access_scope import role_allowed
from agileflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_principal():
    return getattr(g, "principal", None)


def require_roles(*roles):
    """Decorator: the authenticated caller's role must be one of ``roles``."""
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            principal = current_principal()
            if principal is None:
                return api_error(E.UNAUTHENTICATED, "Authentication required")
            if not role_allowed(principal.role, roles):
                logger.warning(
                    "User %s denied: role '%s' not in %s on %s",
                    principal.user_id, principal.role.value,
                    [getattr(r, "value", r) for r in roles], f.__name__,
                )
                return api_error(E.FORBIDDEN, "Permission denied")
            return f(*args, **kwargs)
        return decorated
    return decorator
