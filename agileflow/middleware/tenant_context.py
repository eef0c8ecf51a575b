"""
Tenant Context Middleware — confirms the caller's tenant still exists.

Runs after jwt_auth. The tenant id comes from the access token; when the
tenant was deleted after the token was issued the request is rejected
with 401. On success ``g.tenant`` holds the Tenant row.
"""

import logging

from flask import g

from agileflow.models import db
from agileflow.models.auth import Tenant
from agileflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        principal = getattr(g, "principal", None)
        if principal is None:
            return None

        tenant = db.session.get(Tenant, principal.tenant_id)
        if tenant is None:
            logger.warning("Token for user %s references missing tenant %s",
                           principal.user_id, principal.tenant_id)
            return api_error(E.UNAUTHENTICATED, "Tenant no longer exists")
        g.tenant = tenant
        return None
