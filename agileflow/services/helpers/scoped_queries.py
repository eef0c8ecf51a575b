"""
Tenant-scoped query helpers.

Every get-by-id goes through these helpers instead of
``db.session.get(Model, pk)``: a bare primary-key read would bypass tenant
isolation. A record outside the tenant, or outside the caller's project
scope, is indistinguishable from a missing one (NotFoundError → 404).

Usage:
    task = get_scoped(Task, task_id, tenant_id=principal.tenant_id, scope=scope)
    epic = get_scoped_or_none(Epic, epic_id, tenant_id=tenant_id)
"""

import logging

from sqlalchemy import select

from agileflow.core.exceptions import NotFoundError
from agileflow.models import db
from agileflow.services.access_scope import UNRESTRICTED, scope_allows

logger = logging.getLogger(__name__)


def get_scoped_or_none(model, pk, *, tenant_id: str, scope=UNRESTRICTED, session=None,
                       include_unassigned: bool = False):
    """Fetch by PK within the tenant, honouring the project scope.

    Models without a ``project_id`` column are scoped by tenant only.
    """
    if not tenant_id:
        raise ValueError(f"get_scoped({model.__name__}) requires tenant_id")
    if pk is None:
        return None
    session = session or db.session
    obj = session.execute(
        select(model).where(model.id == pk, model.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if obj is None:
        return None
    if hasattr(model, "project_id") and not scope_allows(
        scope, obj.project_id, include_unassigned=include_unassigned,
    ):
        logger.info("%s %s outside caller scope", model.__name__, pk)
        return None
    return obj


def get_scoped(model, pk, *, tenant_id: str, scope=UNRESTRICTED, session=None,
               include_unassigned: bool = False):
    """Same as get_scoped_or_none but raises NotFoundError on a miss."""
    obj = get_scoped_or_none(
        model, pk, tenant_id=tenant_id, scope=scope, session=session,
        include_unassigned=include_unassigned,
    )
    if obj is None:
        raise NotFoundError(resource=model.__name__, resource_id=pk, tenant_id=tenant_id)
    return obj
