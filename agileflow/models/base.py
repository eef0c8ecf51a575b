"""
TenantModel — Abstract base class for tenant-scoped models.

All models that need tenant isolation inherit from TenantModel
instead of db.Model directly. This adds:
  - UUID string primary key
  - tenant_id FK column with index (ON DELETE CASCADE)
  - query_for_tenant(tenant_id) classmethod
"""

import uuid

from agileflow.models import db


def new_id() -> str:
    return str(uuid.uuid4())


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(
        db.String(36),
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a query filtered by tenant_id."""
        return cls.query.filter_by(tenant_id=tenant_id)
