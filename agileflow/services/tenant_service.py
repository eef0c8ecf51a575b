"""
Tenant Service — workspace registration, tenant overview, plan changes.

Registration creates, in one transaction: the tenant (free plan, trial),
its first user (superadmin) and the default board columns.
"""

import logging
import re
from datetime import datetime, timedelta, timezone

from email_validator import EmailNotValidError, validate_email

from agileflow.core.exceptions import NotFoundError, ValidationError
from agileflow.models.auth import DEFAULT_PLAN, PLANS, RoleId, Tenant, User
from agileflow.models.project import BoardColumn, seed_default_columns
from agileflow.services.quota_service import apply_plan
from agileflow.utils.crypto import generate_opaque_token, hash_password
from agileflow.utils.helpers import check_text, require_fields

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]")


def slugify(value: str) -> str:
    """Lowercase; every character outside [a-z0-9] becomes '-'."""
    return _SLUG_RE.sub("-", (value or "").strip().lower())


def normalize_email(email: str) -> str:
    try:
        return validate_email(email.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"}) from e


def username_from_email(email: str) -> str:
    return email.split("@", 1)[0]


class TenantService:
    def __init__(self, session, config, email):
        self.session = session
        self.config = config
        self.email = email

    def register(self, data: dict) -> tuple[Tenant, User]:
        """Create a workspace and its first superadmin user."""
        require_fields(data, "workspace_name", "email", "password", "full_name")
        check_text(data, "workspace_slug")
        password = data["password"]
        min_len = self.config.get("PASSWORD_MIN_LENGTH", 8)
        if len(password) < min_len:
            raise ValidationError(
                f"Password must be at least {min_len} characters",
                details={"password": f"min {min_len} characters"},
            )
        email = normalize_email(data["email"])

        slug = slugify(data.get("workspace_slug") or data["workspace_name"])
        if not slug.strip("-"):
            raise ValidationError("Workspace slug is empty", details={"workspace_slug": "invalid"})
        if self.session.query(Tenant.id).filter_by(slug=slug).first():
            raise ValidationError("Workspace slug already taken", details={"workspace_slug": slug})

        plan = PLANS[DEFAULT_PLAN]
        now = datetime.now(timezone.utc)
        tenant = Tenant(
            name=data["workspace_name"].strip(),
            slug=slug,
            plan=DEFAULT_PLAN,
            max_projects=plan["max_projects"],
            max_members=plan["max_members"],
            subscription_status="trialing",
            trial_ends_at=now + timedelta(days=self.config.get("TRIAL_DAYS", 14)),
        )
        self.session.add(tenant)
        self.session.flush()

        verify_token = generate_opaque_token()
        user = User(
            tenant_id=tenant.id,
            username=username_from_email(email),
            email=email,
            password_hash=hash_password(password),
            role_id=RoleId.SUPERADMIN.value,
            full_name=data["full_name"].strip(),
            email_verify_token=verify_token,
        )
        self.session.add(user)
        seed_default_columns(tenant.id)
        self.session.commit()
        logger.info("Workspace registered: tenant=%s slug=%s", tenant.id, slug)

        self.email.send_verify(email, verify_token)
        self.email.send_welcome(email, user.full_name, tenant.name)
        return tenant, user

    def get(self, tenant_id: str) -> Tenant:
        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError(resource="Tenant", resource_id=tenant_id)
        return tenant

    def columns(self, tenant_id: str) -> list[BoardColumn]:
        return (
            self.session.query(BoardColumn)
            .filter(BoardColumn.tenant_id == tenant_id)
            .order_by(BoardColumn.order.asc())
            .all()
        )

    def set_plan(self, slug: str, plan_id: str) -> Tenant:
        tenant = self.session.query(Tenant).filter_by(slug=slug).first()
        if tenant is None:
            raise NotFoundError(resource="Tenant", resource_id=slug)
        apply_plan(tenant, plan_id)
        self.session.commit()
        logger.info("Tenant %s moved to plan %s", tenant.id, plan_id)
        return tenant
