"""
Auth Models — tenants, roles, users, refresh tokens, project members, invitations.

The role catalog is global and fixed (``RoleId``); everything else belongs
to exactly one tenant and disappears with it (ON DELETE CASCADE).
"""

from datetime import datetime, timezone
from enum import Enum

from agileflow.models import db
from agileflow.models.base import TenantModel, new_id


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# ENUMERATIONS & PLAN CATALOG
# ═══════════════════════════════════════════════════════════════
class RoleId(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    DEV = "dev"
    QA = "qa"


ROLE_NAMES = {
    RoleId.SUPERADMIN: "Super Administrator",
    RoleId.ADMIN: "Administrator",
    RoleId.DEV: "Developer",
    RoleId.QA: "QA Engineer",
}

# Roles allowed to manage users, invitations, projects and field definitions
MANAGER_ROLES = frozenset({RoleId.SUPERADMIN, RoleId.ADMIN})


class ProjectRole(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    MEMBER = "member"


UNLIMITED = -1

PLANS = {
    "free": {"name": "Free", "max_projects": 1, "max_members": 5},
    "pro": {"name": "Pro", "max_projects": 10, "max_members": 25},
    "enterprise": {"name": "Enterprise", "max_projects": UNLIMITED, "max_members": UNLIMITED},
}
DEFAULT_PLAN = "free"


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    plan = db.Column(db.String(50), nullable=False, default=DEFAULT_PLAN)
    max_projects = db.Column(db.Integer, nullable=False, default=PLANS[DEFAULT_PLAN]["max_projects"])
    max_members = db.Column(db.Integer, nullable=False, default=PLANS[DEFAULT_PLAN]["max_members"])
    subscription_status = db.Column(db.String(30), default="trialing")
    trial_ends_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint("max_projects >= -1", name="ck_tenant_max_projects"),
        db.CheckConstraint("max_members >= -1", name="ck_tenant_max_members"),
    )

    users = db.relationship(
        "User", back_populates="tenant", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "plan": self.plan,
            "max_projects": self.max_projects,
            "max_members": self.max_members,
            "subscription_status": self.subscription_status,
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. ROLES (static catalog, not tenant-scoped)
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.String(20), primary_key=True)
    name = db.Column(db.String(100), nullable=False)

    def to_dict(self):
        return {"id": self.id, "name": self.name}


def seed_roles() -> int:
    """Insert missing catalog rows. Returns the number of rows added."""
    existing = {r.id for r in Role.query.all()}
    added = 0
    for role_id, name in ROLE_NAMES.items():
        if role_id.value not in existing:
            db.session.add(Role(id=role_id.value, name=name))
            added += 1
    return added


# ═══════════════════════════════════════════════════════════════
# 3. USERS
# ═══════════════════════════════════════════════════════════════
class User(TenantModel):
    __tablename__ = "users"

    role_id = db.Column(db.String(20), db.ForeignKey("roles.id"), nullable=False)
    username = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(200), nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)
    full_name = db.Column(db.String(200))
    avatar_url = db.Column(db.String(500))
    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    email_verify_token = db.Column(db.String(128), index=True)
    reset_token = db.Column(db.String(128), index=True)
    reset_token_expires_at = db.Column(db.DateTime(timezone=True))
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.UniqueConstraint("tenant_id", "username", name="uq_user_tenant_username"),
        db.Index("ix_users_email", "email"),
    )

    tenant = db.relationship("Tenant", back_populates="users")
    role = db.relationship("Role")
    refresh_tokens = db.relationship(
        "RefreshToken", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    project_memberships = db.relationship(
        "ProjectMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def role_enum(self) -> RoleId:
        return RoleId(self.role_id)

    @property
    def role_name(self) -> str:
        return ROLE_NAMES[self.role_enum]

    def to_dict(self):
        """Public representation. Password hash and tokens never leave the model."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
            "role_id": self.role_id,
            "role_name": self.role_name,
            "email_verified": self.email_verified,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 4. REFRESH TOKENS (one row per live device session)
# ═══════════════════════════════════════════════════════════════
class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    token_hash = db.Column(db.String(64), nullable=False)  # SHA-256 of refresh token
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    user = db.relationship("User", back_populates="refresh_tokens")


# ═══════════════════════════════════════════════════════════════
# 5. PROJECT MEMBERS
# ═══════════════════════════════════════════════════════════════
class ProjectMember(db.Model):
    __tablename__ = "project_members"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    role = db.Column(db.String(20), nullable=False, default=ProjectRole.MEMBER.value)
    joined_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        db.Index("ix_project_members_project", "project_id"),
        db.Index("ix_project_members_user", "user_id"),
    )

    user = db.relationship("User", back_populates="project_memberships")
    project = db.relationship("Project", back_populates="members")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
            "user": self.user.to_dict() if self.user else None,
        }


# ═══════════════════════════════════════════════════════════════
# 6. INVITATIONS
# ═══════════════════════════════════════════════════════════════
class Invitation(TenantModel):
    __tablename__ = "invitations"

    email = db.Column(db.String(200), nullable=False)
    role_id = db.Column(db.String(20), db.ForeignKey("roles.id"), nullable=False)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True,
    )
    token = db.Column(db.String(128), unique=True, nullable=False)
    invited_by = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    accepted_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "role_id": self.role_id,
            "project_id": self.project_id,
            "invited_by": self.invited_by,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
