"""
User Service — authentication, user management, invitations, password flows.

Member-creating operations (``create_user``, ``invite``) pass the tenant's
MEMBERS quota before any write.
"""

import logging
from datetime import datetime, timedelta, timezone

import sqlalchemy as sa

from agileflow.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from agileflow.models.auth import (
    MANAGER_ROLES,
    Invitation,
    ProjectMember,
    ProjectRole,
    RefreshToken,
    RoleId,
    Tenant,
    User,
)
from agileflow.models.project import Project
from agileflow.services.access_scope import (
    Unrestricted,
    can_assign_role,
    require_role,
)
from agileflow.services.helpers.scoped_queries import get_scoped
from agileflow.services.quota_service import QuotaResource
from agileflow.services.tenant_service import normalize_email, username_from_email
from agileflow.utils.crypto import (
    generate_invite_token,
    generate_opaque_token,
    hash_password,
    verify_password,
)
from agileflow.utils.helpers import as_utc, check_text, require_fields

logger = logging.getLogger(__name__)


def _parse_role(value, default: RoleId | None = None) -> RoleId:
    if value in (None, "") and default is not None:
        return default
    try:
        return RoleId(value)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown role '{value}'", details={"role_id": [r.value for r in RoleId]},
        ) from exc


class UserService:
    def __init__(self, session, config, quota, scope_resolver, email):
        self.session = session
        self.config = config
        self.quota = quota
        self.scope_resolver = scope_resolver
        self.email = email

    def _check_password(self, password: str | None, field: str = "password") -> str:
        min_len = self.config.get("PASSWORD_MIN_LENGTH", 8)
        if not isinstance(password, str) or len(password) < min_len:
            raise ValidationError(
                f"Password must be at least {min_len} characters",
                details={field: f"min {min_len} characters"},
            )
        return password

    # ═══════════════════════════════════════════════════════════
    # Authentication
    # ═══════════════════════════════════════════════════════════
    def authenticate(self, login: str, password: str, tenant_slug: str | None = None) -> User:
        """Resolve a user by username or email and verify the password.

        Without ``tenant_slug`` the login may match users in several
        workspaces; the one whose password verifies wins, and a tie asks
        for the slug.
        """
        if not login or not password:
            raise ValidationError(
                "Login and password are required",
                details={"login": "required", "password": "required"},
            )

        query = self.session.query(User).filter(
            sa.or_(User.username == login, User.email == login.strip().lower())
        )
        if tenant_slug:
            tenant = self.session.query(Tenant).filter_by(slug=tenant_slug).first()
            if tenant is None:
                raise AuthenticationError("Invalid credentials")
            query = query.filter(User.tenant_id == tenant.id)

        matches = [u for u in query.order_by(User.created_at.asc()).all()
                   if verify_password(password, u.password_hash)]
        if not matches:
            logger.warning("Failed login for '%s' (tenant_slug=%s)", login, tenant_slug)
            raise AuthenticationError("Invalid credentials")
        if len(matches) > 1:
            raise ValidationError(
                "Account exists in several workspaces; provide tenant_slug",
                details={"tenant_slug": "required"},
            )

        user = matches[0]
        user.last_login_at = datetime.now(timezone.utc)
        self.session.commit()
        return user

    # ═══════════════════════════════════════════════════════════
    # User CRUD
    # ═══════════════════════════════════════════════════════════
    def list_users(self, principal, project_id: str | None = None) -> list[User]:
        """Superadmin: whole tenant (optionally one project). Others: co-members."""
        scope = self.scope_resolver.for_principal(principal)
        query = self.session.query(User).filter(User.tenant_id == principal.tenant_id)

        if isinstance(scope, Unrestricted):
            if project_id and project_id != "all":
                query = query.join(ProjectMember, ProjectMember.user_id == User.id).filter(
                    ProjectMember.project_id == project_id
                )
            return query.order_by(User.created_at.asc()).all()

        if not scope.project_ids:
            return []
        member_ids = sa.select(ProjectMember.user_id).where(
            ProjectMember.project_id.in_(sorted(scope.project_ids))
        )
        return query.filter(User.id.in_(member_ids)).order_by(User.created_at.asc()).all()

    def get_user(self, principal, user_id: str) -> User:
        """Same visibility as ``list_users``: the caller plus co-members of a visible project."""
        user = get_scoped(User, user_id, tenant_id=principal.tenant_id, session=self.session)
        if user.id == principal.user_id:
            return user
        scope = self.scope_resolver.for_principal(principal)
        if isinstance(scope, Unrestricted):
            return user
        shared = scope.project_ids and self.session.query(ProjectMember.id).filter(
            ProjectMember.user_id == user.id,
            ProjectMember.project_id.in_(sorted(scope.project_ids)),
        ).first()
        if not shared:
            logger.info("User %s outside the project scope of %s", user_id, principal.user_id)
            raise NotFoundError(resource="User", resource_id=user_id)
        return user

    def create_user(self, principal, data: dict) -> User:
        require_role(principal, MANAGER_ROLES, "create users")
        require_fields(data, "username", "password", "role_id")
        check_text(data, "email", "full_name", "project_id")
        role = _parse_role(data.get("role_id"))
        if not can_assign_role(principal.role, role):
            raise AuthorizationError("Admins cannot create admin-level users")
        password = self._check_password(data.get("password"))
        email = normalize_email(data["email"]) if data.get("email") else None

        project = None
        if data.get("project_id"):
            project = get_scoped(Project, data["project_id"], tenant_id=principal.tenant_id,
                                 session=self.session)

        self.quota.enforce(principal.tenant_id, QuotaResource.MEMBERS)
        self._ensure_unique(principal.tenant_id, data["username"], email)

        user = User(
            tenant_id=principal.tenant_id,
            username=data["username"].strip(),
            email=email,
            password_hash=hash_password(password),
            role_id=role.value,
            full_name=data.get("full_name"),
        )
        self.session.add(user)
        self.session.flush()
        if project is not None:
            self.session.add(ProjectMember(
                project_id=project.id, user_id=user.id, role=ProjectRole.MEMBER.value,
            ))
        self.session.commit()
        logger.info("User %s created in tenant %s by %s", user.id, user.tenant_id, principal.user_id)
        return user

    def _ensure_unique(self, tenant_id: str, username: str | None, email: str | None):
        if email and self.session.query(User.id).filter_by(tenant_id=tenant_id, email=email).first():
            raise ConflictError("User", "email", email)
        if username and self.session.query(User.id).filter_by(
            tenant_id=tenant_id, username=username.strip(),
        ).first():
            raise ConflictError("User", "username", username)

    def delete_user(self, principal, user_id: str) -> None:
        """Remove the user with its memberships and refresh tokens."""
        require_role(principal, {RoleId.SUPERADMIN}, "delete users")
        if user_id == principal.user_id:
            raise ValidationError("You cannot delete your own account")
        user = get_scoped(User, user_id, tenant_id=principal.tenant_id, session=self.session)
        self.session.query(ProjectMember).filter(ProjectMember.user_id == user.id).delete(
            synchronize_session=False,
        )
        self.session.query(RefreshToken).filter(RefreshToken.user_id == user.id).delete(
            synchronize_session=False,
        )
        self.session.delete(user)
        self.session.commit()
        logger.info("User %s deleted by %s", user_id, principal.user_id)

    def change_password(self, principal, user_id: str, current_password: str | None,
                        new_password: str | None) -> None:
        if principal.user_id != user_id and not principal.is_superadmin:
            raise AuthorizationError("Cannot change another user's password")
        self._check_password(new_password, "new_password")
        user = get_scoped(User, user_id, tenant_id=principal.tenant_id, session=self.session)
        if not principal.is_superadmin and not verify_password(current_password or "", user.password_hash):
            raise AuthenticationError("Current password incorrect")
        user.password_hash = hash_password(new_password)
        self.session.commit()

    # ═══════════════════════════════════════════════════════════
    # Email verification & password reset
    # ═══════════════════════════════════════════════════════════
    def verify_email(self, token: str) -> bool:
        if not token:
            return False
        user = self.session.query(User).filter_by(email_verify_token=token).first()
        if user is None:
            return False
        user.email_verified = True
        user.email_verify_token = None
        self.session.commit()
        return True

    def forgot_password(self, email: str) -> None:
        """Issue a reset token when the email is known. Silent otherwise."""
        if not email:
            return
        users = self.session.query(User).filter(User.email == email.strip().lower()).all()
        expires = datetime.now(timezone.utc) + timedelta(
            seconds=self.config.get("RESET_TOKEN_EXPIRES", 3600)
        )
        for user in users:
            user.reset_token = generate_opaque_token()
            user.reset_token_expires_at = expires
        self.session.commit()
        for user in users:
            self.email.send_password_reset(user.email, user.reset_token)

    def reset_password(self, token: str, new_password: str) -> None:
        self._check_password(new_password, "new_password")
        user = self.session.query(User).filter_by(reset_token=token).first() if token else None
        if (user is None or user.reset_token_expires_at is None
                or as_utc(user.reset_token_expires_at) <= datetime.now(timezone.utc)):
            raise ValidationError("Invalid or expired token", details={"token": "invalid"})
        user.password_hash = hash_password(new_password)
        user.reset_token = None
        user.reset_token_expires_at = None
        self.session.commit()

    # ═══════════════════════════════════════════════════════════
    # Invite Flow
    # ═══════════════════════════════════════════════════════════
    def invite(self, principal, data: dict) -> Invitation:
        require_role(principal, MANAGER_ROLES, "send invitations")
        require_fields(data, "email")
        email = normalize_email(data["email"])
        role = _parse_role(data.get("role_id"), default=RoleId.DEV)
        if not can_assign_role(principal.role, role):
            raise AuthorizationError("Admins cannot invite admin-level users")

        project_id = None
        if data.get("project_id"):
            project_id = get_scoped(Project, data["project_id"], tenant_id=principal.tenant_id,
                                    session=self.session).id

        self.quota.enforce(principal.tenant_id, QuotaResource.MEMBERS)
        if self.session.query(User.id).filter_by(tenant_id=principal.tenant_id, email=email).first():
            raise ValidationError("User already in workspace", details={"email": email})

        invitation = Invitation(
            tenant_id=principal.tenant_id,
            email=email,
            role_id=role.value,
            project_id=project_id,
            token=generate_invite_token(),
            invited_by=principal.user_id,
            expires_at=datetime.now(timezone.utc) + timedelta(
                seconds=self.config.get("INVITE_EXPIRES", 7 * 24 * 3600)
            ),
        )
        self.session.add(invitation)
        self.session.commit()

        inviter = self.session.get(User, principal.user_id)
        tenant = self.session.get(Tenant, principal.tenant_id)
        self.email.send_invite(
            email,
            (inviter.full_name if inviter else None) or "A teammate",
            tenant.name if tenant else "your workspace",
            invitation.token,
        )
        return invitation

    def list_invitations(self, principal) -> list[Invitation]:
        require_role(principal, MANAGER_ROLES, "view invitations")
        return (
            Invitation.query_for_tenant(principal.tenant_id)
            .order_by(Invitation.created_at.desc())
            .all()
        )

    def accept_invite(self, token: str, password: str, full_name: str | None = None) -> User:
        """Create the invited user; adds project membership when the invite names one."""
        self._check_password(password)
        invitation = (
            self.session.query(Invitation)
            .filter(Invitation.token == token, Invitation.accepted_at.is_(None))
            .first()
        ) if token else None
        if invitation is None or as_utc(invitation.expires_at) <= datetime.now(timezone.utc):
            raise ValidationError("Invalid or expired invitation", details={"token": "invalid"})

        if self.session.query(User.id).filter_by(
            tenant_id=invitation.tenant_id, email=invitation.email,
        ).first():
            raise ValidationError("User already in workspace", details={"email": invitation.email})

        user = User(
            tenant_id=invitation.tenant_id,
            username=self._free_username(invitation.tenant_id, username_from_email(invitation.email)),
            email=invitation.email,
            password_hash=hash_password(password),
            role_id=invitation.role_id,
            full_name=full_name,
            email_verified=True,
        )
        self.session.add(user)
        self.session.flush()
        if invitation.project_id:
            self.session.add(ProjectMember(
                project_id=invitation.project_id, user_id=user.id, role=ProjectRole.MEMBER.value,
            ))
        invitation.accepted_at = datetime.now(timezone.utc)
        self.session.commit()
        logger.info("Invitation %s accepted: user %s", invitation.id, user.id)
        return user

    def _free_username(self, tenant_id: str, base: str) -> str:
        candidate, n = base, 1
        while self.session.query(User.id).filter_by(tenant_id=tenant_id, username=candidate).first():
            n += 1
            candidate = f"{base}{n}"
        return candidate
