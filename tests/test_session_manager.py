"""
Session Manager tests — issuance, access validation, refresh rotation, revocation.

Tests cover:
  - Token pair shape, claims and lifetimes (8h access / 7d refresh)
  - Refresh digests at rest (never the raw token)
  - Rejection of expired, tampered, wrong-type and unknown tokens
  - Multi-device refresh and logout-everywhere
"""

from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest

from agileflow.core.exceptions import AuthenticationError
from agileflow.models import db
from agileflow.models.auth import RefreshToken, RoleId
from agileflow.services.session_service import SessionManager, TokenSettings
from agileflow.utils.crypto import hash_token


def _claims(token, app):
    return pyjwt.decode(token, app.config["JWT_SECRET_KEY"], algorithms=["HS256"])


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Issue
# ═══════════════════════════════════════════════════════════════

class TestIssue:
    def test_token_pair_shape(self, services, dev_user):
        tokens = services.sessions.issue(dev_user)
        assert tokens["token_type"] == "Bearer"
        assert tokens["expires_in"] == 8 * 3600
        assert tokens["access_token"] != tokens["refresh_token"]

    def test_access_claims(self, app, services, dev_user):
        claims = _claims(services.sessions.issue(dev_user)["access_token"], app)
        assert claims["sub"] == dev_user.id
        assert claims["tenant_id"] == dev_user.tenant_id
        assert claims["role_id"] == "dev"
        assert claims["role_name"] == "Developer"
        assert claims["username"] == "dave"
        assert claims["type"] == "access"
        assert claims["exp"] - claims["iat"] == 8 * 3600

    def test_refresh_lifetime_is_seven_days(self, app, services, dev_user):
        claims = _claims(services.sessions.issue(dev_user)["refresh_token"], app)
        assert claims["type"] == "refresh"
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600

    def test_refresh_stored_as_digest(self, services, dev_user):
        tokens = services.sessions.issue(dev_user, ip_address="10.0.0.1", user_agent="pytest")
        rows = RefreshToken.query.filter_by(user_id=dev_user.id).all()
        assert len(rows) == 1
        assert rows[0].token_hash == hash_token(tokens["refresh_token"])
        assert rows[0].token_hash != tokens["refresh_token"]
        assert rows[0].ip_address == "10.0.0.1"

    def test_jti_makes_tokens_unique(self, services, dev_user):
        a = services.sessions.issue(dev_user)
        b = services.sessions.issue(dev_user)
        assert a["access_token"] != b["access_token"]
        assert a["refresh_token"] != b["refresh_token"]


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Validate access
# ═══════════════════════════════════════════════════════════════

class TestValidateAccess:
    def test_valid_token_yields_principal(self, services, admin_user):
        access = services.sessions.issue(admin_user)["access_token"]
        principal = services.sessions.validate_access(access)
        assert principal.user_id == admin_user.id
        assert principal.tenant_id == admin_user.tenant_id
        assert principal.role is RoleId.ADMIN
        assert principal.is_superadmin is False

    def test_expired_token_rejected(self, app, services, dev_user):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode({
            "sub": dev_user.id, "tenant_id": dev_user.tenant_id, "role_id": "dev",
            "type": "access", "iat": now - timedelta(hours=9), "exp": now - timedelta(hours=1),
        }, app.config["JWT_SECRET_KEY"], algorithm="HS256")
        with pytest.raises(AuthenticationError, match="expired"):
            services.sessions.validate_access(token)

    def test_wrong_secret_rejected(self, services, dev_user):
        forged = SessionManager(db.session, TokenSettings(secret="another-secret-of-decent-length"))
        token = forged.issue(dev_user)["access_token"]
        with pytest.raises(AuthenticationError):
            services.sessions.validate_access(token)

    def test_refresh_token_is_not_an_access_token(self, services, dev_user):
        refresh = services.sessions.issue(dev_user)["refresh_token"]
        with pytest.raises(AuthenticationError):
            services.sessions.validate_access(refresh)

    def test_unknown_role_rejected(self, app, services, dev_user):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode({
            "sub": dev_user.id, "tenant_id": dev_user.tenant_id, "role_id": "owner",
            "type": "access", "iat": now, "exp": now + timedelta(hours=1),
        }, app.config["JWT_SECRET_KEY"], algorithm="HS256")
        with pytest.raises(AuthenticationError):
            services.sessions.validate_access(token)

    @pytest.mark.parametrize("token", ["", "not.a.jwt", "Bearer xyz"])
    def test_malformed_rejected(self, services, token):
        with pytest.raises(AuthenticationError):
            services.sessions.validate_access(token)


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Rotate & revoke
# ═══════════════════════════════════════════════════════════════

class TestRotate:
    def test_rotate_returns_fresh_access_token(self, services, dev_user):
        refresh = services.sessions.issue(dev_user)["refresh_token"]
        access = services.sessions.rotate(refresh)
        assert services.sessions.validate_access(access).user_id == dev_user.id

    def test_refresh_reusable_until_expiry(self, services, dev_user):
        refresh = services.sessions.issue(dev_user)["refresh_token"]
        services.sessions.rotate(refresh)
        services.sessions.rotate(refresh)

    def test_signed_but_unstored_refresh_rejected(self, app, services, dev_user):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode({
            "sub": dev_user.id, "tenant_id": dev_user.tenant_id, "type": "refresh",
            "iat": now, "exp": now + timedelta(days=7), "jti": "never-issued",
        }, app.config["JWT_SECRET_KEY"], algorithm="HS256")
        with pytest.raises(AuthenticationError):
            services.sessions.rotate(token)

    def test_expired_stored_row_rejected(self, services, dev_user):
        refresh = services.sessions.issue(dev_user)["refresh_token"]
        row = RefreshToken.query.filter_by(user_id=dev_user.id).one()
        row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.session.commit()
        with pytest.raises(AuthenticationError):
            services.sessions.rotate(refresh)

    def test_access_token_cannot_rotate(self, services, dev_user):
        access = services.sessions.issue(dev_user)["access_token"]
        with pytest.raises(AuthenticationError):
            services.sessions.rotate(access)

    def test_token_of_deleted_user_rejected(self, services, dev_user):
        refresh = services.sessions.issue(dev_user)["refresh_token"]
        db.session.delete(dev_user)
        db.session.commit()
        with pytest.raises(AuthenticationError):
            services.sessions.rotate(refresh)

    def test_multi_device_refresh(self, services, dev_user):
        """Two logins, two live refresh tokens; each rotates independently."""
        laptop = services.sessions.issue(dev_user, user_agent="laptop")["refresh_token"]
        phone = services.sessions.issue(dev_user, user_agent="phone")["refresh_token"]
        assert RefreshToken.query.filter_by(user_id=dev_user.id).count() == 2
        assert services.sessions.rotate(laptop)
        assert services.sessions.rotate(phone)

    def test_revoke_all_invalidates_every_device(self, services, dev_user):
        tokens = [services.sessions.issue(dev_user)["refresh_token"] for _ in range(3)]
        assert services.sessions.revoke_all(dev_user.id) == 3
        for refresh in tokens:
            with pytest.raises(AuthenticationError):
                services.sessions.rotate(refresh)

    def test_revoke_all_leaves_other_users_alone(self, services, dev_user, admin_user):
        services.sessions.issue(dev_user)
        other = services.sessions.issue(admin_user)["refresh_token"]
        services.sessions.revoke_all(dev_user.id)
        assert services.sessions.rotate(other)
