"""
Session Manager — token issuance, validation, rotation and revocation.

Access token:  8 hours (JWT_ACCESS_EXPIRES), stateless, never persisted
Refresh token: 7 days  (JWT_REFRESH_EXPIRES), persisted as SHA-256 digest
Algorithm:     HS256

Token payload (access):
{
    "sub": <user_id>,
    "tenant_id": <tenant_id>,
    "role_id": "dev",
    "role_name": "Developer",
    "username": "jane",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

A user may hold any number of live refresh tokens (one per device).
``revoke_all`` deletes every one of them; access tokens already handed
out stay valid until they expire.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from agileflow.core.exceptions import AuthenticationError
from agileflow.models.auth import ROLE_NAMES, RefreshToken, RoleId, User
from agileflow.utils.crypto import hash_token, tokens_match

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenSettings:
    secret: str
    access_expires: int = 28800
    refresh_expires: int = 604800

    @classmethod
    def from_config(cls, config) -> "TokenSettings":
        return cls(
            secret=config.get("JWT_SECRET_KEY") or config["SECRET_KEY"],
            access_expires=int(config.get("JWT_ACCESS_EXPIRES", 28800)),
            refresh_expires=int(config.get("JWT_REFRESH_EXPIRES", 604800)),
        )


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, rebuilt from access-token claims."""

    user_id: str
    tenant_id: str
    role: RoleId
    role_name: str
    username: str

    @property
    def is_superadmin(self) -> bool:
        return self.role is RoleId.SUPERADMIN

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        role = RoleId(user.role_id)
        return cls(
            user_id=user.id,
            tenant_id=user.tenant_id,
            role=role,
            role_name=ROLE_NAMES[role],
            username=user.username,
        )


class SessionManager:
    """Issues and validates tokens against the given DB session."""

    def __init__(self, session, settings: TokenSettings):
        self.session = session
        self.settings = settings

    # ═══════════════════════════════════════════════════════════
    # Token generation
    # ═══════════════════════════════════════════════════════════
    def _encode(self, payload: dict) -> str:
        return jwt.encode(payload, self.settings.secret, algorithm=ALGORITHM)

    def _access_token(self, principal: Principal, now: datetime) -> str:
        return self._encode({
            "sub": principal.user_id,
            "tenant_id": principal.tenant_id,
            "role_id": principal.role.value,
            "role_name": principal.role_name,
            "username": principal.username,
            "type": "access",
            "iat": now,
            "exp": now + timedelta(seconds=self.settings.access_expires),
            "jti": str(uuid.uuid4()),
        })

    def issue(self, user: User, *, ip_address: str | None = None,
              user_agent: str | None = None) -> dict:
        """Mint an access + refresh pair and persist the refresh digest."""
        now = datetime.now(timezone.utc)
        principal = Principal.from_user(user)
        refresh_expires_at = now + timedelta(seconds=self.settings.refresh_expires)
        refresh_token = self._encode({
            "sub": user.id,
            "tenant_id": user.tenant_id,
            "type": "refresh",
            "iat": now,
            "exp": refresh_expires_at,
            "jti": str(uuid.uuid4()),
        })
        self.session.add(RefreshToken(
            user_id=user.id,
            token_hash=hash_token(refresh_token),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500],
            expires_at=refresh_expires_at,
        ))
        self.session.commit()
        return {
            "access_token": self._access_token(principal, now),
            "refresh_token": refresh_token,
            "token_type": "Bearer",
            "expires_in": self.settings.access_expires,
        }

    # ═══════════════════════════════════════════════════════════
    # Verification
    # ═══════════════════════════════════════════════════════════
    def _decode(self, token: str, expected_type: str) -> dict:
        if not token or not isinstance(token, str):
            raise AuthenticationError("Token is missing")
        try:
            payload = jwt.decode(token, self.settings.secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthenticationError("Invalid token") from exc
        if payload.get("type") != expected_type:
            raise AuthenticationError(f"Expected {expected_type} token")
        if not payload.get("sub") or not payload.get("tenant_id"):
            raise AuthenticationError("Invalid token")
        return payload

    def validate_access(self, token: str) -> Principal:
        """Stateless check of an access token. No store access."""
        payload = self._decode(token, "access")
        try:
            role = RoleId(payload.get("role_id"))
        except ValueError as exc:
            raise AuthenticationError("Invalid token") from exc
        return Principal(
            user_id=payload["sub"],
            tenant_id=payload["tenant_id"],
            role=role,
            role_name=payload.get("role_name") or ROLE_NAMES[role],
            username=payload.get("username", ""),
        )

    def rotate(self, refresh_token: str) -> str:
        """Exchange a live refresh token for a new access token.

        The presented token's digest is compared against every non-expired
        digest stored for the claimed user, in constant time per digest.
        The refresh token itself stays valid until expiry or revoke_all.
        """
        payload = self._decode(refresh_token, "refresh")
        user = self.session.get(User, payload["sub"])
        if user is None or user.tenant_id != payload["tenant_id"]:
            logger.warning("Refresh for unknown user %s", payload.get("sub"))
            raise AuthenticationError("Invalid refresh token")

        now = datetime.now(timezone.utc)
        presented = hash_token(refresh_token)
        rows = (
            self.session.query(RefreshToken)
            .filter(RefreshToken.user_id == user.id, RefreshToken.expires_at > now)
            .all()
        )
        matched = False
        for row in rows:
            # no early exit: every live digest is compared
            matched = tokens_match(presented, row.token_hash) or matched
        if not matched:
            logger.warning(
                "Refresh token rejected for user %s (live tokens: %d)", user.id, len(rows),
            )
            raise AuthenticationError("Invalid refresh token")

        return self._access_token(Principal.from_user(user), now)

    def revoke_all(self, user_id: str) -> int:
        """Delete every refresh token of the user (logout everywhere)."""
        deleted = (
            self.session.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self.session.commit()
        logger.info("Revoked %d refresh tokens for user %s", deleted, user_id)
        return deleted
