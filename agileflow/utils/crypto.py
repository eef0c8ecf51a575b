"""
Crypto utilities — bcrypt password hashing and opaque token helpers.

Password hashing:
  bcrypt ($2b$) with the cost taken from BCRYPT_ROUNDS; legacy werkzeug
  (scrypt/pbkdf2) hashes are still accepted by ``verify_password``.

Opaque tokens:
  Email verification, password reset and invitation tokens are random
  values stored as issued; refresh tokens are JWTs stored as SHA-256
  digests (see ``hash_token``).
"""

import hashlib
import hmac
import secrets
import uuid

import bcrypt
from flask import current_app, has_app_context
from werkzeug.security import check_password_hash

DEFAULT_ROUNDS = 12


def _rounds() -> int:
    if has_app_context():
        return current_app.config.get("BCRYPT_ROUNDS", DEFAULT_ROUNDS)
    return DEFAULT_ROUNDS


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt."""
    salt = bcrypt.gensalt(rounds=_rounds())
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash or plain_password is None:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token (never store raw refresh tokens)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def tokens_match(presented_hash: str, stored_hash: str) -> bool:
    """Constant-time comparison of two token digests."""
    return hmac.compare_digest(presented_hash.encode("utf-8"), stored_hash.encode("utf-8"))


def generate_opaque_token() -> str:
    """Random URL-safe token for email verification and password reset."""
    return secrets.token_urlsafe(32)


def generate_invite_token() -> str:
    """Invitation token (64 hex chars)."""
    return uuid.uuid4().hex + uuid.uuid4().hex
