"""
Shared pytest fixtures for the AgileFlow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - services: the app's service container
    - make_tenant / make_user / make_project / add_member: row factories
    - headers_for / principal_for: credentials for a user
    - tenant, superadmin, admin_user, dev_user: ready-made workspace
"""

import pytest

from agileflow import create_app
from agileflow.models import db as _db
from agileflow.models.auth import PLANS, ProjectMember, RoleId, Tenant, User, seed_roles
from agileflow.models.project import Project, seed_default_columns
from agileflow.services.container import get_services
from agileflow.services.session_service import Principal
from agileflow.utils.crypto import hash_password

PASSWORD = "SecurePass123!"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        seed_roles()
        _db.session.commit()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def services(app):
    return get_services()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_tenant():
    def _make(slug="acme", plan="free", name=None):
        limits = PLANS[plan]
        t = Tenant(
            name=name or slug.title(),
            slug=slug,
            plan=plan,
            max_projects=limits["max_projects"],
            max_members=limits["max_members"],
        )
        _db.session.add(t)
        _db.session.flush()
        seed_default_columns(t.id)
        _db.session.commit()
        return t
    return _make


@pytest.fixture()
def make_user():
    def _make(tenant, role=RoleId.DEV, username=None, email=None, password=PASSWORD):
        role = RoleId(role)
        username = username or f"{role.value}-{tenant.slug}"
        u = User(
            tenant_id=tenant.id,
            role_id=role.value,
            username=username,
            email=email,
            password_hash=hash_password(password),
            full_name=username.title(),
            email_verified=True,
        )
        _db.session.add(u)
        _db.session.commit()
        return u
    return _make


@pytest.fixture()
def make_project():
    def _make(tenant, creator=None, name="Apollo"):
        p = Project(tenant_id=tenant.id, name=name, creator_id=creator.id if creator else None)
        _db.session.add(p)
        _db.session.commit()
        return p
    return _make


@pytest.fixture()
def add_member():
    def _add(project, user, role="member"):
        m = ProjectMember(project_id=project.id, user_id=user.id, role=role)
        _db.session.add(m)
        _db.session.commit()
        return m
    return _add


@pytest.fixture()
def principal_for():
    return Principal.from_user


@pytest.fixture()
def headers_for(services):
    """Bearer headers carrying a freshly issued access token for ``user``."""
    def _headers(user):
        tokens = services.sessions.issue(user)
        return {"Authorization": f"Bearer {tokens['access_token']}"}
    return _headers


# ── Ready-made workspace ─────────────────────────────────────────────────


@pytest.fixture()
def tenant(make_tenant):
    return make_tenant("acme", plan="pro")


@pytest.fixture()
def superadmin(tenant, make_user):
    return make_user(tenant, RoleId.SUPERADMIN, username="root", email="root@acme.io")


@pytest.fixture()
def admin_user(tenant, make_user):
    return make_user(tenant, RoleId.ADMIN, username="alice", email="alice@acme.io")


@pytest.fixture()
def dev_user(tenant, make_user):
    return make_user(tenant, RoleId.DEV, username="dave", email="dave@acme.io")
