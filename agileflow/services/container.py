"""
Service container.

Every service is constructed once per app with an explicit store handle
(``db.session``, the request-scoped session proxy) and the app config,
then stored in ``app.extensions["agileflow"]``. Blueprints reach it
through ``get_services()``; tests may build their own with
``build_services(app)``.
"""

from dataclasses import dataclass

from flask import current_app

from agileflow.models import db
from agileflow.services.access_scope import AccessScopeResolver
from agileflow.services.audit_service import AuditRecorder
from agileflow.services.cascade_service import CascadeEngine
from agileflow.services.custom_fields_service import CustomFieldService
from agileflow.services.email_service import EmailService
from agileflow.services.project_service import ProjectService
from agileflow.services.quota_service import QuotaEnforcer
from agileflow.services.session_service import SessionManager, TokenSettings
from agileflow.services.tenant_service import TenantService
from agileflow.services.user_service import UserService
from agileflow.services.work_item_service import WorkItemService

EXTENSION_KEY = "agileflow"


@dataclass
class Services:
    sessions: SessionManager
    scope: AccessScopeResolver
    quota: QuotaEnforcer
    audit: AuditRecorder
    cascade: CascadeEngine
    email: EmailService
    tenants: TenantService
    users: UserService
    projects: ProjectService
    work_items: WorkItemService
    custom_fields: CustomFieldService


def build_services(app, session=None) -> Services:
    session = session if session is not None else db.session
    config = app.config

    scope = AccessScopeResolver(session)
    quota = QuotaEnforcer(session)
    audit = AuditRecorder(session)
    cascade = CascadeEngine(session, audit)
    email = EmailService(config)
    return Services(
        sessions=SessionManager(session, TokenSettings.from_config(config)),
        scope=scope,
        quota=quota,
        audit=audit,
        cascade=cascade,
        email=email,
        tenants=TenantService(session, config, email),
        users=UserService(session, config, quota, scope, email),
        projects=ProjectService(session, quota, scope),
        work_items=WorkItemService(session, scope, audit, cascade),
        custom_fields=CustomFieldService(session, scope),
    )


def init_services(app) -> Services:
    services = build_services(app)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
