"""
AgileFlow
Email Service — account emails (invite, verify, reset, welcome).

When SMTP is not configured, emails are logged but not sent (dev/test mode).

Configuration (app config):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    APP_URL         Base URL for links in templates
"""

from __future__ import annotations

import logging
import smtplib
from collections import deque
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

logger = logging.getLogger(__name__)

APP_NAME = "AgileFlow"


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: -apple-system, 'Segoe UI', Arial, sans-serif; max-width: 560px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{app_name}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {content}
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "invite": {
        "subject": "You've been invited to {tenant_name} on {app_name}",
        "content": """
        <p>{inviter_name} invited you to join <strong>{tenant_name}</strong>.</p>
        <p><a href="{app_url}/accept-invite?token={token}">Accept Invitation</a></p>
        <p style="color: #64748b;">This invitation expires in 7 days.</p>
        """,
    },
    "verify_email": {
        "subject": "Verify your {app_name} account",
        "content": """
        <p>Confirm your email address to finish setting up your account.</p>
        <p><a href="{app_url}/verify-email?token={token}">Verify Email</a></p>
        """,
    },
    "password_reset": {
        "subject": "Reset your {app_name} password",
        "content": """
        <p>Someone requested a password reset for your account.</p>
        <p><a href="{app_url}/reset-password?token={token}">Reset Password</a></p>
        <p style="color: #64748b;">The link expires in 1 hour. Ignore this email if it wasn't you.</p>
        """,
    },
    "welcome": {
        "subject": "Welcome to {app_name}!",
        "content": """
        <p>Hi {name}, your workspace <strong>{tenant_name}</strong> is ready.</p>
        <p><a href="{app_url}">Open {app_name}</a></p>
        """,
    },
}


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"


class EmailService:
    """
    Template-based email sender.

    In development/test mode (no MAIL_SERVER configured) emails are only
    logged. The latest attempts are kept in ``outbox`` (recipient, subject,
    template, status; never the body, which carries tokens).
    """

    def __init__(self, config):
        self.config = config
        self.outbox: deque[dict[str, Any]] = deque(maxlen=config.get("MAIL_OUTBOX_SIZE", 50))

    def is_configured(self) -> bool:
        return bool(self.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    def send(self, *, to_email: str, subject: str, html_body: str,
             template_name: str | None = None) -> dict[str, Any]:
        """Send an email. Delivery failures are logged, never raised."""
        record = {
            "to": to_email,
            "subject": subject,
            "template": template_name,
            "status": "queued",
        }
        self.outbox.append(record)

        if not self.is_configured():
            record["status"] = "logged"
            logger.info("Email (dev mode): to=%s subject='%s' template=%s",
                        to_email, subject, template_name)
            return record

        try:
            self._send_smtp(to_email=to_email, subject=subject, html_body=html_body)
            record["status"] = "sent"
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            record["status"] = "failed"
            record["error"] = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)
        return record

    def send_from_template(self, *, to_email: str, template_name: str,
                           context: dict[str, Any]) -> dict[str, Any] | None:
        template = self.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        ctx = _SafeDict(app_name=APP_NAME, app_url=self.config.get("APP_URL", ""), **context)
        subject = template["subject"].format_map(ctx)
        html_body = _LAYOUT.format_map(_SafeDict(
            app_name=APP_NAME, content=template["content"].format_map(ctx),
        ))
        return self.send(to_email=to_email, subject=subject, html_body=html_body,
                         template_name=template_name)

    # ── Account emails ──────────────────────────────────────────────────

    def send_invite(self, to_email: str, inviter_name: str, tenant_name: str, token: str):
        return self.send_from_template(to_email=to_email, template_name="invite", context={
            "inviter_name": inviter_name, "tenant_name": tenant_name, "token": token,
        })

    def send_verify(self, to_email: str, token: str):
        return self.send_from_template(to_email=to_email, template_name="verify_email",
                                       context={"token": token})

    def send_password_reset(self, to_email: str, token: str):
        return self.send_from_template(to_email=to_email, template_name="password_reset",
                                       context={"token": token})

    def send_welcome(self, to_email: str, name: str, tenant_name: str):
        return self.send_from_template(to_email=to_email, template_name="welcome", context={
            "name": name, "tenant_name": tenant_name,
        })

    def _send_smtp(self, *, to_email: str, subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = self.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)
