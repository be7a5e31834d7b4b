"""
F07 IT Change Request Platform
Email Service.

Provides email sending capabilities with template support.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - Flask-Mail compatible config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    APP_BASE_URL    Base of the links placed in emails
"""

from __future__ import annotations

import html
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any

from flask import current_app

from app.models import db
from app.models.notification import (
    TEMPLATE_APPROVAL_REQUEST,
    TEMPLATE_REQUEST_COMPLETED,
    TEMPLATE_REQUEST_REJECTED,
    EmailLog,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px;">
    <h2 style="color: #1976d2;">{heading}</h2>
    {content}
    <p style="color: #94a3b8; font-size: 12px;">F07 IT Change Request System, automated notification</p>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    TEMPLATE_APPROVAL_REQUEST: {
        "subject": "[Awaiting approval] Request #{work_order_no} ({category_name})",
        "heading": "A request is waiting for your approval",
        "content": """
        <p>Dear {recipient_name},</p>
        <table style="width: 100%; border-collapse: collapse;">
            <tr><td style="padding: 5px; font-weight: bold; width: 140px;">Work order:</td><td>{work_order_no}</td></tr>
            <tr><td style="padding: 5px; font-weight: bold;">Category:</td><td>{category_name}</td></tr>
            <tr><td style="padding: 5px; font-weight: bold;">Requester:</td><td>{requester_name}</td></tr>
            <tr><td style="padding: 5px; font-weight: bold;">Detail:</td><td>{problem_detail}</td></tr>
        </table>
        <p style="margin-top: 20px;">
            <a href="{approve_link}" style="background-color: #2e7d32; color: white; padding: 12px 25px;
               text-decoration: none; border-radius: 5px; font-weight: bold;">Review and approve</a>
        </p>
        <p style="color: #666; font-size: 12px;">You must sign in before the action is recorded.</p>
        """,
        "text": "Dear {recipient_name},\n\nRequest {work_order_no} ({category_name}) from {requester_name} "
                "is waiting for your approval.\n\n{problem_detail}\n\nReview it at {approve_link}\n",
    },
    TEMPLATE_REQUEST_REJECTED: {
        "subject": "[Rejected] Your request #{work_order_no} was sent back",
        "heading": "Your request was rejected",
        "content": """
        <p>Dear {recipient_name},</p>
        <p>Your request was rejected by an approver. Please review their comment:</p>
        <blockquote style="border-left: 3px solid #ed6c02; padding-left: 12px;">{comment}</blockquote>
        <p><a href="{request_link}" style="background-color: #ed6c02; color: #fff; padding: 10px 20px;
              text-decoration: none; border-radius: 5px;">Open the request</a></p>
        """,
        "text": "Dear {recipient_name},\n\nYour request {work_order_no} was rejected.\n\n"
                "Comment: {comment}\n\nOpen it at {request_link}\n",
    },
    TEMPLATE_REQUEST_COMPLETED: {
        "subject": "[Completed] Your request #{work_order_no} has been closed",
        "heading": "Your request is complete",
        "content": """
        <p>Dear {recipient_name},</p>
        <p>Your request has been processed and closed.</p>
        <p><a href="{request_link}" style="background-color: #2e7d32; color: #fff; padding: 10px 20px;
              text-decoration: none; border-radius: 5px;">View details</a></p>
        """,
        "text": "Dear {recipient_name},\n\nYour request {work_order_no} has been processed and closed.\n\n"
                "Details: {request_link}\n",
    },
}


def request_link(request_id: int) -> str:
    base = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return f"{base}/request/{request_id}"


def approve_link(token: str | None, request_id: int) -> str:
    if not token:
        return request_link(request_id)
    base = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return f"{base}/approve/{token}"


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"


def render_template_email(template_name: str, context: dict[str, Any]) -> dict[str, str] | None:
    """Render *template_name* into ``{"subject", "html", "text"}``.

    Context values are HTML-escaped in the HTML body and used as-is in the
    subject and text body.  Missing keys render as ``{key}``.
    """
    template = _TEMPLATES.get(template_name)
    if template is None:
        return None
    plain = _SafeDict({k: "" if v is None else str(v) for k, v in context.items()})
    escaped = _SafeDict({k: html.escape(v) for k, v in plain.items()})
    return {
        "subject": template["subject"].format_map(plain),
        "html": _LAYOUT.format(heading=template["heading"], content=template["content"].format_map(escaped)),
        "text": template["text"].format_map(plain),
    }


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        text_body: str | None = None,
        template_name: str | None = None,
        request_id: int | None = None,
    ) -> EmailLog:
        """
        Send one email and record it in ``email_logs`` (flushed, not committed).

        SMTP errors mark the log row ``failed``; they are not raised, so one
        unreachable mailbox never aborts the caller's notification loop.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject[:500],
            template_name=template_name,
            status="queued",
            request_id=request_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email (log only): to=%s subject='%s' template=%s", to_email, subject, template_name)
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject,
                           html_body=html_body, text_body=text_body)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s request=%s error=%s", to_email, request_id, exc)
        else:
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        request_id: int | None = None,
    ) -> EmailLog | None:
        """Render a named template and send it.  Unknown templates are skipped."""
        rendered = render_template_email(template_name, context)
        if rendered is None:
            logger.warning("Email template not found: %s", template_name)
            return None
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=rendered["subject"],
            html_body=rendered["html"],
            text_body=rendered["text"],
            template_name=template_name,
            request_id=request_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None, subject: str,
                   html_body: str, text_body: str | None = None) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        sender = cfg.get("MAIL_DEFAULT_SENDER") or f"noreply@{server}"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = formataddr((to_name, to_email)) if to_name else to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(server, cfg.get("MAIL_PORT", 587), timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            username, password = cfg.get("MAIL_USERNAME"), cfg.get("MAIL_PASSWORD")
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)
