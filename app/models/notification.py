"""
F07 IT Change Request Platform
Notification domain models.

Models:
    - Notification: in-app notification for one user, with read tracking
    - EmailLog: outbound email audit log
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

TEMPLATE_APPROVAL_REQUEST = "approval_request"
TEMPLATE_REQUEST_REJECTED = "request_rejected"
TEMPLATE_REQUEST_COMPLETED = "request_completed"

NOTIFICATION_TEMPLATES = frozenset({
    TEMPLATE_APPROVAL_REQUEST,
    TEMPLATE_REQUEST_REJECTED,
    TEMPLATE_REQUEST_COMPLETED,
})


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    message = db.Column(db.String(500), nullable=False)
    template_kind = db.Column(db.String(50), default="", comment="approval_request | request_rejected | ...")
    request_id = db.Column(
        db.Integer, db.ForeignKey("it_requests.id", ondelete="CASCADE"), nullable=True, index=True,
    )

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "message": self.message,
            "template_kind": self.template_kind,
            "request_id": self.request_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.message[:40]}>"


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every email sent through the platform is logged here for audit/debug.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(200), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True,
                              comment="Email template used")
    status = db.Column(db.String(20), default="queued",
                       comment="queued, sent, failed")
    error_message = db.Column(db.Text, nullable=True)

    request_id = db.Column(db.Integer, db.ForeignKey("it_requests.id", ondelete="SET NULL"),
                           nullable=True, index=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
            "request_id": self.request_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
