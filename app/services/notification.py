"""
F07 IT Change Request Platform
Notification Service.

Central service for creating and querying in-app notifications, and for
dispatching the notification instructions returned by the workflow engine.

Dispatch runs after the workflow transaction has committed.  A failure for
one recipient is logged and skipped; it never undoes the transition and
never blocks the remaining recipients.
"""

import logging
from datetime import datetime, timezone

from app.models import db
from app.models.auth import User
from app.models.notification import (
    TEMPLATE_APPROVAL_REQUEST,
    TEMPLATE_REQUEST_COMPLETED,
    TEMPLATE_REQUEST_REJECTED,
    Notification,
)
from app.models.request import ITRequest
from app.services.email_service import EmailService, approve_link, request_link

logger = logging.getLogger(__name__)

_MESSAGES = {
    TEMPLATE_APPROVAL_REQUEST: "Request {ref} is waiting for your action",
    TEMPLATE_REQUEST_REJECTED: "Your request {ref} was rejected",
    TEMPLATE_REQUEST_COMPLETED: "Your request {ref} has been completed",
}


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, message, template_kind="", request_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        notif = Notification(
            user_id=user_id,
            message=message[:500],
            template_kind=template_kind,
            request_id=request_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Dispatch ──────────────────────────────────────────────────────────

    @staticmethod
    def deliver(instruction, comment=None):
        """In-app notification plus email for one instruction. Commits."""
        user = db.session.get(User, instruction.recipient_user_id)
        req = db.session.get(ITRequest, instruction.request_id)
        if user is None or req is None:
            logger.warning(
                "Notification skipped: user=%s request=%s not found",
                instruction.recipient_user_id, instruction.request_id,
            )
            return None

        ref = req.work_order_no or f"#{req.id}"
        notif = NotificationService.create(
            user_id=user.id,
            message=_MESSAGES.get(instruction.template_kind, "Request {ref} was updated").format(ref=ref),
            template_kind=instruction.template_kind,
            request_id=req.id,
        )

        if user.email:
            EmailService.send_from_template(
                to_email=user.email,
                to_name=user.full_name,
                template_name=instruction.template_kind,
                context={
                    "recipient_name": user.full_name or user.username,
                    "work_order_no": ref,
                    "category_name": req.category.name if req.category else "-",
                    "requester_name": req.requester_name,
                    "problem_detail": req.problem_detail,
                    "comment": comment or "-",
                    "request_link": request_link(req.id),
                    "approve_link": approve_link(req.approval_token, req.id),
                },
                request_id=req.id,
            )
        db.session.commit()
        return notif

    @staticmethod
    def dispatch(instructions, comment=None):
        """Deliver every instruction; returns the number delivered."""
        delivered = 0
        for instruction in instructions:
            try:
                if NotificationService.deliver(instruction, comment=comment) is not None:
                    delivered += 1
            except Exception:
                db.session.rollback()
                logger.error(
                    "Notification failed: template=%s user=%s request=%s",
                    instruction.template_kind, instruction.recipient_user_id, instruction.request_id,
                    exc_info=True,
                )
        return delivered

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.
        """
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read; None if it is not the user's."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
