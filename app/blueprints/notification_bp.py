"""
F07 IT Change Request Platform
Notification Blueprint.

Provides:
    - The caller's in-app notifications (list, unread count)
    - Mark one / all as read
    - Email log viewing (Admin)

Notifications are created by the workflow engine's dispatch step, never
through this API.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.core.exceptions import NotFoundError
from app.middleware.permission_required import current_actor, require_roles
from app.models.notification import EmailLog
from app.services.notification import NotificationService
from app.services.role_names import ADMIN_ROLE
from app.utils.helpers import parse_bool, parse_pagination

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  IN-APP NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """
    Query params: unread_only (bool), page, limit.
    """
    actor = current_actor()
    page, limit = parse_pagination(request.args, default_limit=20)
    items, total = NotificationService.list_for_user(
        actor.user_id,
        unread_only=parse_bool(request.args.get("unread_only")),
        limit=limit,
        offset=(page - 1) * limit,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread": NotificationService.unread_count(actor.user_id),
        "page": page,
        "limit": limit,
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"count": NotificationService.unread_count(current_actor().user_id)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["PATCH"])
def mark_read(nid):
    notif = NotificationService.mark_read(nid, current_actor().user_id)
    if notif is None:
        raise NotFoundError(resource="Notification", resource_id=nid)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
def mark_all_read():
    count = NotificationService.mark_all_read(current_actor().user_id)
    return jsonify({"marked": count})


# ═══════════════════════════════════════════════════════════════════════════
#  EMAIL LOG
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications/email-logs", methods=["GET"])
@require_roles(ADMIN_ROLE)
def list_email_logs():
    """Outbound email log, newest first. Optional filter: request_id, status."""
    page, limit = parse_pagination(request.args, default_limit=50)
    q = EmailLog.query
    request_id = request.args.get("request_id", type=int)
    if request_id:
        q = q.filter_by(request_id=request_id)
    status = request.args.get("status")
    if status:
        q = q.filter_by(status=status)
    total = q.count()
    logs = (
        q.order_by(EmailLog.created_at.desc(), EmailLog.id.desc())
        .offset((page - 1) * limit).limit(limit).all()
    )
    return jsonify({"items": [log.to_dict() for log in logs], "total": total, "page": page, "limit": limit})
