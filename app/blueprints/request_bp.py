"""
Request Blueprint — F07 change requests and workflow actions.

Routes:
  POST   /requests                     – submit a request (requester roles only)
  GET    /requests                     – department-scoped, filtered list
  GET    /requests/<rid>               – detail + history + available actions
  POST   /requests/<rid>/action        – apply one workflow action
  POST   /requests/bulk-action         – APPROVE / REJECT many requests
  GET    /approve/<token>              – request behind an email approval link
  POST   /approve/<token>              – act on it as the logged-in user

Service exceptions (NotFoundError, ValidationError, WorkflowError) are turned
into JSON errors by the handlers registered in the application factory.
"""

from flask import Blueprint, jsonify, request

from app.middleware.permission_required import current_actor, require_requester
from app.services import request_service
from app.services.notification import NotificationService
from app.services.workflow_engine import get_available_actions
from app.utils.helpers import parse_pagination

request_bp = Blueprint("request_bp", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════════
# SUBMIT / LIST / DETAIL
# ═════════════════════════════════════════════════════════════════════════════

@request_bp.route("/requests", methods=["POST"])
@require_requester
def create_request():
    """Submit a new F07 request; it starts at the initial status, step 1."""
    data = request.get_json(silent=True) or {}
    req, instructions = request_service.create_request(data, current_actor())
    NotificationService.dispatch(instructions)
    return jsonify(req.to_dict()), 201


@request_bp.route("/requests", methods=["GET"])
def list_requests():
    """
    Query params: category_id, status (PENDING = any open status), search,
    start_date, end_date, page, limit.
    """
    page, limit = parse_pagination(request.args)
    filters = {
        key: request.args.get(key)
        for key in ("category_id", "status", "search", "start_date", "end_date")
    }
    return jsonify(request_service.list_requests(current_actor(), filters, page, limit))


@request_bp.route("/requests/<int:rid>", methods=["GET"])
def get_request(rid):
    return jsonify(request_service.get_request_detail(rid, current_actor()))


# ═════════════════════════════════════════════════════════════════════════════
# ACTIONS
# ═════════════════════════════════════════════════════════════════════════════

@request_bp.route("/requests/<int:rid>/action", methods=["POST"])
def act_on_request(rid):
    """
    Body: { "action": "APPROVE" | "REJECT" | "IT_PROCESS" | "CONFIRM_COMPLETE",
            "comment": "..." }

    REJECT requires a comment.
    """
    data = request.get_json(silent=True) or {}
    result = request_service.perform_action(rid, data.get("action"), current_actor(), data.get("comment"))
    return jsonify(result.to_dict()), 200


@request_bp.route("/requests/bulk-action", methods=["POST"])
def bulk_action():
    """
    Body: { "request_ids": [1, 2, 3], "action": "APPROVE" | "REJECT", "comment": "..." }

    Each id runs through the executor on its own; the response lists
    successes and failures per id.
    """
    data = request.get_json(silent=True) or {}
    report = request_service.bulk_action(
        data.get("request_ids"), data.get("action"), current_actor(), data.get("comment"),
    )
    return jsonify(report), 200


# ═════════════════════════════════════════════════════════════════════════════
# EMAIL APPROVAL LINKS
# ═════════════════════════════════════════════════════════════════════════════

@request_bp.route("/approve/<token>", methods=["GET"])
def get_by_token(token):
    """The request behind an approval link; 404 once the link has expired."""
    req = request_service.get_request_by_token(token)
    data = req.to_dict(include_history=True)
    data["available_actions"] = get_available_actions(req, current_actor())
    return jsonify(data)


@request_bp.route("/approve/<token>", methods=["POST"])
def act_by_token(token):
    data = request.get_json(silent=True) or {}
    req = request_service.get_request_by_token(token)
    result = request_service.perform_action(req.id, data.get("action"), current_actor(), data.get("comment"))
    return jsonify(result.to_dict()), 200
