"""
Dashboard Blueprint — request statistics for the home screen.

  GET /api/v1/dashboard/statistics?days=30

Counts are scoped the same way as the request list: admins see everything,
requesters their own requests, department-filtered approvers their department.
"""

from flask import Blueprint, jsonify, request

from app.core.exceptions import ValidationError
from app.middleware.permission_required import current_actor
from app.services.dashboard_service import get_request_statistics

dashboard_bp = Blueprint("dashboard_bp", __name__, url_prefix="/api/v1/dashboard")

MAX_TREND_DAYS = 365


@dashboard_bp.route("/statistics", methods=["GET"])
def statistics():
    days = request.args.get("days", 30, type=int)
    if not 1 <= days <= MAX_TREND_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_TREND_DAYS}", details={"days": days})
    return jsonify(get_request_statistics(current_actor(), days=days))
