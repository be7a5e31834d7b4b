"""
Pending Tasks Blueprint — the current approver's work queue.

  GET /api/v1/pending-tasks         – requests waiting for the caller's action
  GET /api/v1/pending-tasks/count   – queue size only (badge in the header)
"""

from flask import Blueprint, jsonify

from app.middleware.permission_required import current_actor
from app.services.pending_tasks import count_pending_tasks, get_pending_tasks
from app.services.workflow_engine import get_available_actions

pending_bp = Blueprint("pending_bp", __name__, url_prefix="/api/v1")


@pending_bp.route("/pending-tasks", methods=["GET"])
def list_pending_tasks():
    actor = current_actor()
    items = []
    for req in get_pending_tasks(actor):
        row = req.to_dict()
        row["available_actions"] = get_available_actions(req, actor)
        items.append(row)
    return jsonify({"items": items, "total": len(items)})


@pending_bp.route("/pending-tasks/count", methods=["GET"])
def pending_task_count():
    return jsonify({"count": count_pending_tasks(current_actor())})
