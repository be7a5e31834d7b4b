"""
Workflow Administration Blueprint — Admin only.

Routes:
  GET    /workflow/transitions?category_id=&correction_type_id=   – list rules
  POST   /workflow/transitions                                    – create rule
  DELETE /workflow/transitions/<tid>                              – delete rule
  DELETE /workflow/transitions?category_id=&correction_type_id=   – delete a whole workflow
  POST   /workflow/transitions/copy                               – copy generic workflow
  GET    /workflow/steps?category_id=                             – legacy steps
  POST   /workflow/steps                                          – create legacy step
  DELETE /workflow/steps/<sid>                                    – delete legacy step
  POST   /workflow/steps/copy                                     – copy legacy steps
  GET    /workflow/special-approvers?category_id=                 – list designations
  PUT    /workflow/special-approvers                              – set (upsert)
  DELETE /workflow/special-approvers/<cid>/<step>                 – remove
  GET    /workflow/validate                                       – configuration report
"""

from flask import Blueprint, jsonify, request

from app.core.exceptions import ValidationError
from app.middleware.permission_required import current_actor, require_roles
from app.services import workflow_admin_service as svc
from app.services.role_names import ADMIN_ROLE

workflow_admin_bp = Blueprint("workflow_admin_bp", __name__, url_prefix="/api/v1/workflow")


@require_roles(ADMIN_ROLE)
def _admin_check():
    return None


@workflow_admin_bp.before_request
def _admin_only():
    """Every route here is Admin-only; returning None lets the view run."""
    if request.method == "OPTIONS":
        return None
    return _admin_check()


def _required_arg(name):
    value = request.args.get(name, type=int)
    if value is None:
        raise ValidationError(f"{name} query parameter is required", details={name: "required"})
    return value


def _copy_ids(data):
    try:
        return int(data["from_category_id"]), int(data["to_category_id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError("from_category_id and to_category_id are required integers") from exc


# ═════════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_admin_bp.route("/transitions", methods=["GET"])
def list_transitions():
    category_id = _required_arg("category_id")
    items = svc.list_transitions(category_id, request.args.get("correction_type_id", type=int))
    return jsonify({"items": items, "total": len(items)})


@workflow_admin_bp.route("/transitions", methods=["POST"])
def create_transition():
    data = request.get_json(silent=True) or {}
    transition = svc.create_transition(data, current_actor())
    return jsonify(transition.to_dict()), 201


@workflow_admin_bp.route("/transitions/<int:tid>", methods=["DELETE"])
def delete_transition(tid):
    svc.delete_transition(tid, current_actor())
    return jsonify({"deleted": True, "id": tid})


@workflow_admin_bp.route("/transitions", methods=["DELETE"])
def delete_workflow():
    category_id = _required_arg("category_id")
    correction_type_id = request.args.get("correction_type_id", type=int)
    count = svc.delete_transitions_for_scope(category_id, correction_type_id, current_actor())
    return jsonify({"deleted": count})


@workflow_admin_bp.route("/transitions/copy", methods=["POST"])
def copy_transitions():
    from_id, to_id = _copy_ids(request.get_json(silent=True) or {})
    return jsonify(svc.copy_transitions(from_id, to_id, current_actor())), 201


# ═════════════════════════════════════════════════════════════════════════════
# LEGACY STEPS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_admin_bp.route("/steps", methods=["GET"])
def list_steps():
    items = svc.list_steps(request.args.get("category_id", type=int))
    return jsonify({"items": items, "total": len(items)})


@workflow_admin_bp.route("/steps", methods=["POST"])
def create_step():
    step = svc.create_step(request.get_json(silent=True) or {}, current_actor())
    return jsonify(step.to_dict()), 201


@workflow_admin_bp.route("/steps/<int:sid>", methods=["DELETE"])
def delete_step(sid):
    svc.delete_step(sid, current_actor())
    return jsonify({"deleted": True, "id": sid})


@workflow_admin_bp.route("/steps/copy", methods=["POST"])
def copy_steps():
    from_id, to_id = _copy_ids(request.get_json(silent=True) or {})
    return jsonify(svc.copy_steps(from_id, to_id, current_actor())), 201


# ═════════════════════════════════════════════════════════════════════════════
# SPECIAL APPROVERS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_admin_bp.route("/special-approvers", methods=["GET"])
def list_special_approvers():
    items = svc.list_special_approvers(request.args.get("category_id", type=int))
    return jsonify({"items": items, "total": len(items)})


@workflow_admin_bp.route("/special-approvers", methods=["PUT"])
def set_special_approver():
    mapping = svc.set_special_approver(request.get_json(silent=True) or {}, current_actor())
    return jsonify(mapping.to_dict())


@workflow_admin_bp.route("/special-approvers/<int:cid>/<int:step>", methods=["DELETE"])
def delete_special_approver(cid, step):
    svc.delete_special_approver(cid, step, current_actor())
    return jsonify({"deleted": True, "category_id": cid, "step_sequence": step})


# ═════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═════════════════════════════════════════════════════════════════════════════

@workflow_admin_bp.route("/validate", methods=["GET"])
def validate():
    return jsonify(svc.validate_workflows())
