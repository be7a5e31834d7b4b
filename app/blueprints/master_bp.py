"""
Master Data Blueprint — read-only reference lists for forms and filters.

  GET /api/v1/master/statuses
  GET /api/v1/master/categories           ?include_inactive=true
  GET /api/v1/master/correction-types     ?category_id=
  GET /api/v1/master/departments
  GET /api/v1/master/actions
  GET /api/v1/master/roles
"""

from flask import Blueprint, jsonify, request

from app.models.reference import (
    Category,
    CorrectionType,
    Department,
    Role,
    Status,
    WorkflowAction,
)
from app.utils.helpers import parse_bool

master_bp = Blueprint("master_bp", __name__, url_prefix="/api/v1/master")


def _active_only(query, model):
    if parse_bool(request.args.get("include_inactive")):
        return query
    return query.filter(model.is_active.is_(True))


@master_bp.route("/statuses", methods=["GET"])
def list_statuses():
    rows = Status.query.order_by(Status.display_order, Status.id).all()
    return jsonify([s.to_dict() for s in rows])


@master_bp.route("/categories", methods=["GET"])
def list_categories():
    rows = _active_only(Category.query, Category).order_by(Category.name).all()
    return jsonify([c.to_dict() for c in rows])


@master_bp.route("/correction-types", methods=["GET"])
def list_correction_types():
    q = _active_only(CorrectionType.query, CorrectionType)
    category_id = request.args.get("category_id", type=int)
    if category_id:
        q = q.filter_by(category_id=category_id)
    rows = q.order_by(CorrectionType.category_id, CorrectionType.display_order, CorrectionType.id).all()
    return jsonify([ct.to_dict() for ct in rows])


@master_bp.route("/departments", methods=["GET"])
def list_departments():
    rows = _active_only(Department.query, Department).order_by(Department.name).all()
    return jsonify([d.to_dict() for d in rows])


@master_bp.route("/actions", methods=["GET"])
def list_actions():
    rows = WorkflowAction.query.order_by(WorkflowAction.id).all()
    return jsonify([a.to_dict() for a in rows])


@master_bp.route("/roles", methods=["GET"])
def list_roles():
    rows = Role.query.order_by(Role.role_name).all()
    return jsonify([r.to_dict() for r in rows])
