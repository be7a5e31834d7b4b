"""
Department scope — which requests an actor may see in list views.

    Admin                             → no filter
    non-approver (requester) roles    → own requests only
    approver with any dept-filtered   → their department only
    rule for one of their roles
    other approvers                   → no filter
"""

from __future__ import annotations

from app.models.reference import Role
from app.models.request import ITRequest
from app.models.workflow import WorkflowStep, WorkflowTransition
from app.services.role_names import (
    ADMIN_ROLE,
    canonical_role_names_for_approver,
    is_approver_role,
    role_matches,
)
from app.services.rule_sources import LegacyStepRuleSource


def _role_has_department_filter(role_name: str) -> bool:
    names = canonical_role_names_for_approver(role_name)
    role_ids = [r.id for r in Role.query.filter(Role.role_name.in_(names)).all()] if names else []
    if role_ids and WorkflowTransition.query.filter(
        WorkflowTransition.required_role_id.in_(role_ids),
        WorkflowTransition.filter_by_department.is_(True),
    ).first() is not None:
        return True

    legacy_categories = LegacyStepRuleSource().covered_category_ids()
    if not legacy_categories:
        return False
    steps = WorkflowStep.query.filter(
        WorkflowStep.category_id.in_(sorted(legacy_categories)),
        WorkflowStep.filter_by_department.is_(True),
    ).all()
    return any(role_matches(s.approver_role_name, role_name) for s in steps)


def get_department_filter(actor) -> dict:
    """Column → value equality filter for ITRequest list queries."""
    if actor.role_name == ADMIN_ROLE:
        return {}
    if not is_approver_role(actor.role_name):
        return {"requester_id": actor.user_id}
    if _role_has_department_filter(actor.role_name):
        return {"department_id": actor.department_id}
    return {}


def apply_department_filter(query, actor):
    """Narrow an ``ITRequest`` query to what *actor* may see."""
    for column, value in get_department_filter(actor).items():
        query = query.filter(getattr(ITRequest, column) == value)
    return query
