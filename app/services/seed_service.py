"""
Seed Service — default reference data and the standard F07 approval chain.

Idempotent: existing rows (matched by code / name) are left untouched and a
category that already has transitions is skipped.  Callers commit.

Standard chain (per category):

    PENDING            --APPROVE (Head of Department, dept)-->  WAITING_ACCOUNT_1   step 1
    WAITING_ACCOUNT_1  --APPROVE (Accountant)-->                WAITING_FINAL_APP   step 2
    WAITING_FINAL_APP  --APPROVE (Final Approver)-->            IT_WORKING          step 3
    IT_WORKING         --IT_PROCESS (IT)-->                     WAITING_ACCOUNT_2   step 4
  requires_final_closing:
    WAITING_ACCOUNT_2  --APPROVE (Accountant)-->                WAITING_IT_CLOSE    step 5
    WAITING_IT_CLOSE   --CONFIRM_COMPLETE (IT Reviewer)-->      CLOSED              step 6
  otherwise:
    WAITING_ACCOUNT_2  --APPROVE (Accountant)-->                CLOSED              step 5

Every non-terminal status also gets a REJECT rule to REJECTED for the role
that approves from it.
"""

import logging

from app.models import db
from app.models.reference import (
    ACTION_APPROVE,
    ACTION_CONFIRM_COMPLETE,
    ACTION_IT_PROCESS,
    ACTION_REJECT,
    STATUS_CLOSED,
    STATUS_PENDING,
    STATUS_REJECTED,
    Category,
    Department,
    Role,
    Status,
    WorkflowAction,
)
from app.models.workflow import STEP_POLICY_STAY, WorkflowStep, WorkflowTransition

logger = logging.getLogger(__name__)

# (code, display_name, color_code, display_order, is_initial_state)
DEFAULT_STATUSES = [
    (STATUS_PENDING, "Pending head of department", "#f59e0b", 1, True),
    ("WAITING_ACCOUNT_1", "Waiting for accounting review", "#3b82f6", 2, False),
    ("WAITING_FINAL_APP", "Waiting for final approval", "#6366f1", 3, False),
    ("IT_WORKING", "IT in progress", "#0ea5e9", 4, False),
    ("WAITING_ACCOUNT_2", "Waiting for accounting confirmation", "#8b5cf6", 5, False),
    ("WAITING_IT_CLOSE", "Waiting for IT review", "#14b8a6", 6, False),
    (STATUS_CLOSED, "Closed", "#22c55e", 7, False),
    (STATUS_REJECTED, "Rejected", "#ef4444", 8, False),
    ("REVISION", "Returned for revision", "#f97316", 9, False),
]

DEFAULT_ROLES = [
    ("Admin", "System administrator"),
    ("User", "Requester"),
    ("Head of Department", "Department head, first approval"),
    ("Accountant", "Accounting review and confirmation"),
    ("Final Approver", "Final business approval"),
    ("IT", "IT operator, performs the change"),
    ("IT Reviewer", "Verifies and closes the change"),
    ("Warehouse", "Warehouse approver"),
]

DEFAULT_ACTIONS = [
    (ACTION_APPROVE, "Approve"),
    (ACTION_REJECT, "Reject"),
    (ACTION_IT_PROCESS, "IT processed"),
    (ACTION_CONFIRM_COMPLETE, "Confirm complete"),
]

DEFAULT_DEPARTMENTS = ["IT", "Accounting", "Sales", "Production", "Warehouse"]

DEFAULT_CATEGORIES = [
    ("ERP data correction", True),
    ("Program change", True),
    ("Master data", False),
]

# (from_status, action, role, to_status, step, filter_by_department)
_CHAIN_HEAD = [
    (STATUS_PENDING, ACTION_APPROVE, "Head of Department", "WAITING_ACCOUNT_1", 1, True),
    ("WAITING_ACCOUNT_1", ACTION_APPROVE, "Accountant", "WAITING_FINAL_APP", 2, False),
    ("WAITING_FINAL_APP", ACTION_APPROVE, "Final Approver", "IT_WORKING", 3, False),
    ("IT_WORKING", ACTION_IT_PROCESS, "IT", "WAITING_ACCOUNT_2", 4, False),
]
_CHAIN_WITH_CLOSING = [
    ("WAITING_ACCOUNT_2", ACTION_APPROVE, "Accountant", "WAITING_IT_CLOSE", 5, False),
    ("WAITING_IT_CLOSE", ACTION_CONFIRM_COMPLETE, "IT Reviewer", STATUS_CLOSED, 6, False),
]
_CHAIN_WITHOUT_CLOSING = [
    ("WAITING_ACCOUNT_2", ACTION_APPROVE, "Accountant", STATUS_CLOSED, 5, False),
]


def standard_chain(requires_final_closing: bool) -> list[tuple]:
    tail = _CHAIN_WITH_CLOSING if requires_final_closing else _CHAIN_WITHOUT_CLOSING
    return _CHAIN_HEAD + tail


def _get_or_create(model, defaults=None, **lookup):
    obj = model.query.filter_by(**lookup).first()
    if obj is not None:
        return obj, False
    obj = model(**lookup, **(defaults or {}))
    db.session.add(obj)
    return obj, True


def seed_reference_data() -> dict:
    """Statuses, roles, actions and departments. Returns created counts."""
    created = {"statuses": 0, "roles": 0, "actions": 0, "departments": 0}
    for code, name, color, order, initial in DEFAULT_STATUSES:
        _, new = _get_or_create(Status, code=code, defaults={
            "display_name": name, "color_code": color,
            "display_order": order, "is_initial_state": initial,
        })
        created["statuses"] += new
    for role_name, description in DEFAULT_ROLES:
        _, new = _get_or_create(Role, role_name=role_name, defaults={"description": description})
        created["roles"] += new
    for action_name, display in DEFAULT_ACTIONS:
        _, new = _get_or_create(WorkflowAction, action_name=action_name, defaults={"display_name": display})
        created["actions"] += new
    for name in DEFAULT_DEPARTMENTS:
        _, new = _get_or_create(Department, name=name)
        created["departments"] += new
    db.session.flush()
    return created


def seed_standard_workflow(category: Category) -> int:
    """Add the standard chain to *category*. Returns the number of rules added."""
    if WorkflowTransition.query.filter_by(category_id=category.id).first() is not None:
        logger.info("Category %s already has transitions, skipped", category.name)
        return 0

    statuses = {s.code: s for s in Status.query.all()}
    roles = {r.role_name: r for r in Role.query.all()}
    actions = {a.action_name: a for a in WorkflowAction.query.all()}

    added = 0
    for from_code, action, role, to_code, step, dept in standard_chain(category.requires_final_closing):
        db.session.add(WorkflowTransition(
            category_id=category.id,
            current_status_id=statuses[from_code].id,
            action_id=actions[action].id,
            required_role_id=roles[role].id,
            next_status_id=statuses[to_code].id,
            step_sequence=step,
            filter_by_department=dept,
        ))
        db.session.add(WorkflowTransition(
            category_id=category.id,
            current_status_id=statuses[from_code].id,
            action_id=actions[ACTION_REJECT].id,
            required_role_id=roles[role].id,
            next_status_id=statuses[STATUS_REJECTED].id,
            step_sequence=step,
            filter_by_department=dept,
            step_policy=STEP_POLICY_STAY,
        ))
        added += 2
    db.session.flush()
    return added


def seed_all() -> dict:
    """Reference data, default categories if none exist, and their chains.

    Categories still configured through legacy steps are left alone.
    """
    summary = seed_reference_data()
    if Category.query.count() == 0:
        for name, closing in DEFAULT_CATEGORIES:
            db.session.add(Category(name=name, requires_final_closing=closing))
        db.session.flush()
    legacy = {s.category_id for s in WorkflowStep.query.all()}
    summary["transitions"] = sum(
        seed_standard_workflow(c)
        for c in Category.query.filter_by(is_active=True).order_by(Category.id).all()
        if c.id not in legacy
    )
    return summary
