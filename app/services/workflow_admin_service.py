"""
Workflow Administration Service — Admin-only configuration of the rule tables.

    Transitions        list / create / delete / delete-scope / copy
    Legacy steps       list / create / delete / copy
    Special approvers  list / set (upsert) / delete
    Validation         configuration gaps + categories in both tables

Every mutation writes an audit row and commits.  Duplicate transition keys
(category, correction_type, current_status, action, required_role) are
refused with ConflictError; the table has no unique index because NULL
correction types do not participate in one.
"""

from __future__ import annotations

import logging

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.auth import User
from app.models.reference import (
    TERMINAL_STATUS_CODES,
    Category,
    CorrectionType,
    Role,
    Status,
    WorkflowAction,
)
from app.models.workflow import (
    STEP_POLICIES,
    STEP_POLICY_ADVANCE,
    SpecialApproverMapping,
    WorkflowStep,
    WorkflowTransition,
)
from app.services.rule_sources import (
    LegacyStepRuleSource,
    TransitionRuleSource,
    categories_in_both_tables,
    initial_status,
)
from app.utils.helpers import parse_bool

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _int_field(data: dict, field: str, *, required=True, minimum=1):
    value = data.get(field)
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    try:
        value = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: value}) from exc
    if value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={field: value})
    return value


def _require(model, pk, label):
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return obj


def _actor_label(actor) -> str:
    return actor.full_name or str(actor.user_id)


# ═══════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════


def list_transitions(category_id: int, correction_type_id: int | None = None) -> list[dict]:
    q = WorkflowTransition.query.filter(WorkflowTransition.category_id == category_id)
    if correction_type_id is None:
        q = q.filter(WorkflowTransition.correction_type_id.is_(None))
    else:
        q = q.filter(WorkflowTransition.correction_type_id == correction_type_id)
    return [t.to_dict() for t in q.order_by(WorkflowTransition.step_sequence, WorkflowTransition.id).all()]


def find_duplicate_transition(category_id, correction_type_id, current_status_id, action_id, required_role_id):
    q = WorkflowTransition.query.filter(
        WorkflowTransition.category_id == category_id,
        WorkflowTransition.current_status_id == current_status_id,
        WorkflowTransition.action_id == action_id,
        WorkflowTransition.required_role_id == required_role_id,
    )
    if correction_type_id is None:
        q = q.filter(WorkflowTransition.correction_type_id.is_(None))
    else:
        q = q.filter(WorkflowTransition.correction_type_id == correction_type_id)
    return q.first()


def create_transition(data: dict, actor) -> WorkflowTransition:
    category_id = _int_field(data, "category_id")
    correction_type_id = _int_field(data, "correction_type_id", required=False)
    current_status_id = _int_field(data, "current_status_id")
    action_id = _int_field(data, "action_id")
    required_role_id = _int_field(data, "required_role_id")
    next_status_id = _int_field(data, "next_status_id")
    step_sequence = _int_field(data, "step_sequence", required=False)
    step_policy = (data.get("step_policy") or STEP_POLICY_ADVANCE).strip().lower()
    if step_policy not in STEP_POLICIES:
        raise ValidationError(
            f"step_policy must be one of: {', '.join(sorted(STEP_POLICIES))}",
            details={"step_policy": step_policy},
        )

    _require(Category, category_id, "Category")
    if correction_type_id is not None:
        ct = _require(CorrectionType, correction_type_id, "CorrectionType")
        if ct.category_id != category_id:
            raise ValidationError("correction_type_id does not belong to the category")
    current_status = _require(Status, current_status_id, "Status")
    _require(Status, next_status_id, "Status")
    _require(WorkflowAction, action_id, "WorkflowAction")
    _require(Role, required_role_id, "Role")
    if current_status.code in TERMINAL_STATUS_CODES:
        raise ValidationError(
            f"Transitions cannot leave terminal status {current_status.code}",
            details={"current_status_id": current_status_id},
        )

    if find_duplicate_transition(category_id, correction_type_id, current_status_id, action_id, required_role_id):
        raise ConflictError(
            "WorkflowTransition",
            "category/correction_type/current_status/action/required_role",
            f"{category_id}/{correction_type_id}/{current_status_id}/{action_id}/{required_role_id}",
        )

    transition = WorkflowTransition(
        category_id=category_id,
        correction_type_id=correction_type_id,
        current_status_id=current_status_id,
        action_id=action_id,
        required_role_id=required_role_id,
        next_status_id=next_status_id,
        step_sequence=step_sequence if step_sequence is not None else 1,
        filter_by_department=parse_bool(data.get("filter_by_department")),
        step_policy=step_policy,
    )
    db.session.add(transition)
    db.session.flush()
    write_audit(
        entity_type="workflow_transition",
        entity_id=transition.id,
        action="workflow.transition_create",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff={"category_id": category_id, "current_status_id": current_status_id,
              "next_status_id": next_status_id, "step_sequence": transition.step_sequence},
    )
    db.session.commit()
    logger.info("Transition %s created for category %s by user %s", transition.id, category_id, actor.user_id)
    return transition


def delete_transition(transition_id: int, actor) -> None:
    transition = _require(WorkflowTransition, transition_id, "WorkflowTransition")
    snapshot = transition.to_dict()
    db.session.delete(transition)
    write_audit(
        entity_type="workflow_transition",
        entity_id=transition_id,
        action="workflow.transition_delete",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff={"deleted": snapshot},
    )
    db.session.commit()


def delete_transitions_for_scope(category_id: int, correction_type_id: int | None, actor) -> int:
    """Remove a category's generic (or one correction type's) workflow."""
    q = WorkflowTransition.query.filter(WorkflowTransition.category_id == category_id)
    if correction_type_id is None:
        q = q.filter(WorkflowTransition.correction_type_id.is_(None))
    else:
        q = q.filter(WorkflowTransition.correction_type_id == correction_type_id)
    count = q.delete(synchronize_session=False)
    write_audit(
        entity_type="category",
        entity_id=category_id,
        action="workflow.transition_delete",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff={"correction_type_id": correction_type_id, "deleted": count},
    )
    db.session.commit()
    return count


def copy_transitions(from_category_id: int, to_category_id: int, actor) -> dict:
    """Replace *to*'s generic workflow with a copy of *from*'s.

    Correction-type sub-workflows are category-specific and are not copied.
    """
    if from_category_id == to_category_id:
        raise ValidationError("Source and target categories must differ")
    _require(Category, from_category_id, "Category")
    _require(Category, to_category_id, "Category")

    source = (
        WorkflowTransition.query
        .filter(WorkflowTransition.category_id == from_category_id,
                WorkflowTransition.correction_type_id.is_(None))
        .order_by(WorkflowTransition.step_sequence, WorkflowTransition.id)
        .all()
    )
    if not source:
        raise ValidationError("Source category has no transitions to copy")
    skipped = WorkflowTransition.query.filter(
        WorkflowTransition.category_id == from_category_id,
        WorkflowTransition.correction_type_id.isnot(None),
    ).count()

    replaced = WorkflowTransition.query.filter(
        WorkflowTransition.category_id == to_category_id,
        WorkflowTransition.correction_type_id.is_(None),
    ).delete(synchronize_session=False)
    for t in source:
        db.session.add(WorkflowTransition(
            category_id=to_category_id,
            correction_type_id=None,
            current_status_id=t.current_status_id,
            action_id=t.action_id,
            required_role_id=t.required_role_id,
            next_status_id=t.next_status_id,
            step_sequence=t.step_sequence,
            filter_by_department=t.filter_by_department,
            step_policy=t.step_policy,
        ))
    write_audit(
        entity_type="category",
        entity_id=to_category_id,
        action="workflow.transition_copy",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff={"from_category_id": from_category_id, "copied": len(source), "replaced": replaced},
    )
    db.session.commit()
    return {"copied": len(source), "replaced": replaced, "skipped_correction_type_rules": skipped}


# ═══════════════════════════════════════════════════════════════
# Legacy steps
# ═══════════════════════════════════════════════════════════════


def list_steps(category_id: int | None = None) -> list[dict]:
    q = WorkflowStep.query
    if category_id is not None:
        q = q.filter(WorkflowStep.category_id == category_id)
    steps = q.order_by(WorkflowStep.category_id, WorkflowStep.step_sequence).all()
    mappings = {
        (m.category_id, m.step_sequence): m
        for m in SpecialApproverMapping.query.filter(
            SpecialApproverMapping.category_id.in_(sorted({s.category_id for s in steps}))
        ).all()
    }
    out = []
    for s in steps:
        row = s.to_dict()
        special = mappings.get((s.category_id, s.step_sequence))
        row["special_approver_user_id"] = special.user_id if special else None
        row["special_approver_full_name"] = special.user.full_name if special and special.user else None
        out.append(row)
    return out


def create_step(data: dict, actor) -> WorkflowStep:
    category_id = _int_field(data, "category_id")
    step_sequence = _int_field(data, "step_sequence")
    approver_role_name = (data.get("approver_role_name") or "").strip()
    if not approver_role_name:
        raise ValidationError("approver_role_name is required", details={"approver_role_name": "required"})
    _require(Category, category_id, "Category")
    if WorkflowStep.query.filter_by(category_id=category_id, step_sequence=step_sequence).first():
        raise ConflictError("WorkflowStep", "category/step_sequence", f"{category_id}/{step_sequence}")

    step = WorkflowStep(
        category_id=category_id,
        step_sequence=step_sequence,
        approver_role_name=approver_role_name,
        filter_by_department=parse_bool(data.get("filter_by_department")),
    )
    db.session.add(step)
    db.session.flush()
    write_audit(
        entity_type="workflow_step",
        entity_id=step.id,
        action="workflow.step_create",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff=step.to_dict(),
    )
    db.session.commit()
    if TransitionRuleSource().covers(category_id):
        logger.warning("Step added to category %s which already uses transitions; it will be ignored", category_id)
    return step


def delete_step(step_id: int, actor) -> None:
    step = _require(WorkflowStep, step_id, "WorkflowStep")
    snapshot = step.to_dict()
    db.session.delete(step)
    write_audit(
        entity_type="workflow_step",
        entity_id=step_id,
        action="workflow.step_delete",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff={"deleted": snapshot},
    )
    db.session.commit()


def copy_steps(from_category_id: int, to_category_id: int, actor) -> dict:
    if from_category_id == to_category_id:
        raise ValidationError("Source and target categories must differ")
    _require(Category, from_category_id, "Category")
    _require(Category, to_category_id, "Category")
    source = WorkflowStep.query.filter_by(category_id=from_category_id).order_by(WorkflowStep.step_sequence).all()
    if not source:
        raise ValidationError("Source category has no workflow steps to copy")

    replaced = WorkflowStep.query.filter_by(category_id=to_category_id).delete(synchronize_session=False)
    for s in source:
        db.session.add(WorkflowStep(
            category_id=to_category_id,
            step_sequence=s.step_sequence,
            approver_role_name=s.approver_role_name,
            filter_by_department=s.filter_by_department,
        ))
    write_audit(
        entity_type="category",
        entity_id=to_category_id,
        action="workflow.step_create",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff={"from_category_id": from_category_id, "copied": len(source), "replaced": replaced},
    )
    db.session.commit()
    return {"copied": len(source), "replaced": replaced}


# ═══════════════════════════════════════════════════════════════
# Special approvers
# ═══════════════════════════════════════════════════════════════


def list_special_approvers(category_id: int | None = None) -> list[dict]:
    q = SpecialApproverMapping.query
    if category_id is not None:
        q = q.filter(SpecialApproverMapping.category_id == category_id)
    rows = q.order_by(SpecialApproverMapping.category_id, SpecialApproverMapping.step_sequence).all()
    return [m.to_dict() for m in rows]


def set_special_approver(data: dict, actor) -> SpecialApproverMapping:
    """Create or replace the designee for (category, step)."""
    category_id = _int_field(data, "category_id")
    step_sequence = _int_field(data, "step_sequence")
    user_id = _int_field(data, "user_id")
    _require(Category, category_id, "Category")
    user = _require(User, user_id, "User")
    if not user.is_active:
        raise ValidationError("Special approver must be an active user", details={"user_id": user_id})

    mapping = SpecialApproverMapping.query.filter_by(category_id=category_id, step_sequence=step_sequence).first()
    previous = mapping.user_id if mapping else None
    if mapping is None:
        mapping = SpecialApproverMapping(category_id=category_id, step_sequence=step_sequence, user_id=user_id)
        db.session.add(mapping)
    else:
        mapping.user_id = user_id
    db.session.flush()
    write_audit(
        entity_type="special_approver",
        entity_id=mapping.id,
        action="workflow.special_approver_set",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff={"category_id": category_id, "step_sequence": step_sequence,
              "from_user_id": previous, "to_user_id": user_id},
    )
    db.session.commit()
    return mapping


def delete_special_approver(category_id: int, step_sequence: int, actor) -> None:
    mapping = SpecialApproverMapping.query.filter_by(category_id=category_id, step_sequence=step_sequence).first()
    if mapping is None:
        raise NotFoundError(resource="SpecialApproverMapping", resource_id=f"{category_id}/{step_sequence}")
    write_audit(
        entity_type="special_approver",
        entity_id=mapping.id,
        action="workflow.special_approver_delete",
        actor=_actor_label(actor),
        actor_user_id=actor.user_id,
        diff={"category_id": category_id, "step_sequence": step_sequence, "user_id": mapping.user_id},
    )
    db.session.delete(mapping)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Validation report
# ═══════════════════════════════════════════════════════════════


def _transition_gaps(category: Category, start: Status | None) -> list[dict]:
    rows = WorkflowTransition.query.filter_by(category_id=category.id).all()
    scopes: dict = {}
    for t in rows:
        scopes.setdefault(t.correction_type_id, []).append(t)

    gaps = []
    for correction_type_id, transitions in scopes.items():
        outgoing = {t.current_status_id for t in transitions}
        reachable = {t.next_status_id for t in transitions}
        if start is not None:
            reachable.add(start.id)
        for status_id in sorted(reachable - outgoing):
            status = db.session.get(Status, status_id)
            if status is None or status.code in TERMINAL_STATUS_CODES:
                continue
            gaps.append({
                "category_id": category.id,
                "category_name": category.name,
                "correction_type_id": correction_type_id,
                "status_id": status_id,
                "status": status.code,
                "source": TransitionRuleSource.name,
            })
    return gaps


def _legacy_gaps(category: Category) -> list[dict]:
    sequences = [
        s.step_sequence for s in
        WorkflowStep.query.filter_by(category_id=category.id).order_by(WorkflowStep.step_sequence).all()
    ]
    missing = sorted(set(range(1, max(sequences) + 1)) - set(sequences)) if sequences else []
    return [
        {
            "category_id": category.id,
            "category_name": category.name,
            "step_sequence": seq,
            "source": LegacyStepRuleSource.name,
        }
        for seq in missing
    ]


def validate_workflows() -> dict:
    """Configuration defects an admin should fix."""
    start = initial_status()
    transitions = TransitionRuleSource()
    legacy = LegacyStepRuleSource(transitions)
    migrated = transitions.covered_category_ids()
    stepped = legacy.covered_category_ids()

    gaps, unconfigured = [], []
    for category in Category.query.order_by(Category.id).all():
        if category.id in migrated:
            gaps.extend(_transition_gaps(category, start))
        elif category.id in stepped:
            gaps.extend(_legacy_gaps(category))
        elif category.is_active:
            unconfigured.append({"category_id": category.id, "category_name": category.name})

    report = {
        "configuration_gaps": gaps,
        "categories_in_both_tables": categories_in_both_tables(),
        "unconfigured_categories": unconfigured,
    }
    report["ok"] = not (gaps or report["categories_in_both_tables"] or unconfigured)
    return report
