"""
F07 Workflow Engine — Action Executor.

Applies one workflow action (APPROVE / REJECT / IT_PROCESS / CONFIRM_COMPLETE)
to one request, atomically.

Checks, in order; the first failure wins and nothing is written:
    1. RequestClosed          request is CLOSED or REJECTED
    2. ConfigurationGap       no rule at all leaves the current state
       ActionNotAllowed       rules exist, none matches (action, role)
    3. DepartmentMismatch     rule filters by department, actor is elsewhere
    4. NotDesignatedApprover  a special approver owns this category+step

On success the request's status code, status id, approval step and approval
token are written in one compare-and-set UPDATE guarded by the state that
was read.  If another actor moved the request first the UPDATE matches no
row and the caller gets ActionNotAllowed.  The history row and audit row are
written in the same transaction.

Notifications are *returned*, not sent: ``ActionResult.notifications`` is a
list of instructions the caller dispatches after commit.

Usage:
    from app.services.workflow_engine import Actor, execute_action

    result = execute_action(42, "APPROVE", Actor(user_id=7, role_name="Accountant", department_id=3))
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import update

from app.core.exceptions import (
    ActionNotAllowed,
    ConfigurationGap,
    DepartmentMismatch,
    NotDesignatedApprover,
    NotFoundError,
    RequestClosed,
    WorkflowError,
)
from app.models import db
from app.models.audit import write_audit
from app.models.auth import User
from app.models.notification import (
    TEMPLATE_APPROVAL_REQUEST,
    TEMPLATE_REQUEST_COMPLETED,
    TEMPLATE_REQUEST_REJECTED,
)
from app.models.reference import (
    ACTION_APPROVE,
    ACTION_IT_PROCESS,
    ACTION_REJECT,
    STATUS_REJECTED,
    TERMINAL_STATUS_CODES,
    Role,
    Status,
)
from app.models.request import ApprovalHistory, ITRequest
from app.services.rule_sources import ResolvedRule, source_for_category, special_approver_for
from app.services.role_names import role_matches, user_role_names_for_workflow_role

logger = logging.getLogger(__name__)


# ── Value types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Actor:
    """Who is acting. Built from the JWT by the auth middleware."""

    user_id: int
    role_name: str | None
    department_id: int | None
    full_name: str = ""

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            user_id=user.id,
            role_name=user.role_name,
            department_id=user.department_id,
            full_name=user.full_name or user.username,
        )


@dataclass(frozen=True)
class NotificationInstruction:
    template_kind: str
    recipient_user_id: int
    request_id: int

    def to_dict(self) -> dict:
        return {
            "template_kind": self.template_kind,
            "recipient_user_id": self.recipient_user_id,
            "request_id": self.request_id,
        }


@dataclass
class ActionResult:
    request_id: int
    action_name: str
    previous_status: str
    new_status: str
    new_status_id: int
    current_approval_step: int
    is_terminal: bool
    rule_source: str
    approval_token: str | None = None
    notifications: list[NotificationInstruction] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "action": self.action_name,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "new_status_id": self.new_status_id,
            "current_approval_step": self.current_approval_step,
            "is_terminal": self.is_terminal,
            "rule_source": self.rule_source,
            "notifications": [n.to_dict() for n in self.notifications],
        }


def new_approval_token() -> str:
    return uuid.uuid4().hex


# ── Rule matching ────────────────────────────────────────────────────────────


def _special_bypasses_role() -> bool:
    return bool(current_app.config.get("SPECIAL_APPROVER_BYPASSES_ROLE", False))


def _check_department(req: ITRequest, rule: ResolvedRule, actor: Actor) -> None:
    if rule.filter_by_department and actor.department_id != req.department_id:
        raise DepartmentMismatch(req.id, actor.department_id, req.department_id)


def _check_designee(req: ITRequest, rule: ResolvedRule, actor: Actor) -> None:
    designee = special_approver_for(req.category_id, rule.step_sequence)
    if designee is not None and designee != actor.user_id:
        raise NotDesignatedApprover(req.id, rule.step_sequence, designee)


def match_rule(req: ITRequest, action_name: str, actor: Actor) -> ResolvedRule:
    """Return the rule *actor* fires with *action_name*, or raise the refusal.

    Pure read: nothing is written.
    """
    status_code = req.current_status.code if req.current_status else req.status
    if status_code in TERMINAL_STATUS_CODES:
        raise RequestClosed(req.id, status_code)

    source = source_for_category(req.category_id)
    rules = source.resolve_for_request(req) if source else []
    if not rules:
        raise ConfigurationGap(req.id, req.category_id, status_code, req.correction_type_id)

    bypass = _special_bypasses_role()
    eligible = []
    for rule in rules:
        if rule.action_name != action_name:
            continue
        if role_matches(rule.required_role_name, actor.role_name):
            eligible.append(rule)
        elif bypass and special_approver_for(req.category_id, rule.step_sequence) == actor.user_id:
            eligible.append(rule)
    if not eligible:
        raise ActionNotAllowed(action_name, status_code, role_name=actor.role_name, request_id=req.id)

    # Several rules can name the same action and role; the first one the
    # actor fully satisfies wins, otherwise the first rule's refusal is raised.
    first_error: WorkflowError | None = None
    for rule in eligible:
        try:
            _check_department(req, rule, actor)
            _check_designee(req, rule, actor)
        except WorkflowError as exc:
            first_error = first_error or exc
            continue
        return rule
    raise first_error


def get_available_actions(req: ITRequest, actor: Actor) -> list[dict]:
    """Actions *actor* could perform on *req* right now (one entry per action)."""
    status_code = req.current_status.code if req.current_status else req.status
    if status_code in TERMINAL_STATUS_CODES:
        return []
    source = source_for_category(req.category_id)
    if source is None:
        return []
    out: list[dict] = []
    seen: set[str] = set()
    for candidate in source.resolve_for_request(req):
        if candidate.action_name in seen:
            continue
        try:
            rule = match_rule(req, candidate.action_name, actor)
        except WorkflowError:
            continue
        seen.add(rule.action_name)
        out.append({
            "action": rule.action_name,
            "next_status": rule.next_status_code,
            "step_sequence": rule.step_sequence,
            "requires_comment": rule.action_name == ACTION_REJECT,
        })
    return out


# ── Approver resolution ──────────────────────────────────────────────────────


def get_approvers_for_rule(rule: ResolvedRule, category_id: int, department_id: int | None) -> list[User]:
    """Users who would be asked to act on *rule*.

    A special approver mapped to (category, step) replaces the role lookup.
    """
    designee_id = special_approver_for(category_id, rule.step_sequence)
    if designee_id is not None:
        user = db.session.get(User, designee_id)
        return [user] if user and user.is_active else []

    names = user_role_names_for_workflow_role(rule.required_role_name)
    if not names:
        return []
    q = User.query.join(Role, User.role_id == Role.id).filter(
        Role.role_name.in_(names),
        User.is_active.is_(True),
    )
    if rule.filter_by_department:
        q = q.filter(User.department_id == department_id)
    return q.order_by(User.id).all()


def _pick_notify_rule(rules: list[ResolvedRule]) -> ResolvedRule | None:
    for preferred in (ACTION_APPROVE, ACTION_IT_PROCESS):
        for rule in rules:
            if rule.action_name == preferred:
                return rule
    return rules[0] if rules else None


def get_next_approvers(req: ITRequest) -> list[User]:
    """Users expected to act on *req* in its current state."""
    source = source_for_category(req.category_id)
    if source is None:
        return []
    rule = _pick_notify_rule(source.resolve_for_request(req))
    if rule is None:
        return []
    return get_approvers_for_rule(rule, req.category_id, req.department_id)


def build_notifications(req: ITRequest, action_name: str) -> list[NotificationInstruction]:
    """Who to tell after *req* reached its current state via *action_name*."""
    status_code = req.current_status.code if req.current_status else req.status
    if action_name == ACTION_REJECT or status_code == STATUS_REJECTED:
        return [NotificationInstruction(TEMPLATE_REQUEST_REJECTED, req.requester_id, req.id)]
    if status_code in TERMINAL_STATUS_CODES:
        return [NotificationInstruction(TEMPLATE_REQUEST_COMPLETED, req.requester_id, req.id)]
    return [
        NotificationInstruction(TEMPLATE_APPROVAL_REQUEST, user.id, req.id)
        for user in get_next_approvers(req)
    ]


# ── Executor ─────────────────────────────────────────────────────────────────


def _load_request(request_id: int) -> ITRequest | None:
    return (
        ITRequest.query
        .filter(ITRequest.id == request_id)
        .populate_existing()
        .with_for_update(of=ITRequest)
        .first()
    )


def _apply(req: ITRequest, rule: ResolvedRule, actor: Actor, comment: str | None) -> ActionResult:
    expected_status_id = req.current_status_id
    expected_step = req.current_approval_step
    previous_code = req.status

    next_status = db.session.get(Status, rule.next_status_id)
    if next_status is None:
        raise ConfigurationGap(req.id, req.category_id, previous_code, req.correction_type_id)
    new_step = rule.next_approval_step(expected_step or 1)
    terminal = next_status.code in TERMINAL_STATUS_CODES
    token = None if terminal else new_approval_token()

    stmt = (
        update(ITRequest)
        .where(
            ITRequest.id == req.id,
            ITRequest.current_status_id == expected_status_id,
            ITRequest.current_approval_step == expected_step,
        )
        .values(
            status=next_status.code,
            current_status_id=next_status.id,
            current_approval_step=new_step,
            approval_token=token,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount != 1:
        raise ActionNotAllowed(
            rule.action_name, previous_code, role_name=actor.role_name,
            request_id=req.id, reason="request state changed concurrently",
        )
    db.session.refresh(req)

    db.session.add(ApprovalHistory(
        request_id=req.id,
        approver_id=actor.user_id,
        approver_name_snapshot=actor.full_name or None,
        approval_level=rule.step_sequence,
        action_type=rule.action_name,
        from_status=previous_code,
        to_status=next_status.code,
        comment=comment,
    ))
    write_audit(
        entity_type="request",
        entity_id=req.id,
        action=f"request.{rule.action_name.lower()}",
        actor=actor.full_name or str(actor.user_id),
        actor_user_id=actor.user_id,
        diff={
            "from_status": previous_code,
            "to_status": next_status.code,
            "from_step": expected_step,
            "to_step": new_step,
            "rule_source": rule.source,
            "rule_id": rule.rule_id,
            "comment": comment,
        },
    )

    return ActionResult(
        request_id=req.id,
        action_name=rule.action_name,
        previous_status=previous_code,
        new_status=next_status.code,
        new_status_id=next_status.id,
        current_approval_step=new_step,
        is_terminal=terminal,
        rule_source=rule.source,
        approval_token=token,
        notifications=build_notifications(req, rule.action_name),
    )


def execute_action(request_id: int, action_name: str, actor: Actor, comment: str | None = None) -> ActionResult:
    """Validate and apply *action_name* to request *request_id* as *actor*.

    Commits on success.  On any refusal the session is rolled back and the
    WorkflowError propagates unchanged.

    Raises:
        NotFoundError: no such request.
        RequestClosed / ActionNotAllowed / ConfigurationGap /
        DepartmentMismatch / NotDesignatedApprover: see module docstring.
    """
    action_name = (action_name or "").strip().upper()
    try:
        req = _load_request(request_id)
        if req is None:
            raise NotFoundError(resource="ITRequest", resource_id=request_id)
        rule = match_rule(req, action_name, actor)
        result = _apply(req, rule, actor, comment)
        db.session.commit()
    except WorkflowError as exc:
        db.session.rollback()
        logger.info(
            "Workflow action refused: request=%s action=%s user=%s kind=%s",
            request_id, action_name, actor.user_id, exc.kind,
            extra={"workflow_request_id": request_id, "action": action_name, "error_kind": exc.kind},
        )
        raise
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Workflow action applied: request=%s action=%s %s→%s step=%s source=%s",
        result.request_id, result.action_name, result.previous_status,
        result.new_status, result.current_approval_step, result.rule_source,
        extra={"workflow_request_id": result.request_id, "action": result.action_name},
    )
    return result
