"""
Workflow rule sources — one ``resolve()`` interface over two rule tables.

    TransitionRuleSource   status-keyed rows of ``workflow_transitions``
    LegacyStepRuleSource   step-keyed rows of ``workflow_steps``

Both produce ``ResolvedRule`` values so the Action Executor and the
Pending-Task Resolver never branch on where a rule came from.

Precedence:
    A category with at least one transition row is *migrated* and is served
    by TransitionRuleSource only.  LegacyStepRuleSource serves categories
    that have step rows and no transition rows.  ``source_for_category``
    applies this rule; nothing else decides between the tables.

Special approvers:
    ``special_approver_for`` / ``special_approver_map`` read
    ``special_approver_mappings`` keyed by (category, step_sequence).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select

from app.models import db
from app.models.reference import (
    ACTION_APPROVE,
    ACTION_REJECT,
    STATUS_CLOSED,
    STATUS_PENDING,
    STATUS_REJECTED,
    Role,
    Status,
)
from app.models.request import ITRequest
from app.models.workflow import (
    STEP_POLICY_ADVANCE,
    STEP_POLICY_RESET,
    STEP_POLICY_STAY,
    SpecialApproverMapping,
    WorkflowStep,
    WorkflowTransition,
)
from app.services.role_names import canonical_role_names_for_approver, role_matches

logger = logging.getLogger(__name__)

SOURCE_TRANSITION = "transition"
SOURCE_LEGACY = "legacy"


# ── Status helpers ───────────────────────────────────────────────────────────


def status_by_code(code: str) -> Status | None:
    return Status.query.filter_by(code=code).first()


def initial_status() -> Status | None:
    """The status flagged ``is_initial_state``, else the PENDING row."""
    status = Status.query.filter_by(is_initial_state=True).order_by(Status.display_order, Status.id).first()
    return status or status_by_code(STATUS_PENDING)


# ── Resolved rule ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResolvedRule:
    """A rule normalised from either table.

    ``next_status_id`` / ``next_status_code`` may be ``None`` only for legacy
    rules resolved without a request context (pending-task matching).
    """

    source: str
    rule_id: int
    category_id: int
    action_name: str
    required_role_name: str
    next_status_id: int | None
    next_status_code: str | None
    step_sequence: int
    filter_by_department: bool
    step_policy: str = STEP_POLICY_ADVANCE
    state_key: tuple = ()

    def next_approval_step(self, current_step: int) -> int:
        """Value of ``current_approval_step`` after this rule fires."""
        if self.step_policy == STEP_POLICY_STAY:
            return current_step
        if self.step_policy == STEP_POLICY_RESET:
            return 1
        return self.step_sequence + 1

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "rule_id": self.rule_id,
            "category_id": self.category_id,
            "action_name": self.action_name,
            "required_role": self.required_role_name,
            "next_status_id": self.next_status_id,
            "next_status": self.next_status_code,
            "step_sequence": self.step_sequence,
            "filter_by_department": self.filter_by_department,
            "step_policy": self.step_policy,
        }


# ── Sources ──────────────────────────────────────────────────────────────────


class RuleSource:
    """Interface shared by both rule tables."""

    name = ""

    def covers(self, category_id: int) -> bool:
        raise NotImplementedError

    def covered_category_ids(self) -> set[int]:
        raise NotImplementedError

    def resolve_for_request(self, req: ITRequest) -> list[ResolvedRule]:
        """Rules leaving *req*'s current state, in configuration order."""
        raise NotImplementedError

    def rules_for_role(self, user_role_name: str) -> list[ResolvedRule]:
        """Every rule a holder of *user_role_name* could fire, any state."""
        raise NotImplementedError

    def rule_state_key(self, rule: ResolvedRule) -> tuple:
        return rule.state_key

    def request_state_key(self, req: ITRequest) -> tuple:
        raise NotImplementedError


class TransitionRuleSource(RuleSource):
    name = SOURCE_TRANSITION

    def covers(self, category_id: int) -> bool:
        return db.session.execute(
            select(WorkflowTransition.id).where(WorkflowTransition.category_id == category_id).limit(1)
        ).first() is not None

    def covered_category_ids(self) -> set[int]:
        return set(db.session.execute(select(WorkflowTransition.category_id).distinct()).scalars())

    def resolve(
        self,
        category_id: int,
        correction_type_id: int | None,
        current_status_id: int,
    ) -> list[ResolvedRule]:
        """Exact-match lookup on all three keys.

        ``correction_type_id=None`` selects the generic workflow; a specific
        id selects only that sub-workflow, with no fallback between them.
        An empty list means no action is possible from this state.
        """
        q = WorkflowTransition.query.filter(
            WorkflowTransition.category_id == category_id,
            WorkflowTransition.current_status_id == current_status_id,
        )
        if correction_type_id is None:
            q = q.filter(WorkflowTransition.correction_type_id.is_(None))
        else:
            q = q.filter(WorkflowTransition.correction_type_id == correction_type_id)
        rows = q.order_by(WorkflowTransition.step_sequence, WorkflowTransition.id).all()
        return [self._to_rule(t) for t in rows]

    def resolve_for_request(self, req: ITRequest) -> list[ResolvedRule]:
        return self.resolve(req.category_id, req.correction_type_id, req.current_status_id)

    def rules_for_role(self, user_role_name: str) -> list[ResolvedRule]:
        names = canonical_role_names_for_approver(user_role_name)
        if not names:
            return []
        role_ids = [r.id for r in Role.query.filter(Role.role_name.in_(names)).all()]
        if not role_ids:
            return []
        rows = (
            WorkflowTransition.query
            .filter(WorkflowTransition.required_role_id.in_(role_ids))
            .order_by(WorkflowTransition.category_id, WorkflowTransition.step_sequence, WorkflowTransition.id)
            .all()
        )
        return [self._to_rule(t) for t in rows]

    def request_state_key(self, req: ITRequest) -> tuple:
        return (req.category_id, req.correction_type_id, req.current_status_id)

    @staticmethod
    def _to_rule(t: WorkflowTransition) -> ResolvedRule:
        return ResolvedRule(
            source=SOURCE_TRANSITION,
            rule_id=t.id,
            category_id=t.category_id,
            action_name=t.action.action_name,
            required_role_name=t.required_role.role_name,
            next_status_id=t.next_status_id,
            next_status_code=t.next_status.code,
            step_sequence=t.step_sequence,
            filter_by_department=bool(t.filter_by_department),
            step_policy=t.step_policy or STEP_POLICY_ADVANCE,
            state_key=(t.category_id, t.correction_type_id, t.current_status_id),
        )


class LegacyStepRuleSource(RuleSource):
    """Step-keyed rules for categories without transition rows.

    Each step row yields two rules:
      APPROVE  → next step, or CLOSED when it is the category's last step
      REJECT   → REJECTED
    A non-final APPROVE keeps the request's current status.
    """

    name = SOURCE_LEGACY

    def __init__(self, transitions: TransitionRuleSource | None = None):
        self._transitions = transitions or TransitionRuleSource()

    def covers(self, category_id: int) -> bool:
        if self._transitions.covers(category_id):
            return False
        return db.session.execute(
            select(WorkflowStep.id).where(WorkflowStep.category_id == category_id).limit(1)
        ).first() is not None

    def covered_category_ids(self) -> set[int]:
        stepped = set(db.session.execute(select(WorkflowStep.category_id).distinct()).scalars())
        return stepped - self._transitions.covered_category_ids()

    def resolve(self, category_id: int, step_sequence: int, current_status: Status | None = None) -> list[ResolvedRule]:
        step = WorkflowStep.query.filter_by(category_id=category_id, step_sequence=step_sequence).first()
        if step is None:
            return []
        return self._rules_for_step(step, self.step_count(category_id), current_status)

    def resolve_for_request(self, req: ITRequest) -> list[ResolvedRule]:
        return self.resolve(req.category_id, req.current_approval_step or 1, req.current_status)

    def rules_for_role(self, user_role_name: str) -> list[ResolvedRule]:
        out: list[ResolvedRule] = []
        covered = self.covered_category_ids()
        if not covered:
            return out
        steps = (
            WorkflowStep.query
            .filter(WorkflowStep.category_id.in_(sorted(covered)))
            .order_by(WorkflowStep.category_id, WorkflowStep.step_sequence)
            .all()
        )
        for step in steps:
            if role_matches(step.approver_role_name, user_role_name):
                out.extend(self._rules_for_step(step, None, None))
        return out

    def request_state_key(self, req: ITRequest) -> tuple:
        return (req.category_id, req.current_approval_step or 1)

    @staticmethod
    def step_count(category_id: int) -> int:
        return db.session.execute(
            select(func.max(WorkflowStep.step_sequence)).where(WorkflowStep.category_id == category_id)
        ).scalar() or 0

    @staticmethod
    def _rules_for_step(step: WorkflowStep, total_steps: int | None, current_status: Status | None) -> list[ResolvedRule]:
        if total_steps is None:
            approve_target = None
        elif step.step_sequence >= total_steps:
            approve_target = status_by_code(STATUS_CLOSED)
        else:
            approve_target = current_status or status_by_code(STATUS_PENDING)
        reject_target = status_by_code(STATUS_REJECTED) if total_steps is not None else None

        def _rule(action_name, target, policy):
            return ResolvedRule(
                source=SOURCE_LEGACY,
                rule_id=step.id,
                category_id=step.category_id,
                action_name=action_name,
                required_role_name=step.approver_role_name,
                next_status_id=target.id if target else None,
                next_status_code=target.code if target else None,
                step_sequence=step.step_sequence,
                filter_by_department=bool(step.filter_by_department),
                step_policy=policy,
                state_key=(step.category_id, step.step_sequence),
            )

        return [
            _rule(ACTION_APPROVE, approve_target, STEP_POLICY_ADVANCE),
            _rule(ACTION_REJECT, reject_target, STEP_POLICY_STAY),
        ]


# ── Source selection ─────────────────────────────────────────────────────────


def all_sources() -> list[RuleSource]:
    transitions = TransitionRuleSource()
    return [transitions, LegacyStepRuleSource(transitions)]


def source_for_category(category_id: int) -> RuleSource | None:
    """The single rule source that governs *category_id*, or None if unconfigured."""
    transitions = TransitionRuleSource()
    if transitions.covers(category_id):
        return transitions
    legacy = LegacyStepRuleSource(transitions)
    if legacy.covers(category_id):
        return legacy
    return None


def categories_in_both_tables() -> list[int]:
    """Categories with rows in both tables; their legacy rows are ignored."""
    stepped = set(db.session.execute(select(WorkflowStep.category_id).distinct()).scalars())
    both = sorted(stepped & TransitionRuleSource().covered_category_ids())
    if both:
        logger.warning("Categories configured in both rule tables, legacy steps ignored: %s", both)
    return both


# ── Special approvers ────────────────────────────────────────────────────────


def special_approver_for(category_id: int, step_sequence: int) -> int | None:
    mapping = SpecialApproverMapping.query.filter_by(
        category_id=category_id, step_sequence=step_sequence,
    ).first()
    return mapping.user_id if mapping else None


def special_approver_map(category_ids=None) -> dict[tuple[int, int], int]:
    """{(category_id, step_sequence): user_id} for the given categories (all if None)."""
    q = SpecialApproverMapping.query
    if category_ids is not None:
        ids = list(category_ids)
        if not ids:
            return {}
        q = q.filter(SpecialApproverMapping.category_id.in_(ids))
    return {(m.category_id, m.step_sequence): m.user_id for m in q.all()}
