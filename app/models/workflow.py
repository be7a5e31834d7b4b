"""
F07 IT Change Request Platform
Workflow configuration models.

Models:
    - WorkflowTransition: status-keyed rule
      (category, correction_type?, current_status, action, required_role)
      → (next_status, step_sequence, filter_by_department, step_policy)
    - WorkflowStep: legacy step-keyed rule
      (category, step_sequence) → approver role *name*
    - SpecialApproverMapping: (category, step_sequence) → single user

A category with at least one WorkflowTransition row is treated as migrated;
its WorkflowStep rows are ignored by the engine.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

STEP_POLICY_ADVANCE = "advance"
STEP_POLICY_STAY = "stay"
STEP_POLICY_RESET = "reset"

STEP_POLICIES = frozenset({STEP_POLICY_ADVANCE, STEP_POLICY_STAY, STEP_POLICY_RESET})


class WorkflowTransition(db.Model):
    """
    One edge of a category's approval state machine.

    ``correction_type_id`` NULL means the category's generic workflow; a
    specific correction type is a fully separate sub-workflow (no fallback).
    Duplicate keys are refused by the admin service, not by a DB constraint,
    because NULL correction types do not participate in unique indexes on
    every backend.
    """

    __tablename__ = "workflow_transitions"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False,
    )
    correction_type_id = db.Column(
        db.Integer, db.ForeignKey("correction_types.id", ondelete="CASCADE"), nullable=True,
    )
    current_status_id = db.Column(db.Integer, db.ForeignKey("statuses.id"), nullable=False)
    action_id = db.Column(db.Integer, db.ForeignKey("workflow_actions.id"), nullable=False)
    required_role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False, index=True)
    next_status_id = db.Column(db.Integer, db.ForeignKey("statuses.id"), nullable=False)
    step_sequence = db.Column(db.Integer, nullable=False, default=1)
    filter_by_department = db.Column(db.Boolean, nullable=False, default=False)
    step_policy = db.Column(
        db.String(10), nullable=False, default=STEP_POLICY_ADVANCE,
        comment="advance | stay | reset — how current_approval_step moves when this rule fires",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    category = db.relationship("Category")
    correction_type = db.relationship("CorrectionType")
    current_status = db.relationship("Status", foreign_keys=[current_status_id], lazy="joined")
    next_status = db.relationship("Status", foreign_keys=[next_status_id], lazy="joined")
    action = db.relationship("WorkflowAction", lazy="joined")
    required_role = db.relationship("Role", lazy="joined")

    __table_args__ = (
        db.Index("ix_transition_lookup", "category_id", "correction_type_id", "current_status_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "correction_type_id": self.correction_type_id,
            "current_status_id": self.current_status_id,
            "current_status": self.current_status.code if self.current_status else None,
            "action_id": self.action_id,
            "action": self.action.action_name if self.action else None,
            "required_role_id": self.required_role_id,
            "required_role": self.required_role.role_name if self.required_role else None,
            "next_status_id": self.next_status_id,
            "next_status": self.next_status.code if self.next_status else None,
            "step_sequence": self.step_sequence,
            "filter_by_department": self.filter_by_department,
            "step_policy": self.step_policy,
        }

    def __repr__(self):
        return (
            f"<WorkflowTransition {self.id}: cat={self.category_id} "
            f"{self.current_status_id}-[{self.action_id}]->{self.next_status_id}>"
        )


class WorkflowStep(db.Model):
    """Legacy step table for categories not yet migrated to transitions."""

    __tablename__ = "workflow_steps"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_sequence = db.Column(db.Integer, nullable=False)
    approver_role_name = db.Column(db.String(100), nullable=False)
    filter_by_department = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.UniqueConstraint("category_id", "step_sequence", name="uq_workflow_step_category_seq"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "step_sequence": self.step_sequence,
            "approver_role_name": self.approver_role_name,
            "filter_by_department": self.filter_by_department,
        }

    def __repr__(self):
        return f"<WorkflowStep cat={self.category_id} #{self.step_sequence} {self.approver_role_name}>"


class SpecialApproverMapping(db.Model):
    """Names the single user allowed to act at (category, step_sequence)."""

    __tablename__ = "special_approver_mappings"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False,
    )
    step_sequence = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    user = db.relationship("User", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("category_id", "step_sequence", name="uq_special_approver_category_step"),
    )

    def to_dict(self):
        return {
            "category_id": self.category_id,
            "step_sequence": self.step_sequence,
            "user_id": self.user_id,
            "user_full_name": self.user.full_name if self.user else None,
            "user_email": self.user.email if self.user else None,
        }
