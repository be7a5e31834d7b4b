"""
F07 IT Change Request Platform
Reference data models.

Models:
    - Department: organisational unit of a requester / approver
    - Category: request classification, owns the workflow configuration
    - CorrectionType: optional sub-classification with its own sub-workflow
    - Status: named state a request can occupy
    - Role: approver / requester role (one per user)
    - WorkflowAction: operation an actor may perform (APPROVE, REJECT, ...)

These rows are read-only from the workflow engine's perspective.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_PENDING = "PENDING"
STATUS_CLOSED = "CLOSED"
STATUS_REJECTED = "REJECTED"

TERMINAL_STATUS_CODES = frozenset({STATUS_CLOSED, STATUS_REJECTED})

ACTION_APPROVE = "APPROVE"
ACTION_REJECT = "REJECT"
ACTION_IT_PROCESS = "IT_PROCESS"
ACTION_CONFIRM_COMPLETE = "CONFIRM_COMPLETE"

KNOWN_ACTIONS = (ACTION_APPROVE, ACTION_REJECT, ACTION_IT_PROCESS, ACTION_CONFIRM_COMPLETE)


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "is_active": self.is_active}

    def __repr__(self):
        return f"<Department {self.id}: {self.name}>"


class Category(db.Model):
    """Request classification. Owns transition rows and legacy step rows."""

    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    requires_final_closing = db.Column(
        db.Boolean, nullable=False, default=True,
        comment="True when the chain ends with an IT Reviewer closing step",
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    correction_types = db.relationship(
        "CorrectionType", back_populates="category", lazy="select", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "requires_final_closing": self.requires_final_closing,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Category {self.id}: {self.name}>"


class CorrectionType(db.Model):
    __tablename__ = "correction_types"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(150), nullable=False)
    display_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)

    category = db.relationship("Category", back_populates="correction_types")

    __table_args__ = (
        db.UniqueConstraint("category_id", "name", name="uq_correction_type_category_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }


class Status(db.Model):
    """
    A named workflow state.

    ``code`` is the stable identifier written into ``ITRequest.status``;
    CLOSED and REJECTED are terminal.
    """

    __tablename__ = "statuses"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    display_name = db.Column(db.String(150), nullable=False)
    color_code = db.Column(db.String(20), default="#64748b")
    display_order = db.Column(db.Integer, default=0)
    is_initial_state = db.Column(db.Boolean, nullable=False, default=False)

    @property
    def is_terminal(self) -> bool:
        return self.code in TERMINAL_STATUS_CODES

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "display_name": self.display_name,
            "color_code": self.color_code,
            "display_order": self.display_order,
            "is_initial_state": self.is_initial_state,
            "is_terminal": self.is_terminal,
        }

    def __repr__(self):
        return f"<Status {self.code}>"


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    role_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(255), default="")

    def to_dict(self):
        return {"id": self.id, "role_name": self.role_name, "description": self.description}

    def __repr__(self):
        return f"<Role {self.role_name}>"


class WorkflowAction(db.Model):
    __tablename__ = "workflow_actions"

    id = db.Column(db.Integer, primary_key=True)
    action_name = db.Column(db.String(50), unique=True, nullable=False)
    display_name = db.Column(db.String(150), default="")

    def to_dict(self):
        return {"id": self.id, "action_name": self.action_name, "display_name": self.display_name}

    def __repr__(self):
        return f"<WorkflowAction {self.action_name}>"
