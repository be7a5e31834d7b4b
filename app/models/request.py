"""
F07 IT Change Request Platform
Change-request domain models.

Models:
    - ITRequest: the workflow subject (F07 form)
    - ApprovalHistory: append-only record of every applied action
    - DocConfig: per-category/year document-number counter

Invariant: ``ITRequest.status`` always equals ``ITRequest.current_status.code``.
Both columns are written together by the workflow engine and by request
creation; nothing else mutates them.
"""

from datetime import datetime, timezone

from app.models import db


class ITRequest(db.Model):
    __tablename__ = "it_requests"

    id = db.Column(db.Integer, primary_key=True)
    work_order_no = db.Column(db.String(50), nullable=True, index=True,
                              comment="Unique within its category; the counter is per category")

    # Form content
    requester_name = db.Column(db.String(200), nullable=False, default="")
    phone = db.Column(db.String(50), default="")
    problem_detail = db.Column(db.Text, nullable=False, default="")
    system_type = db.Column(db.String(100), default="ERP Softpro")
    is_money_related = db.Column(db.Boolean, default=False)

    # Classification
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    correction_type_id = db.Column(
        db.Integer, db.ForeignKey("correction_types.id", ondelete="SET NULL"), nullable=True,
    )
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Workflow state
    status = db.Column(db.String(50), nullable=False, default="PENDING", index=True,
                       comment="Legacy status code, mirrors current_status.code")
    current_status_id = db.Column(db.Integer, db.ForeignKey("statuses.id"), nullable=False, index=True)
    current_approval_step = db.Column(db.Integer, nullable=False, default=1)
    approval_token = db.Column(db.String(64), unique=True, nullable=True,
                               comment="Email-link token; NULL once the request is terminal")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    category = db.relationship("Category", lazy="joined")
    correction_type = db.relationship("CorrectionType")
    department = db.relationship("Department", lazy="joined")
    requester = db.relationship("User", foreign_keys=[requester_id], lazy="joined")
    current_status = db.relationship("Status", lazy="joined")
    history = db.relationship(
        "ApprovalHistory", back_populates="request", order_by="ApprovalHistory.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("category_id", "work_order_no", name="uq_it_request_category_number"),
    )

    def to_dict(self, include_history=False):
        data = {
            "id": self.id,
            "work_order_no": self.work_order_no,
            "requester_name": self.requester_name,
            "phone": self.phone,
            "problem_detail": self.problem_detail,
            "system_type": self.system_type,
            "is_money_related": self.is_money_related,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "correction_type_id": self.correction_type_id,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "requester_id": self.requester_id,
            "status": self.status,
            "current_status_id": self.current_status_id,
            "current_status": self.current_status.to_dict() if self.current_status else None,
            "current_approval_step": self.current_approval_step,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_history:
            data["history"] = [h.to_dict() for h in self.history]
        return data

    def __repr__(self):
        return f"<ITRequest {self.id}: {self.work_order_no} [{self.status}]>"


class ApprovalHistory(db.Model):
    """Append-only trail; one row per applied action."""

    __tablename__ = "approval_history"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("it_requests.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approver_name_snapshot = db.Column(db.String(200), nullable=True)
    approval_level = db.Column(db.Integer, nullable=False, comment="step_sequence of the rule that fired")
    action_type = db.Column(db.String(50), nullable=False)
    from_status = db.Column(db.String(50), nullable=True)
    to_status = db.Column(db.String(50), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    request = db.relationship("ITRequest", back_populates="history")

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name_snapshot,
            "approval_level": self.approval_level,
            "action_type": self.action_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DocConfig(db.Model):
    """Running document-number counter, one row per (category, year)."""

    __tablename__ = "doc_configs"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False,
    )
    year = db.Column(db.Integer, nullable=False, comment="Year in the configured era (Buddhist era by default)")
    prefix = db.Column(db.String(30), nullable=False)
    last_running_number = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint("category_id", "year", name="uq_doc_config_category_year"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "year": self.year,
            "prefix": self.prefix,
            "last_running_number": self.last_running_number,
        }
