"""
F07 request lifecycle service — everything around the workflow engine.

    create_request        requester submits a form; numbered, PENDING, step 1
    list_requests         filtered, paginated, department-scoped list
    get_request_detail    request + history + actions the actor may take now
    get_request_by_token  email-link lookup (only while actionable)
    perform_action        validated single action + notification dispatch
    bulk_action           perform_action over many ids, per-id report

Transitions themselves live in ``workflow_engine``; this module never writes
a request's status.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone

from sqlalchemy import or_

from app.core.exceptions import NotFoundError, ValidationError, WorkflowError
from app.models import db
from app.models.audit import write_audit
from app.models.reference import (
    ACTION_APPROVE,
    ACTION_REJECT,
    KNOWN_ACTIONS,
    TERMINAL_STATUS_CODES,
    STATUS_PENDING,
    Category,
    CorrectionType,
    Department,
)
from app.models.request import ITRequest
from app.services.department_scope import apply_department_filter, get_department_filter
from app.services.document_numbering import generate_request_number
from app.services.notification import NotificationService
from app.services.rule_sources import initial_status
from app.services.workflow_engine import (
    Actor,
    build_notifications,
    execute_action,
    get_available_actions,
    new_approval_token,
)
from app.utils.helpers import parse_bool, parse_date

logger = logging.getLogger(__name__)

BULK_ACTIONS = (ACTION_APPROVE, ACTION_REJECT)
MAX_BULK_IDS = 100


# ── Validation ───────────────────────────────────────────────────────────────


def normalize_action(action_name, comment=None, allowed=KNOWN_ACTIONS) -> tuple[str, str | None]:
    """Upper-cased action and stripped comment; REJECT needs a comment."""
    action = (action_name or "").strip().upper()
    if action not in allowed:
        raise ValidationError(
            f"Invalid action {action_name!r}. Must be one of: {', '.join(allowed)}",
            details={"action": action_name},
        )
    comment = (comment or "").strip() or None
    if action == ACTION_REJECT and not comment:
        raise ValidationError("A comment is required when rejecting", details={"comment": "required"})
    return action, comment


def _require_int(data: dict, field: str) -> int:
    value = data.get(field)
    if value in (None, ""):
        raise ValidationError(f"{field} is required", details={field: "required"})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: value}) from exc


# ── Create ───────────────────────────────────────────────────────────────────


def create_request(data: dict, actor: Actor) -> tuple[ITRequest, list]:
    """Submit a new request as *actor*. Commits.

    Returns:
        (request, notification instructions for the first approvers)
    """
    category_id = _require_int(data, "category_id")
    category = db.session.get(Category, category_id)
    if category is None or not category.is_active:
        raise NotFoundError(resource="Category", resource_id=category_id)

    correction_type_id = data.get("correction_type_id")
    if correction_type_id not in (None, ""):
        correction_type_id = _require_int(data, "correction_type_id")
        ct = db.session.get(CorrectionType, correction_type_id)
        if ct is None or ct.category_id != category_id:
            raise ValidationError(
                "correction_type_id does not belong to the category",
                details={"correction_type_id": correction_type_id},
            )
    else:
        correction_type_id = None

    if data.get("department_id") in (None, ""):
        department_id = actor.department_id
        if not department_id:
            raise ValidationError("department_id is required", details={"department_id": "required"})
    else:
        department_id = _require_int(data, "department_id")
    if db.session.get(Department, department_id) is None:
        raise NotFoundError(resource="Department", resource_id=department_id)

    problem_detail = (data.get("problem_detail") or "").strip()
    if not problem_detail:
        raise ValidationError("problem_detail is required", details={"problem_detail": "required"})

    start = initial_status()
    if start is None:
        raise ValidationError("No initial status is configured")

    try:
        req = ITRequest(
            work_order_no=generate_request_number(category_id),
            requester_name=(data.get("requester_name") or actor.full_name or "").strip(),
            phone=(data.get("phone") or "").strip(),
            problem_detail=problem_detail,
            system_type=(data.get("system_type") or "ERP Softpro").strip(),
            is_money_related=parse_bool(data.get("is_money_related")),
            category_id=category_id,
            correction_type_id=correction_type_id,
            department_id=department_id,
            requester_id=actor.user_id,
            status=start.code,
            current_status_id=start.id,
            current_approval_step=1,
            approval_token=new_approval_token(),
        )
        db.session.add(req)
        db.session.flush()
        write_audit(
            entity_type="request",
            entity_id=req.id,
            action="request.create",
            actor=actor.full_name or str(actor.user_id),
            actor_user_id=actor.user_id,
            diff={"work_order_no": req.work_order_no, "to_status": start.code, "category_id": category_id},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    instructions = build_notifications(req, action_name="")
    if not instructions:
        logger.warning("Request %s created with nobody to notify (category=%s)", req.id, category_id)
    logger.info("Request created: id=%s no=%s by user=%s", req.id, req.work_order_no, actor.user_id)
    return req, instructions


# ── Read ─────────────────────────────────────────────────────────────────────


def list_requests(actor: Actor, filters: dict, page: int = 1, limit: int = 10) -> dict:
    """Department-scoped, filtered, newest-first page of requests."""
    q = apply_department_filter(ITRequest.query, actor)

    if filters.get("category_id"):
        q = q.filter(ITRequest.category_id == _require_int(filters, "category_id"))
    status = (filters.get("status") or "").strip().upper()
    if status == STATUS_PENDING:
        q = q.filter(ITRequest.status.notin_(sorted(TERMINAL_STATUS_CODES)))
    elif status:
        q = q.filter(ITRequest.status == status)

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(
            ITRequest.work_order_no.ilike(like),
            ITRequest.requester_name.ilike(like),
            ITRequest.problem_detail.ilike(like),
        ))

    start = parse_date(filters.get("start_date"))
    if start:
        q = q.filter(ITRequest.created_at >= datetime.combine(start, time.min, tzinfo=timezone.utc))
    end = parse_date(filters.get("end_date"))
    if end:
        q = q.filter(ITRequest.created_at <= datetime.combine(end, time.max, tzinfo=timezone.utc))

    total = q.count()
    items = (
        q.order_by(ITRequest.created_at.desc(), ITRequest.id.desc())
        .offset((page - 1) * limit).limit(limit).all()
    )
    return {
        "items": [r.to_dict() for r in items],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit,
    }


def _visible_to(req: ITRequest, actor: Actor) -> bool:
    scope = get_department_filter(actor)
    if all(getattr(req, column) == value for column, value in scope.items()):
        return True
    return bool(get_available_actions(req, actor))


def get_request_detail(request_id: int, actor: Actor) -> dict:
    req = db.session.get(ITRequest, request_id)
    if req is None or not _visible_to(req, actor):
        raise NotFoundError(resource="ITRequest", resource_id=request_id)
    data = req.to_dict(include_history=True)
    data["available_actions"] = get_available_actions(req, actor)
    return data


def get_request_by_token(token: str) -> ITRequest:
    """Request behind an email approval link, while it is still actionable."""
    req = ITRequest.query.filter_by(approval_token=token).first() if token else None
    if req is None or req.status in TERMINAL_STATUS_CODES:
        raise NotFoundError(resource="ApprovalLink")
    return req


# ── Actions ──────────────────────────────────────────────────────────────────


def perform_action(request_id: int, action_name, actor: Actor, comment=None):
    """Validate input, run the executor, then dispatch notifications.

    Input errors win over request state: an unknown action or a comment-less
    REJECT is a ValidationError even when the request is already closed.
    """
    action, comment = normalize_action(action_name, comment)
    result = execute_action(request_id, action, actor, comment)
    NotificationService.dispatch(result.notifications, comment=comment)
    return result


def bulk_action(request_ids, action_name, actor: Actor, comment=None) -> dict:
    """Run *action_name* on each id independently; one failure never stops the rest."""
    action, comment = normalize_action(action_name, comment, allowed=BULK_ACTIONS)
    if not isinstance(request_ids, list) or not request_ids:
        raise ValidationError("request_ids must be a non-empty list", details={"request_ids": request_ids})
    if len(request_ids) > MAX_BULK_IDS:
        raise ValidationError(f"At most {MAX_BULK_IDS} requests per bulk action")

    succeeded, failed = [], []
    for raw_id in dict.fromkeys(request_ids):
        try:
            request_id = int(raw_id)
        except (TypeError, ValueError):
            failed.append({"request_id": raw_id, "kind": "ValidationError", "error": "invalid id"})
            continue
        try:
            result = perform_action(request_id, action, actor, comment)
        except WorkflowError as exc:
            failed.append({"request_id": request_id, "kind": exc.kind, "error": str(exc)})
        except NotFoundError as exc:
            failed.append({"request_id": request_id, "kind": "NotFound", "error": str(exc)})
        else:
            succeeded.append(result.to_dict())

    logger.info(
        "Bulk %s by user %s: %d ok, %d failed", action, actor.user_id, len(succeeded), len(failed),
    )
    return {"action": action, "succeeded": succeeded, "failed": failed}
