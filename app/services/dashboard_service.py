"""
Request Dashboard Statistics Service

Aggregates request metrics for the dashboard, scoped by the same department
filter as the request list:
  - Counts by status
  - Counts by category
  - Daily submissions over the last N days
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from app.models import db
from app.models.reference import TERMINAL_STATUS_CODES, Category, Status
from app.models.request import ITRequest
from app.services.department_scope import get_department_filter

logger = logging.getLogger(__name__)


def _scoped(query, actor):
    for column, value in get_department_filter(actor).items():
        query = query.filter(getattr(ITRequest, column) == value)
    return query


def get_status_counts(actor):
    rows = (
        _scoped(
            db.session.query(
                Status.code, Status.display_name, Status.color_code, func.count(ITRequest.id),
            ).join(ITRequest, ITRequest.current_status_id == Status.id),
            actor,
        )
        .group_by(Status.id, Status.code, Status.display_name, Status.color_code, Status.display_order)
        .order_by(Status.display_order, Status.id)
        .all()
    )
    return [
        {"code": code, "display_name": name, "color_code": color, "count": count}
        for code, name, color, count in rows
    ]


def get_category_counts(actor):
    rows = (
        _scoped(
            db.session.query(Category.id, Category.name, func.count(ITRequest.id))
            .join(ITRequest, ITRequest.category_id == Category.id),
            actor,
        )
        .group_by(Category.id, Category.name)
        .order_by(Category.name)
        .all()
    )
    return [{"category_id": cid, "name": name, "count": count} for cid, name, count in rows]


def get_request_trend(actor, days=30):
    """Daily request submission counts for the past N days."""
    since = datetime.now(timezone.utc) - timedelta(days=days)
    rows = (
        _scoped(
            db.session.query(
                func.date(ITRequest.created_at).label("day"),
                func.count(ITRequest.id).label("count"),
            ).filter(ITRequest.created_at >= since),
            actor,
        )
        .group_by(func.date(ITRequest.created_at))
        .order_by(func.date(ITRequest.created_at))
        .all()
    )
    return [{"date": str(r.day), "count": r.count} for r in rows]


def get_request_statistics(actor, days=30):
    by_status = get_status_counts(actor)
    total = sum(row["count"] for row in by_status)
    open_count = sum(row["count"] for row in by_status if row["code"] not in TERMINAL_STATUS_CODES)
    return {
        "total": total,
        "open": open_count,
        "closed": total - open_count,
        "by_status": by_status,
        "by_category": get_category_counts(actor),
        "trend": get_request_trend(actor, days=days),
    }
