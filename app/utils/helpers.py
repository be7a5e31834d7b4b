"""Shared utility functions for blueprints.

parse_date:          returns None on bad input
parse_pagination:    page/limit query args, validated
parse_bool:          query-string / JSON truthiness
"""
from datetime import date, datetime

from app.core.exceptions import ValidationError

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def parse_pagination(args, default_limit=DEFAULT_PAGE_SIZE):
    """Return (page, limit) from query *args*.

    Raises:
        ValidationError: page < 1 or limit outside 1..MAX_PAGE_SIZE.
    """
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError) as exc:
        raise ValidationError("page and limit must be integers") from exc
    if page < 1:
        raise ValidationError("page must be >= 1", details={"page": page})
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", details={"limit": limit})
    return page, limit


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
