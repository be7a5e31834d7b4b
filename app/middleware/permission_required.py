"""
Role Decorators — route protection on top of the JWT middleware.

Usage:
    @bp.route("/api/v1/workflow/transitions", methods=["POST"])
    @require_roles("Admin")
    def create_transition():
        ...

    @bp.route("/api/v1/requests", methods=["POST"])
    @require_requester
    def create_request():
        ...

The JWT middleware has already answered 401 for unauthenticated calls, so
these decorators only decide 403.
"""

import functools
import logging

from flask import g

from app.services.role_names import is_requester_role
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_actor():
    """The Actor set by the JWT middleware for this request."""
    return getattr(g, "actor", None)


def require_roles(*role_names: str):
    """
    Decorator: require the JWT user's role to be one of *role_names*.
    """
    allowed = set(role_names)

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            actor = current_actor()
            if actor is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")
            if actor.role_name not in allowed:
                logger.warning(
                    "User %s denied: role %r not in %s on %s",
                    actor.user_id, actor.role_name, sorted(allowed), f.__name__,
                )
                return api_error(E.FORBIDDEN, "Permission denied", details={"required_any": sorted(allowed)})
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_requester(f):
    """Decorator: only requester roles (Requester, User, Request) may submit."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        actor = current_actor()
        if actor is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        if not is_requester_role(actor.role_name):
            logger.warning("User %s denied: role %r may not submit requests", actor.user_id, actor.role_name)
            return api_error(E.FORBIDDEN, "Only requester roles may submit requests")
        return f(*args, **kwargs)
    return decorated
