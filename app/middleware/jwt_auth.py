"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.actor.

Every /api/v1/* path except those in JWT_SKIP_PREFIXES requires a valid
Bearer token; anything else is answered 401 here, before the view runs.

On success:
    g.actor        Actor(user_id, role_name, department_id, full_name)
    g.jwt_user_id  int, kept for logging
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.services.jwt_service import decode_access_token
from app.services.workflow_engine import Actor
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def actor_from_payload(payload: dict) -> Actor:
    dept = payload.get("department_id")
    return Actor(
        user_id=int(payload["sub"]),
        role_name=payload.get("role"),
        department_id=int(dept) if dept is not None else None,
        full_name=payload.get("name") or "",
    )


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor = None
        g.jwt_user_id = None

        path = request.path
        if not path.startswith("/api/v1/") or request.method == "OPTIONS":
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.UNAUTHORIZED, "Authentication required")

        token = auth_header[7:]  # Strip "Bearer "
        try:
            payload = decode_access_token(token)
            g.actor = actor_from_payload(payload)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHORIZED, "Token expired")
        except (pyjwt.InvalidTokenError, KeyError, ValueError) as exc:
            logger.info("Rejected bearer token on %s: %s", path, exc)
            return api_error(E.UNAUTHORIZED, "Invalid token")

        g.jwt_user_id = g.actor.user_id
        return None
