"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login   — username + password → access token
  GET  /api/v1/auth/me      — current user profile
"""

import logging

from flask import Blueprint, jsonify, request

from app.middleware.permission_required import current_actor
from app.services.jwt_service import generate_token_for_user
from app.services.user_service import UserServiceError, authenticate_user, get_user_by_id
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with username + password, return an access token.

    Body: { "username": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return api_error(E.VALIDATION_REQUIRED, "Username and password are required")

    try:
        user = authenticate_user(username, password)
    except UserServiceError as e:
        logger.info("Login failed for %r: %s", username, e.message)
        return api_error(E.UNAUTHORIZED if e.status_code == 401 else E.FORBIDDEN, e.message,
                         status=e.status_code)

    body = generate_token_for_user(user)
    body["user"] = user.to_dict()
    return jsonify(body), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    actor = current_actor()
    user = get_user_by_id(actor.user_id)
    if not user or not user.is_active:
        return api_error(E.UNAUTHORIZED, "User no longer active")
    return jsonify(user.to_dict()), 200
