"""
User Service — account creation and password authentication.
"""

from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from app.models import db
from app.models.auth import User
from app.models.reference import Department, Role
from app.utils.crypto import hash_password, verify_password


class UserServiceError(Exception):
    """Custom exception for user service errors."""
    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════
# User creation
# ═══════════════════════════════════════════════════════════════
def create_user(
    username: str,
    password: str,
    role_name: str,
    full_name: str = "",
    email: str | None = None,
    department_id: int | None = None,
) -> User:
    """Create an active user. Flushes; caller commits."""
    username = (username or "").strip()
    if not username or not password:
        raise UserServiceError("Username and password are required")
    if User.query.filter_by(username=username).first():
        raise UserServiceError(f"Username '{username}' already exists", 409)

    if email:
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise UserServiceError(f"Invalid email: {e}")

    role = Role.query.filter_by(role_name=role_name).first()
    if not role:
        raise UserServiceError(f"Role '{role_name}' not found", 404)
    if department_id is not None and db.session.get(Department, department_id) is None:
        raise UserServiceError(f"Department {department_id} not found", 404)

    user = User(
        username=username,
        email=email,
        full_name=full_name or username,
        password_hash=hash_password(password),
        role_id=role.id,
        department_id=department_id,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    return user


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════
def authenticate_user(username: str, password: str) -> User:
    """Authenticate by username + password. Commits last_login_at."""
    user = User.query.filter_by(username=(username or "").strip()).first()
    if not user or not user.password_hash:
        raise UserServiceError("Invalid username or password", 401)
    if not user.is_active:
        raise UserServiceError("Account is inactive", 403)
    if not verify_password(password, user.password_hash):
        raise UserServiceError("Invalid username or password", 401)

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    return user


def get_user_by_id(user_id: int) -> User | None:
    return db.session.get(User, user_id)
