"""
Shared pytest fixtures for the F07 change-request test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - reference: Seeded statuses, roles, actions and departments
    - category: "ERP data correction" with the standard six-step chain
    - users: one account per role used by the standard chain
    - make_user / make_request / auth_header / actor_for: factories
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.reference import Category, Department, Role, Status, WorkflowAction
from app.services import request_service
from app.services.jwt_service import generate_access_token
from app.services.seed_service import seed_reference_data, seed_standard_workflow
from app.services.user_service import create_user
from app.services.workflow_engine import Actor


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Reference data ───────────────────────────────────────────────────────


class Ref:
    """Lookup helpers over the seeded reference rows."""

    @staticmethod
    def status(code):
        return Status.query.filter_by(code=code).one()

    @staticmethod
    def role(name):
        return Role.query.filter_by(role_name=name).one()

    @staticmethod
    def action(name):
        return WorkflowAction.query.filter_by(action_name=name).one()

    @staticmethod
    def department(name):
        return Department.query.filter_by(name=name).one()


@pytest.fixture()
def reference():
    seed_reference_data()
    _db.session.commit()
    return Ref


@pytest.fixture()
def category(reference):
    """Category with the standard chain ending in an IT Reviewer close."""
    cat = Category(name="ERP data correction", requires_final_closing=True)
    _db.session.add(cat)
    _db.session.flush()
    seed_standard_workflow(cat)
    _db.session.commit()
    return cat


@pytest.fixture()
def bare_category(reference):
    """Category without any workflow rows."""
    cat = Category(name="Unconfigured", requires_final_closing=False)
    _db.session.add(cat)
    _db.session.commit()
    return cat


# ── Users ────────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user(reference):
    """Factory: make_user("alice", "User", "Sales", email=...)."""

    def _make(username, role_name, department_name=None, **kwargs):
        dept_id = reference.department(department_name).id if department_name else None
        if role_name not in {r.role_name for r in Role.query.all()}:
            _db.session.add(Role(role_name=role_name))
            _db.session.flush()
        user = create_user(
            username,
            kwargs.pop("password", "Secret123!"),
            role_name,
            full_name=kwargs.pop("full_name", username.title()),
            email=kwargs.pop("email", f"{username}@example.com"),
            department_id=dept_id,
        )
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def users(make_user):
    """One account per role of the standard chain, plus an admin."""
    return {
        "requester": make_user("requester", "User", "Sales"),
        "head_sales": make_user("head_sales", "Head of Department", "Sales"),
        "head_prod": make_user("head_prod", "Head of Department", "Production"),
        "accountant": make_user("accountant", "Accountant", "Accounting"),
        "final": make_user("final", "Final Approver", "Accounting"),
        "it": make_user("it_op", "IT", "IT"),
        "reviewer": make_user("reviewer", "IT Reviewer", "IT"),
        "admin": make_user("admin", "Admin", "IT"),
    }


@pytest.fixture()
def actor_for():
    return Actor.from_user


@pytest.fixture()
def auth_header():
    """Factory: bearer header for a user."""

    def _header(user):
        token = generate_access_token(user.id, user.role_name, user.department_id, user.full_name)
        return {"Authorization": f"Bearer {token}"}

    return _header


@pytest.fixture()
def make_request(category, users):
    """Factory: submit a request as *requester* (default: the Sales requester)."""

    def _make(requester=None, target_category=None, **data):
        requester = requester or users["requester"]
        payload = {
            "category_id": (target_category or category).id,
            "problem_detail": data.pop("problem_detail", "Fix posting period on invoice 4711"),
            **data,
        }
        req, _ = request_service.create_request(payload, Actor.from_user(requester))
        return req

    return _make
