"""
Authentication tests: password hashing, JWT, login endpoints, user creation.
"""

import jwt
import pytest
from werkzeug.security import generate_password_hash

from app.models import db
from app.services.jwt_service import ALGORITHM, decode_access_token, generate_access_token
from app.services.user_service import UserServiceError, authenticate_user, create_user
from app.utils.crypto import hash_password, verify_password


# ═════════════════════════════════════════════════════════════════════════
# PASSWORDS
# ═════════════════════════════════════════════════════════════════════════

class TestCrypto:
    def test_bcrypt_roundtrip(self):
        hashed = hash_password("Secret123!")
        assert hashed.startswith("$2b$")
        assert verify_password("Secret123!", hashed)
        assert not verify_password("secret123!", hashed)

    def test_legacy_werkzeug_hash(self):
        legacy = generate_password_hash("old-pass", method="pbkdf2:sha256")
        assert verify_password("old-pass", legacy)
        assert not verify_password("new-pass", legacy)

    def test_empty_hash(self):
        assert verify_password("anything", "") is False


# ═════════════════════════════════════════════════════════════════════════
# JWT
# ═════════════════════════════════════════════════════════════════════════

class TestJwt:
    def test_payload_carries_identity(self):
        payload = decode_access_token(generate_access_token(7, "Accountant", 3, "Ann A."))
        assert payload["sub"] == "7"
        assert payload["role"] == "Accountant"
        assert payload["department_id"] == 3
        assert payload["name"] == "Ann A."

    def test_wrong_token_type(self, app):
        token = jwt.encode({"sub": "1", "type": "refresh"}, app.config["JWT_SECRET_KEY"], algorithm=ALGORITHM)
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "1", "type": "access"}, "other-secret", algorithm=ALGORITHM)
        with pytest.raises(jwt.InvalidSignatureError):
            decode_access_token(token)

    def test_expired_token_rejected_by_api(self, client, app, category, monkeypatch):
        monkeypatch.setitem(app.config, "JWT_ACCESS_EXPIRES", -10)
        token = generate_access_token(1, "User", None)
        res = client.get("/api/v1/requests", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Token expired"


# ═════════════════════════════════════════════════════════════════════════
# USERS
# ═════════════════════════════════════════════════════════════════════════

class TestCreateUser:
    def test_create(self, reference):
        user = create_user("bob", "pw", "Accountant", email="Bob@Example.com",
                           department_id=reference.department("Accounting").id)
        db.session.commit()
        assert user.role_name == "Accountant"
        assert user.full_name == "bob"
        assert user.email == "Bob@example.com"
        assert user.password_hash != "pw"

    def test_duplicate_username(self, reference):
        create_user("bob", "pw", "User")
        with pytest.raises(UserServiceError) as exc:
            create_user("bob", "pw2", "User")
        assert exc.value.status_code == 409

    def test_invalid_email(self, reference):
        with pytest.raises(UserServiceError, match="Invalid email"):
            create_user("bob", "pw", "User", email="not-an-email")

    def test_unknown_role(self, reference):
        with pytest.raises(UserServiceError) as exc:
            create_user("bob", "pw", "Astronaut")
        assert exc.value.status_code == 404

    def test_unknown_department(self, reference):
        with pytest.raises(UserServiceError) as exc:
            create_user("bob", "pw", "User", department_id=999)
        assert exc.value.status_code == 404

    def test_inactive_user_cannot_authenticate(self, make_user):
        user = make_user("gone", "User", "Sales")
        user.is_active = False
        db.session.commit()
        with pytest.raises(UserServiceError) as exc:
            authenticate_user("gone", "Secret123!")
        assert exc.value.status_code == 403


# ═════════════════════════════════════════════════════════════════════════
# LOGIN API
# ═════════════════════════════════════════════════════════════════════════

class TestLoginApi:
    def test_login_and_me(self, client, users):
        res = client.post("/api/v1/auth/login", json={"username": "head_sales", "password": "Secret123!"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["token_type"] == "Bearer"
        assert body["user"]["role_name"] == "Head of Department"
        assert body["user"]["department_name"] == "Sales"
        assert "password_hash" not in body["user"]

        res = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert res.status_code == 200
        assert res.get_json()["username"] == "head_sales"

    def test_last_login_recorded(self, client, users):
        client.post("/api/v1/auth/login", json={"username": "requester", "password": "Secret123!"})
        db.session.refresh(users["requester"])
        assert users["requester"].last_login_at is not None

    def test_wrong_password(self, client, users):
        res = client.post("/api/v1/auth/login", json={"username": "head_sales", "password": "nope"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_unknown_user(self, client, users):
        res = client.post("/api/v1/auth/login", json={"username": "ghost", "password": "nope"})
        assert res.status_code == 401

    def test_inactive_user(self, client, users):
        users["it"].is_active = False
        db.session.commit()
        res = client.post("/api/v1/auth/login", json={"username": "it_op", "password": "Secret123!"})
        assert res.status_code == 403

    @pytest.mark.parametrize("body", [{}, {"username": "head_sales"}, {"password": "x"}])
    def test_missing_fields(self, client, users, body):
        res = client.post("/api/v1/auth/login", json=body)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_me_requires_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_me_for_deactivated_user(self, client, users, auth_header):
        headers = auth_header(users["accountant"])
        users["accountant"].is_active = False
        db.session.commit()
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401

    def test_non_json_body_rejected(self, client):
        res = client.post("/api/v1/auth/login", data="username=a", content_type="text/plain")
        assert res.status_code == 415
