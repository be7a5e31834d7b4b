"""
Request API tests (/api/v1/requests, /api/v1/approve, /api/v1/pending-tasks).

Tests cover:
  - authentication and requester-only submission
  - creation: numbering, initial state, first-approver notification
  - list filters, pagination bounds and department scoping
  - detail visibility and available actions
  - single action endpoint: error kinds and REJECT comment rule
  - bulk action per-id report
  - email approval links expire after use
  - notification failures never undo a transition
"""

import pytest

from app.models import db
from app.models.notification import EmailLog, Notification
from app.models.request import ITRequest
from app.services.notification import NotificationService


@pytest.fixture()
def submit(client, category, users, auth_header):
    """POST a request through the API as *user* (default: the Sales requester)."""

    def _submit(user=None, **data):
        payload = {"category_id": category.id, "problem_detail": "Wrong VAT code on PO 5512", **data}
        res = client.post("/api/v1/requests", json=payload, headers=auth_header(user or users["requester"]))
        assert res.status_code == 201, res.get_json()
        return res.get_json()

    return _submit


def _act(client, auth_header, user, rid, action, comment=None):
    body = {"action": action}
    if comment is not None:
        body["comment"] = comment
    return client.post(f"/api/v1/requests/{rid}/action", json=body, headers=auth_header(user))


# ═════════════════════════════════════════════════════════════════════════
# AUTH GUARD
# ═════════════════════════════════════════════════════════════════════════

class TestAuthGuard:
    def test_missing_token(self, client, category):
        res = client.get("/api/v1/requests")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token(self, client, category):
        res = client.get("/api/v1/requests", headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401

    def test_health_is_public(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_health_skips_redis_without_url(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "REDIS_URL", None)
        checks = client.get("/api/v1/health/live").get_json()["checks"]
        assert checks["redis"]["status"] == "skipped"

    def test_unreachable_redis_is_reported_not_fatal(self, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "REDIS_URL", "redis://127.0.0.1:1/0")
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        # "skipped" when the optional redis extra is not installed
        assert res.get_json()["checks"]["redis"]["status"] in ("error", "skipped")


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════

class TestCreate:
    def test_create_request(self, submit, users):
        data = submit(requester_name="Somchai", phone="1234")
        assert data["status"] == "PENDING"
        assert data["current_status"]["code"] == "PENDING"
        assert data["current_approval_step"] == 1
        assert data["work_order_no"].startswith("IT-F07-")
        assert data["work_order_no"].endswith("-001")
        assert data["department_id"] == users["requester"].department_id
        assert data["requester_id"] == users["requester"].id
        assert "approval_token" not in data

        req = db.session.get(ITRequest, data["id"])
        assert req.approval_token

    def test_first_approver_notified(self, submit, users):
        data = submit()
        notes = Notification.query.filter_by(request_id=data["id"]).all()
        assert [(n.user_id, n.template_kind) for n in notes] == [(users["head_sales"].id, "approval_request")]
        log = EmailLog.query.filter_by(request_id=data["id"]).one()
        assert log.recipient_email == users["head_sales"].email
        assert log.template_name == "approval_request"
        assert log.status == "sent"

    def test_approvers_cannot_submit(self, client, category, users, auth_header):
        res = client.post(
            "/api/v1/requests",
            json={"category_id": category.id, "problem_detail": "x"},
            headers=auth_header(users["accountant"]),
        )
        assert res.status_code == 403

    def test_validation(self, client, category, users, auth_header):
        headers = auth_header(users["requester"])
        res = client.post("/api/v1/requests", json={"problem_detail": "x"}, headers=headers)
        assert res.status_code == 422
        res = client.post("/api/v1/requests", json={"category_id": category.id}, headers=headers)
        assert res.status_code == 422
        res = client.post("/api/v1/requests", json={"category_id": 999, "problem_detail": "x"}, headers=headers)
        assert res.status_code == 404
        res = client.post("/api/v1/requests", json={"category_id": category.id, "problem_detail": "x",
                                                "department_id": "sales"}, headers=headers)
        assert res.status_code == 422

    def test_correction_type_must_belong_to_category(self, submit, client, category, reference, users,
                                                    auth_header):
        from app.models.reference import Category, CorrectionType
        other = Category(name="Other", requires_final_closing=False)
        db.session.add(other)
        db.session.flush()
        ct = CorrectionType(category_id=other.id, name="Price")
        db.session.add(ct)
        db.session.commit()
        res = client.post(
            "/api/v1/requests",
            json={"category_id": category.id, "correction_type_id": ct.id, "problem_detail": "x"},
            headers=auth_header(users["requester"]),
        )
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# LIST / DETAIL
# ═════════════════════════════════════════════════════════════════════════

class TestListAndDetail:
    def test_requester_sees_own_requests(self, client, submit, make_user, users, auth_header):
        mine = submit()
        submit(user=make_user("other_req", "User", "Production"))
        res = client.get("/api/v1/requests", headers=auth_header(users["requester"]))
        data = res.get_json()
        assert res.status_code == 200
        assert [r["id"] for r in data["items"]] == [mine["id"]]
        assert data["total"] == 1

    def test_admin_sees_everything_paginated(self, client, submit, users, auth_header):
        for i in range(3):
            submit(problem_detail=f"request {i}")
        res = client.get("/api/v1/requests?page=2&limit=2", headers=auth_header(users["admin"]))
        data = res.get_json()
        assert data["total"] == 3
        assert data["pages"] == 2
        assert len(data["items"]) == 1

    @pytest.mark.parametrize("query", ["page=0", "limit=0", "limit=101", "page=abc"])
    def test_pagination_bounds(self, client, category, users, auth_header, query):
        res = client.get(f"/api/v1/requests?{query}", headers=auth_header(users["admin"]))
        assert res.status_code == 422

    def test_non_numeric_category_filter(self, client, category, users, auth_header):
        res = client.get("/api/v1/requests?category_id=abc", headers=auth_header(users["admin"]))
        assert res.status_code == 422
        assert res.get_json()["details"] == {"category_id": "abc"}

    def test_status_and_search_filters(self, client, submit, users, auth_header):
        first = submit(problem_detail="Printer driver")
        second = submit(problem_detail="Posting period")
        _act(client, auth_header, users["head_sales"], second["id"], "REJECT", "duplicate")
        headers = auth_header(users["admin"])

        pending = client.get("/api/v1/requests?status=PENDING", headers=headers).get_json()
        assert [r["id"] for r in pending["items"]] == [first["id"]]
        rejected = client.get("/api/v1/requests?status=rejected", headers=headers).get_json()
        assert [r["id"] for r in rejected["items"]] == [second["id"]]
        found = client.get("/api/v1/requests?search=printer", headers=headers).get_json()
        assert [r["id"] for r in found["items"]] == [first["id"]]

    def test_detail_with_history_and_actions(self, client, submit, users, auth_header):
        data = submit()
        _act(client, auth_header, users["head_sales"], data["id"], "APPROVE", "ok")
        res = client.get(f"/api/v1/requests/{data['id']}", headers=auth_header(users["accountant"]))
        body = res.get_json()
        assert res.status_code == 200
        assert len(body["history"]) == 1
        assert body["history"][0]["action_type"] == "APPROVE"
        assert {a["action"] for a in body["available_actions"]} == {"APPROVE", "REJECT"}

    def test_detail_hidden_from_other_requester(self, client, submit, make_user, auth_header):
        data = submit()
        stranger = make_user("stranger", "User", "Sales")
        res = client.get(f"/api/v1/requests/{data['id']}", headers=auth_header(stranger))
        assert res.status_code == 404

    def test_detail_hidden_from_other_department_head(self, client, submit, users, auth_header):
        data = submit()
        res = client.get(f"/api/v1/requests/{data['id']}", headers=auth_header(users["head_prod"]))
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# ACTIONS
# ═════════════════════════════════════════════════════════════════════════

class TestActions:
    def test_approve(self, client, submit, users, auth_header):
        data = submit()
        res = _act(client, auth_header, users["head_sales"], data["id"], "approve")
        body = res.get_json()
        assert res.status_code == 200
        assert body["new_status"] == "WAITING_ACCOUNT_1"
        assert body["current_approval_step"] == 2
        assert "approval_token" not in body

    def test_error_kinds(self, client, submit, users, auth_header):
        data = submit()
        res = _act(client, auth_header, users["accountant"], data["id"], "APPROVE")
        assert res.status_code == 403
        assert res.get_json()["code"] == "ActionNotAllowed"

        res = _act(client, auth_header, users["head_prod"], data["id"], "APPROVE")
        assert res.status_code == 403
        assert res.get_json()["code"] == "DepartmentMismatch"

        _act(client, auth_header, users["head_sales"], data["id"], "REJECT", "no budget")
        res = _act(client, auth_header, users["head_sales"], data["id"], "APPROVE")
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "RequestClosed"
        assert body["details"]["request_id"] == data["id"]

    def test_reject_requires_comment(self, client, submit, users, auth_header):
        data = submit()
        res = _act(client, auth_header, users["head_sales"], data["id"], "REJECT", "   ")
        assert res.status_code == 422
        assert db.session.get(ITRequest, data["id"]).status == "PENDING"

    def test_unknown_action(self, client, submit, users, auth_header):
        data = submit()
        res = _act(client, auth_header, users["head_sales"], data["id"], "ESCALATE")
        assert res.status_code == 422

    def test_input_errors_checked_before_closed_state(self, client, submit, users, auth_header):
        data = submit()
        _act(client, auth_header, users["head_sales"], data["id"], "REJECT", "no budget")
        res = _act(client, auth_header, users["head_sales"], data["id"], "REJECT")
        assert res.status_code == 422
        res = _act(client, auth_header, users["head_sales"], data["id"], "REJECT", "again")
        assert res.get_json()["code"] == "RequestClosed"

    def test_unknown_request(self, client, category, users, auth_header):
        res = _act(client, auth_header, users["head_sales"], 4040, "APPROVE")
        assert res.status_code == 404

    def test_notification_failure_keeps_transition(self, client, submit, users, auth_header, monkeypatch):
        data = submit()

        def broken_deliver(instruction, comment=None):
            raise RuntimeError("smtp down")

        monkeypatch.setattr(NotificationService, "deliver", staticmethod(broken_deliver))
        res = _act(client, auth_header, users["head_sales"], data["id"], "APPROVE")
        assert res.status_code == 200
        db.session.expire_all()
        assert db.session.get(ITRequest, data["id"]).status == "WAITING_ACCOUNT_1"

    def test_pending_tasks_endpoint(self, client, submit, users, auth_header):
        data = submit()
        res = client.get("/api/v1/pending-tasks", headers=auth_header(users["head_sales"]))
        body = res.get_json()
        assert [r["id"] for r in body["items"]] == [data["id"]]
        assert body["items"][0]["available_actions"]
        res = client.get("/api/v1/pending-tasks/count", headers=auth_header(users["accountant"]))
        assert res.get_json() == {"count": 0}


# ═════════════════════════════════════════════════════════════════════════
# BULK
# ═════════════════════════════════════════════════════════════════════════

class TestBulkAction:
    def test_mixed_results(self, client, submit, make_user, users, auth_header):
        ok = submit()
        other_dept = submit(user=make_user("prod_user", "User", "Production"))
        res = client.post(
            "/api/v1/requests/bulk-action",
            json={"request_ids": [ok["id"], other_dept["id"], 9999], "action": "APPROVE"},
            headers=auth_header(users["head_sales"]),
        )
        body = res.get_json()
        assert res.status_code == 200
        assert [r["request_id"] for r in body["succeeded"]] == [ok["id"]]
        failed = {f["request_id"]: f["kind"] for f in body["failed"]}
        assert failed == {other_dept["id"]: "DepartmentMismatch", 9999: "NotFound"}

    def test_bulk_reject_needs_comment(self, client, submit, users, auth_header):
        data = submit()
        res = client.post(
            "/api/v1/requests/bulk-action",
            json={"request_ids": [data["id"]], "action": "REJECT"},
            headers=auth_header(users["head_sales"]),
        )
        assert res.status_code == 422

    def test_bulk_only_approve_or_reject(self, client, submit, users, auth_header):
        data = submit()
        res = client.post(
            "/api/v1/requests/bulk-action",
            json={"request_ids": [data["id"]], "action": "IT_PROCESS"},
            headers=auth_header(users["it"]),
        )
        assert res.status_code == 422

    def test_bulk_requires_ids(self, client, category, users, auth_header):
        res = client.post(
            "/api/v1/requests/bulk-action",
            json={"request_ids": [], "action": "APPROVE"},
            headers=auth_header(users["head_sales"]),
        )
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# EMAIL APPROVAL LINKS
# ═════════════════════════════════════════════════════════════════════════

class TestApprovalLinks:
    def test_link_works_once(self, client, submit, users, auth_header):
        data = submit()
        token = db.session.get(ITRequest, data["id"]).approval_token
        headers = auth_header(users["head_sales"])

        res = client.get(f"/api/v1/approve/{token}", headers=headers)
        assert res.status_code == 200
        assert {a["action"] for a in res.get_json()["available_actions"]} == {"APPROVE", "REJECT"}

        res = client.post(f"/api/v1/approve/{token}", json={"action": "APPROVE"}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["new_status"] == "WAITING_ACCOUNT_1"

        # A fresh token was issued; the old link is dead
        assert client.get(f"/api/v1/approve/{token}", headers=headers).status_code == 404

    def test_link_expires_on_terminal(self, client, submit, users, auth_header):
        data = submit()
        token = db.session.get(ITRequest, data["id"]).approval_token
        _act(client, auth_header, users["head_sales"], data["id"], "REJECT", "no")
        res = client.get(f"/api/v1/approve/{token}", headers=auth_header(users["head_sales"]))
        assert res.status_code == 404
        db.session.expire_all()
        assert db.session.get(ITRequest, data["id"]).approval_token is None

    def test_unknown_token(self, client, category, users, auth_header):
        res = client.get("/api/v1/approve/deadbeef", headers=auth_header(users["head_sales"]))
        assert res.status_code == 404
