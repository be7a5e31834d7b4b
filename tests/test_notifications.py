"""
Notification tests: dispatch, in-app inbox API, email templates and log.

Tests cover:
  - dispatch writes one in-app row + one email log per instruction
  - failures for one recipient are skipped, the rest are delivered
  - inbox listing, unread count, mark read (own only), mark all read
  - email log is Admin-only and filterable
  - template rendering and approval / request links
"""

import pytest

from app.models import db
from app.models.notification import (
    TEMPLATE_APPROVAL_REQUEST,
    TEMPLATE_REQUEST_COMPLETED,
    TEMPLATE_REQUEST_REJECTED,
    EmailLog,
    Notification,
)
from app.services.email_service import EmailService, approve_link, render_template_email, request_link
from app.services.notification import NotificationService
from app.services.workflow_engine import NotificationInstruction


@pytest.fixture()
def inbox(make_request, users):
    """Three notifications for head_sales, one for the accountant."""
    req = make_request()
    for kind in (TEMPLATE_APPROVAL_REQUEST, TEMPLATE_REQUEST_REJECTED, TEMPLATE_REQUEST_COMPLETED):
        NotificationService.create(user_id=users["head_sales"].id, message=f"{kind} msg",
                                   template_kind=kind, request_id=req.id)
    other = NotificationService.create(user_id=users["accountant"].id, message="not yours", request_id=req.id)
    db.session.commit()
    return {"request": req, "other": other}


# ═════════════════════════════════════════════════════════════════════════
# DISPATCH
# ═════════════════════════════════════════════════════════════════════════

class TestDispatch:
    def test_delivers_in_app_and_email(self, make_request, users):
        req = make_request()
        delivered = NotificationService.dispatch(
            [NotificationInstruction(TEMPLATE_APPROVAL_REQUEST, users["head_sales"].id, req.id)],
        )
        assert delivered == 1

        notif = Notification.query.filter_by(user_id=users["head_sales"].id).one()
        assert notif.template_kind == TEMPLATE_APPROVAL_REQUEST
        assert req.work_order_no in notif.message
        assert notif.is_read is False

        log = EmailLog.query.filter_by(recipient_email=users["head_sales"].email).one()
        assert log.status == "sent"
        assert log.request_id == req.id
        assert req.work_order_no in log.subject

    def test_user_without_email_gets_in_app_only(self, make_request, make_user):
        req = make_request()
        silent = make_user("silent", "Accountant", "Accounting", email=None)
        NotificationService.dispatch([NotificationInstruction(TEMPLATE_REQUEST_REJECTED, silent.id, req.id)])
        assert Notification.query.filter_by(user_id=silent.id).count() == 1
        assert EmailLog.query.count() == 0

    def test_unknown_recipient_is_skipped(self, make_request):
        req = make_request()
        assert NotificationService.dispatch([NotificationInstruction(TEMPLATE_APPROVAL_REQUEST, 9999, req.id)]) == 0
        assert Notification.query.count() == 0

    def test_one_failure_does_not_block_others(self, make_request, users, monkeypatch):
        req = make_request()
        real_send = EmailService.send_from_template.__func__
        calls = []

        def flaky(cls, **kwargs):
            calls.append(kwargs["to_email"])
            if len(calls) == 1:
                raise RuntimeError("template engine exploded")
            return real_send(cls, **kwargs)

        monkeypatch.setattr(EmailService, "send_from_template", classmethod(flaky))
        delivered = NotificationService.dispatch([
            NotificationInstruction(TEMPLATE_APPROVAL_REQUEST, users["head_sales"].id, req.id),
            NotificationInstruction(TEMPLATE_APPROVAL_REQUEST, users["accountant"].id, req.id),
        ])
        assert delivered == 1
        assert Notification.query.filter_by(user_id=users["head_sales"].id).count() == 0
        assert Notification.query.filter_by(user_id=users["accountant"].id).count() == 1

    def test_rejection_comment_reaches_email(self, make_request, users, monkeypatch):
        req = make_request()
        captured = {}

        def capture(cls, **kwargs):
            captured.update(kwargs)
            return None

        monkeypatch.setattr(EmailService, "send", classmethod(capture))
        NotificationService.dispatch(
            [NotificationInstruction(TEMPLATE_REQUEST_REJECTED, users["requester"].id, req.id)],
            comment="Missing cost center",
        )
        assert "Missing cost center" in captured["html_body"]
        assert f"/request/{req.id}" in captured["html_body"]


# ═════════════════════════════════════════════════════════════════════════
# INBOX API
# ═════════════════════════════════════════════════════════════════════════

class TestInboxApi:
    def test_list_and_counts(self, client, inbox, users, auth_header):
        res = client.get("/api/v1/notifications?limit=2", headers=auth_header(users["head_sales"]))
        body = res.get_json()
        assert res.status_code == 200
        assert body["total"] == 3
        assert body["unread"] == 3
        assert len(body["items"]) == 2
        assert all(item["user_id"] == users["head_sales"].id for item in body["items"])

        res = client.get("/api/v1/notifications/unread-count", headers=auth_header(users["head_sales"]))
        assert res.get_json() == {"count": 3}

    def test_mark_read(self, client, inbox, users, auth_header):
        nid = Notification.query.filter_by(user_id=users["head_sales"].id).first().id
        res = client.patch(f"/api/v1/notifications/{nid}/read", headers=auth_header(users["head_sales"]))
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True
        assert res.get_json()["read_at"] is not None

        res = client.get("/api/v1/notifications?unread_only=true", headers=auth_header(users["head_sales"]))
        assert res.get_json()["total"] == 2

    def test_cannot_mark_someone_elses(self, client, inbox, users, auth_header):
        res = client.patch(f"/api/v1/notifications/{inbox['other'].id}/read",
                           headers=auth_header(users["head_sales"]))
        assert res.status_code == 404
        db.session.expire_all()
        assert db.session.get(Notification, inbox["other"].id).is_read is False

    def test_mark_all_read(self, client, inbox, users, auth_header):
        res = client.post("/api/v1/notifications/mark-all-read", headers=auth_header(users["head_sales"]))
        assert res.get_json() == {"marked": 3}
        res = client.get("/api/v1/notifications/unread-count", headers=auth_header(users["head_sales"]))
        assert res.get_json() == {"count": 0}
        # Other users untouched
        res = client.get("/api/v1/notifications/unread-count", headers=auth_header(users["accountant"]))
        assert res.get_json() == {"count": 1}

    def test_invalid_limit(self, client, inbox, users, auth_header):
        res = client.get("/api/v1/notifications?limit=0", headers=auth_header(users["head_sales"]))
        assert res.status_code == 422


class TestEmailLogApi:
    def test_admin_only(self, client, inbox, users, auth_header):
        res = client.get("/api/v1/notifications/email-logs", headers=auth_header(users["head_sales"]))
        assert res.status_code == 403

    def test_filters(self, client, make_request, users, auth_header):
        req = make_request()
        NotificationService.dispatch([
            NotificationInstruction(TEMPLATE_APPROVAL_REQUEST, users["head_sales"].id, req.id),
            NotificationInstruction(TEMPLATE_APPROVAL_REQUEST, users["head_prod"].id, req.id),
        ])
        res = client.get(f"/api/v1/notifications/email-logs?request_id={req.id}&status=sent",
                         headers=auth_header(users["admin"]))
        body = res.get_json()
        assert body["total"] == 2
        assert {item["recipient_email"] for item in body["items"]} == {
            users["head_sales"].email, users["head_prod"].email,
        }
        res = client.get("/api/v1/notifications/email-logs?status=failed", headers=auth_header(users["admin"]))
        assert res.get_json()["total"] == 0


# ═════════════════════════════════════════════════════════════════════════
# TEMPLATES & LINKS
# ═════════════════════════════════════════════════════════════════════════

class TestTemplates:
    @pytest.mark.parametrize("kind", [TEMPLATE_APPROVAL_REQUEST, TEMPLATE_REQUEST_REJECTED,
                                      TEMPLATE_REQUEST_COMPLETED])
    def test_every_kind_has_a_template(self, kind):
        template = EmailService.get_template(kind)
        assert template["subject"]
        assert "{recipient_name}" in template["content"]

    def test_unknown_template_is_not_sent(self):
        assert EmailService.send_from_template(
            to_email="x@example.com", template_name="nope", context={},
        ) is None
        assert EmailLog.query.count() == 0

    def test_missing_context_keys_render_as_placeholders(self, monkeypatch):
        captured = {}
        monkeypatch.setattr(EmailService, "send", classmethod(lambda cls, **kw: captured.update(kw)))
        EmailService.send_from_template(to_email="x@example.com", template_name=TEMPLATE_REQUEST_COMPLETED,
                                        context={"recipient_name": "Ann"})
        assert "Dear Ann" in captured["html_body"]
        assert "{work_order_no}" in captured["subject"]

    def test_html_body_is_escaped(self):
        rendered = render_template_email(TEMPLATE_APPROVAL_REQUEST, {
            "recipient_name": "Ann", "work_order_no": "IT-F07-69-001",
            "problem_detail": "<script>alert(1)</script>", "approve_link": "http://testserver/approve/t0k",
        })
        assert "&lt;script&gt;" in rendered["html"]
        assert "<script>" not in rendered["html"]
        assert "<script>alert(1)</script>" in rendered["text"]
        assert rendered["subject"].startswith("[Awaiting approval] Request #IT-F07-69-001")

    def test_links(self):
        assert request_link(7) == "http://testserver/request/7"
        assert approve_link("abc123", 7) == "http://testserver/approve/abc123"
        assert approve_link(None, 7) == "http://testserver/request/7"
