"""
Dashboard statistics and master-data list tests.
"""

from app.models import db
from app.models.reference import Category, CorrectionType


class TestDashboard:
    def test_statistics_are_scoped(self, client, make_request, make_user, users, auth_header):
        make_request()
        make_request()
        make_request(requester=make_user("prod_user", "User", "Production"))

        stats = client.get("/api/v1/dashboard/statistics", headers=auth_header(users["admin"])).get_json()
        assert stats["total"] == 3
        assert stats["open"] == 3
        assert stats["closed"] == 0
        assert stats["by_status"][0]["code"] == "PENDING"
        assert stats["by_category"][0]["count"] == 3
        assert sum(day["count"] for day in stats["trend"]) == 3

        stats = client.get("/api/v1/dashboard/statistics", headers=auth_header(users["head_sales"])).get_json()
        assert stats["total"] == 2

        stats = client.get("/api/v1/dashboard/statistics", headers=auth_header(users["requester"])).get_json()
        assert stats["total"] == 2

    def test_days_bounds(self, client, users, auth_header):
        for days in (0, 366):
            res = client.get(f"/api/v1/dashboard/statistics?days={days}", headers=auth_header(users["admin"]))
            assert res.status_code == 422

    def test_empty(self, client, users, auth_header):
        stats = client.get("/api/v1/dashboard/statistics?days=7", headers=auth_header(users["accountant"])).get_json()
        assert stats["total"] == 0
        assert stats["by_status"] == []


class TestMasterData:
    def test_statuses_in_display_order(self, client, users, auth_header):
        rows = client.get("/api/v1/master/statuses", headers=auth_header(users["requester"])).get_json()
        assert rows[0]["code"] == "PENDING"
        assert rows[0]["is_initial_state"] is True
        closed = next(r for r in rows if r["code"] == "CLOSED")
        assert closed["is_terminal"] is True

    def test_inactive_categories_hidden(self, client, category, users, auth_header):
        db.session.add(Category(name="Retired", is_active=False))
        db.session.commit()
        headers = auth_header(users["requester"])
        names = [c["name"] for c in client.get("/api/v1/master/categories", headers=headers).get_json()]
        assert names == ["ERP data correction"]
        names = [c["name"] for c in
                 client.get("/api/v1/master/categories?include_inactive=1", headers=headers).get_json()]
        assert "Retired" in names

    def test_correction_types_by_category(self, client, category, bare_category, users, auth_header):
        db.session.add_all([
            CorrectionType(category_id=category.id, name="Posting date", display_order=2),
            CorrectionType(category_id=category.id, name="Cost center", display_order=1),
            CorrectionType(category_id=bare_category.id, name="Other"),
        ])
        db.session.commit()
        rows = client.get(f"/api/v1/master/correction-types?category_id={category.id}",
                          headers=auth_header(users["requester"])).get_json()
        assert [r["name"] for r in rows] == ["Cost center", "Posting date"]

    def test_reference_lists(self, client, users, auth_header):
        headers = auth_header(users["requester"])
        actions = [a["action_name"] for a in client.get("/api/v1/master/actions", headers=headers).get_json()]
        assert actions == ["APPROVE", "REJECT", "IT_PROCESS", "CONFIRM_COMPLETE"]
        roles = {r["role_name"] for r in client.get("/api/v1/master/roles", headers=headers).get_json()}
        assert {"Admin", "Head of Department", "IT Reviewer"} <= roles
        departments = client.get("/api/v1/master/departments", headers=headers).get_json()
        assert len(departments) == 5

    def test_requires_auth(self, client):
        assert client.get("/api/v1/master/statuses").status_code == 401
