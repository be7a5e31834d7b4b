"""
Department scope tests — list/report visibility.

Tests cover:
  - Admin: unfiltered
  - requester roles: own requests only
  - approvers whose role has a department-filtered rule: own department
  - other approvers: unfiltered
"""

from app.models.request import ITRequest
from app.services.department_scope import apply_department_filter, get_department_filter


class TestGetDepartmentFilter:
    def test_admin(self, category, users, actor_for):
        assert get_department_filter(actor_for(users["admin"])) == {}

    def test_requester(self, category, users, actor_for):
        requester = users["requester"]
        assert get_department_filter(actor_for(requester)) == {"requester_id": requester.id}

    def test_department_filtered_role(self, category, users, actor_for):
        head = users["head_sales"]
        assert get_department_filter(actor_for(head)) == {"department_id": head.department_id}

    def test_unfiltered_approver(self, category, users, actor_for):
        assert get_department_filter(actor_for(users["accountant"])) == {}

    def test_alias_inherits_filter(self, category, make_user, actor_for):
        manager = make_user("mgr", "Manager", "Production")
        assert get_department_filter(actor_for(manager)) == {"department_id": manager.department_id}


class TestApplyDepartmentFilter:
    def test_visibility(self, make_request, make_user, users, actor_for):
        sales_req = make_request()
        prod_req = make_request(requester=make_user("prod_user", "User", "Production"))

        def visible(user):
            return {r.id for r in apply_department_filter(ITRequest.query, actor_for(user)).all()}

        assert visible(users["admin"]) == {sales_req.id, prod_req.id}
        assert visible(users["accountant"]) == {sales_req.id, prod_req.id}
        assert visible(users["head_sales"]) == {sales_req.id}
        assert visible(users["head_prod"]) == {prod_req.id}
        assert visible(users["requester"]) == {sales_req.id}
