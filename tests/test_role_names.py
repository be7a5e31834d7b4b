"""
Role-name canonicalisation tests.

Tests cover:
  - alias lookup in both directions
  - unknown names match themselves
  - approver / requester classification
"""

from app.services.role_names import (
    canonical_role_names_for_approver,
    is_approver_role,
    is_requester_role,
    role_matches,
    user_role_names_for_workflow_role,
    workflow_role_names_for_user,
)


class TestRoleMatches:
    def test_exact_name(self):
        assert role_matches("Accountant", "Accountant")

    def test_alias_matches_canonical(self):
        assert role_matches("Accountant", "acc")
        assert role_matches("Head of Department", "Manager")
        assert role_matches("IT", "It operator")

    def test_thai_workflow_name(self):
        assert role_matches("หน.แผนก", "Head of Department")

    def test_different_role_does_not_match(self):
        assert not role_matches("Accountant", "IT")
        assert not role_matches("IT", "IT Reviewer")

    def test_missing_user_role(self):
        assert not role_matches("Accountant", None)
        assert not role_matches("Accountant", "")

    def test_unknown_workflow_role_matches_itself_only(self):
        assert role_matches("Purchasing", "Purchasing")
        assert not role_matches("Purchasing", "Accountant")


class TestLookups:
    def test_user_role_names_for_unknown(self):
        assert user_role_names_for_workflow_role("Purchasing") == ["Purchasing"]
        assert user_role_names_for_workflow_role(None) == []

    def test_workflow_roles_for_alias(self):
        names = workflow_role_names_for_user("acc")
        assert "Accountant" in names
        assert "บัญชี" in names
        assert "acc" in names

    def test_canonical_names_cover_all_aliases(self):
        names = canonical_role_names_for_approver("Manager")
        assert "Head of Department" in names
        assert "หัวหน้าแผนก" in names
        assert len(names) == len(set(names))

    def test_canonical_names_empty(self):
        assert canonical_role_names_for_approver(None) == []


class TestClassification:
    def test_approvers(self):
        assert is_approver_role("Accountant")
        assert is_approver_role("It viewer")
        assert not is_approver_role("User")
        assert not is_approver_role(None)

    def test_requesters(self):
        for name in ("Requester", "User", "Request"):
            assert is_requester_role(name)
        assert not is_requester_role("Admin")
