"""
Role-name canonicalisation.

Workflow configuration refers to approver roles by a canonical name
("Accountant", "Head of Department", ...) while user accounts carry whatever
role name an administrator typed ("acc", "หน.แผนก", "It operator").  Every
comparison between the two goes through this module; the transition path,
the legacy step path, pending tasks and approver lookup all share it.

All functions are pure.
"""

from __future__ import annotations

# Canonical workflow role → user role names accepted for it.
WORKFLOW_ROLE_TO_USER_ROLES: dict[str, tuple[str, ...]] = {
    "Accountant": ("Accountant", "account", "acc", "บัญชี"),
    "บัญชี": ("Accountant", "account", "acc", "บัญชี"),
    "Final Approver": ("Final Approver", "FinalApp"),
    "IT": ("IT", "It operetor", "It operator", "IT Operator", "It Operator"),
    "IT Reviewer": ("IT Reviewer", "It viewer", "IT Veiwer"),
    "Head of Department": ("Head of Department", "Manager", "หน.แผนก", "หัวหน้าแผนก"),
    "หน.แผนก": ("Head of Department", "Manager", "หน.แผนก", "หัวหน้าแผนก"),
    "หัวหน้าแผนก": ("Head of Department", "Manager", "หน.แผนก", "หัวหน้าแผนก"),
    "Warehouse": ("Warehouse", "warehouse"),
    "Admin": ("Admin",),
}

ADMIN_ROLE = "Admin"

# Roles that act on requests (see pending tasks / dashboards).
APPROVER_ROLES = frozenset({
    "Admin",
    "Head of Department",
    "Accountant",
    "Final Approver",
    "IT Reviewer",
    "IT",
    "Manager",
    "Warehouse",
    "warehouse",
    "account",
    "acc",
    "FinalApp",
    "It operetor",
    "It operator",
    "IT Operator",
    "It Operator",
    "It viewer",
    "IT Veiwer",
    "หน.แผนก",
    "หัวหน้าแผนก",
    "บัญชี",
})

# Roles that submit requests and only see their own.
REQUESTER_ROLES = frozenset({"Requester", "User", "Request"})


def user_role_names_for_workflow_role(workflow_role_name: str | None) -> list[str]:
    """User role names that may act where the workflow names *workflow_role_name*.

    Unknown names map to themselves, so a role created in the admin screen
    without an alias entry still matches by exact name.
    """
    if not workflow_role_name:
        return []
    aliases = WORKFLOW_ROLE_TO_USER_ROLES.get(workflow_role_name)
    return list(aliases) if aliases else [workflow_role_name]


def workflow_role_names_for_user(user_role_name: str | None) -> list[str]:
    """Workflow role names a user holding *user_role_name* can act as."""
    if not user_role_name:
        return []
    out = [wf for wf, aliases in WORKFLOW_ROLE_TO_USER_ROLES.items() if user_role_name in aliases]
    if user_role_name not in out:
        out.append(user_role_name)
    return out


def canonical_role_names_for_approver(user_role_name: str | None) -> list[str]:
    """Every role name equivalent to *user_role_name* for approval purposes.

    Used to turn a user's role into the set of ``Role.role_name`` values whose
    ids may appear as ``WorkflowTransition.required_role_id``.
    """
    if not user_role_name:
        return []
    names: list[str] = []
    for wf in workflow_role_names_for_user(user_role_name):
        for n in user_role_names_for_workflow_role(wf):
            if n not in names:
                names.append(n)
    return names or [user_role_name]


def role_matches(workflow_role_name: str | None, user_role_name: str | None) -> bool:
    """True when a user with *user_role_name* satisfies *workflow_role_name*."""
    if not user_role_name:
        return False
    return user_role_name in user_role_names_for_workflow_role(workflow_role_name)


def is_approver_role(role_name: str | None) -> bool:
    return bool(role_name) and role_name in APPROVER_ROLES


def is_requester_role(role_name: str | None) -> bool:
    return bool(role_name) and role_name in REQUESTER_ROLES
