"""
F07 IT Change Request Platform
Blueprint registry.

Every surface lives under /api/v1 and is registered by ``create_app``:
auth, health, request, pending, workflow_admin, notification, dashboard,
master.
"""
