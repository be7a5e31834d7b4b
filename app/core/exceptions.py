"""
Platform-wide exception hierarchy.

Services raise these types; the application factory registers one handler
per family so every blueprint gets consistent HTTP status codes and the
standard ``{"error", "code"}`` body from ``app.utils.errors.api_error``.

Usage:
    from app.core.exceptions import NotFoundError, ActionNotAllowed

    raise NotFoundError(resource="ITRequest", resource_id=42)
    raise ActionNotAllowed("APPROVE", "WAITING_ACCOUNT_1", role_name="Head of Department")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "ITRequest", "Category").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in the registered error handler.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique business key.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow engine errors ───────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base for every "this action is not currently permitted" outcome.

    None of these is fatal: the caller re-fetches state and decides whether
    to prompt the user again. ``kind`` is the machine-readable identifier
    returned to API clients.
    """

    kind = "WorkflowError"
    http_status = 409

    def __init__(self, message: str, *, request_id: int | None = None) -> None:
        self.request_id = request_id
        super().__init__(message)


class RequestClosed(WorkflowError):
    """The request is CLOSED or REJECTED; no further transition is possible."""

    kind = "RequestClosed"
    http_status = 409

    def __init__(self, request_id: int, status_code: str) -> None:
        self.status_code = status_code
        super().__init__(
            f"Request {request_id} is already {status_code}; no further action is possible",
            request_id=request_id,
        )


class ActionNotAllowed(WorkflowError):
    """No rule matches (current state, action, actor role).

    Also the outcome of losing a race: the state moved on before this
    actor's write landed.
    """

    kind = "ActionNotAllowed"
    http_status = 403

    def __init__(self, action_name: str, status_code: str | None, *,
                 role_name: str | None = None, request_id: int | None = None,
                 reason: str | None = None) -> None:
        self.action_name = action_name
        self.status_code = status_code
        self.role_name = role_name
        msg = f"Action {action_name!r} is not allowed in status {status_code!r}"
        if role_name:
            msg += f" for role {role_name!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, request_id=request_id)


class DepartmentMismatch(WorkflowError):
    """Role is eligible but the rule restricts actors to the requester's department."""

    kind = "DepartmentMismatch"
    http_status = 403

    def __init__(self, request_id: int, actor_department_id, request_department_id) -> None:
        self.actor_department_id = actor_department_id
        self.request_department_id = request_department_id
        super().__init__(
            f"Request {request_id} belongs to department {request_department_id}; "
            f"actor is in department {actor_department_id}",
            request_id=request_id,
        )


class NotDesignatedApprover(WorkflowError):
    """A special approver is mapped for this category+step and it is someone else."""

    kind = "NotDesignatedApprover"
    http_status = 403

    def __init__(self, request_id: int, step_sequence: int, designated_user_id: int) -> None:
        self.step_sequence = step_sequence
        self.designated_user_id = designated_user_id
        super().__init__(
            f"Step {step_sequence} of request {request_id} is reserved for a designated approver",
            request_id=request_id,
        )


class ConfigurationGap(WorkflowError):
    """A non-terminal request has no outgoing rule at all — an admin defect."""

    kind = "ConfigurationGap"
    http_status = 409

    def __init__(self, request_id: int, category_id: int, status_code: str | None,
                 correction_type_id: int | None = None) -> None:
        self.category_id = category_id
        self.status_code = status_code
        self.correction_type_id = correction_type_id
        super().__init__(
            f"No workflow rule configured for category {category_id} "
            f"(correction type {correction_type_id}) in status {status_code!r}",
            request_id=request_id,
        )
