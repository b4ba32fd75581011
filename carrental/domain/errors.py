"""
Workflow error taxonomy.

These exceptions carry no transport details; the API layer maps ``kind`` to a
status code. Every error exposes a ``details`` dict with enough structured
context (statuses, actor role, resource) for a caller to render a message.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for every error raised by the booking/agency workflow."""

    kind = "workflow_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(WorkflowError):
    """Malformed input: bad dates, non-positive price or days, unknown extras."""

    kind = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class ForbiddenError(WorkflowError):
    """Actor is not allowed to act on this entity."""

    kind = "forbidden"

    def __init__(self, message: str, actor_role: Optional[str] = None):
        super().__init__(message, {"actor_role": actor_role} if actor_role else None)
        self.actor_role = actor_role


class InvalidTransitionError(WorkflowError):
    """Requested status change is neither in the legal table nor an admin override."""

    kind = "invalid_transition"

    def __init__(self, entity: str, current_status: str, requested_status: str, actor_role: str):
        super().__init__(
            f"Cannot move {entity} from '{current_status}' to '{requested_status}' as {actor_role}",
            {
                "entity": entity,
                "current_status": current_status,
                "requested_status": requested_status,
                "actor_role": actor_role,
            },
        )
        self.entity = entity
        self.current_status = current_status
        self.requested_status = requested_status
        self.actor_role = actor_role


class ConflictError(WorkflowError):
    """A compare-and-swap on status lost a race."""

    kind = "conflict"

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        expected_status: str,
        current_status: Optional[str] = None,
    ):
        super().__init__(
            f"{entity} '{entity_id}' is no longer '{expected_status}'",
            {
                "entity": entity,
                "entity_id": str(entity_id),
                "expected_status": expected_status,
                "current_status": current_status,
            },
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_status = expected_status
        self.current_status = current_status


class NotFoundError(WorkflowError):
    """Referenced entity does not exist."""

    kind = "not_found"

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            message,
            {"resource": resource, "resource_id": None if resource_id is None else str(resource_id)},
        )
        self.resource = resource
        self.resource_id = resource_id


class UnavailableError(WorkflowError):
    """Store infrastructure timed out or is unreachable; nothing was written."""

    kind = "unavailable"

    def __init__(self, operation: str, message: str = "Data store unavailable"):
        super().__init__(message, {"operation": operation})
        self.operation = operation
