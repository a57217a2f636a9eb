"""
Workflow error taxonomy.

Every guarded operation that fails its precondition raises one of these
instead of returning a falsy value.  The HTTP layer maps the kinds to
status codes (see ``brokerage.api.app``).
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for all workflow failures."""

    error_code = "ERR_WORKFLOW"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFound(WorkflowError):
    """Trip, request, driver or company does not exist."""

    error_code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(message, {"resource": resource, "id": resource_id})


class Forbidden(WorkflowError):
    """Actor does not own the resource or lacks the role for it."""

    error_code = "ERR_FORBIDDEN"


class InvalidState(WorkflowError):
    """Operation is not legal from the current status."""

    error_code = "ERR_INVALID_STATE"


class Conflict(WorkflowError):
    """Scheduling overlap, duplicate proposal, or a lost race."""

    error_code = "ERR_CONFLICT"


class ValidationError(WorkflowError):
    """Missing or malformed input."""

    error_code = "ERR_VALIDATION"
