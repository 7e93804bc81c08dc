"""Exception taxonomy for workflow operations.

Each error knows the HTTP status and ``error`` label the API layer reports.
Gate denials and per-article failures are return values, not exceptions.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowEngineError(Exception):
    status_code = 500
    error = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message or self.error
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class UnauthenticatedError(WorkflowEngineError):
    status_code = 401
    error = "Authentication required"


class AccessDeniedError(WorkflowEngineError):
    status_code = 403
    error = "Access denied"


class AdminRequiredError(AccessDeniedError):
    error = "Admin access required"


class NotFoundError(WorkflowEngineError):
    status_code = 404
    error = "Not found"


class WorkflowNotFoundError(NotFoundError):
    error = "Workflow not found"


class KeywordNotFoundError(NotFoundError):
    error = "Keyword not found"


class ArticleNotFoundError(NotFoundError):
    error = "Article not found"


class InvalidWorkflowStateError(WorkflowEngineError):
    status_code = 400
    error = "Invalid workflow state"


class InvalidRequestError(WorkflowEngineError):
    status_code = 400
    error = "Invalid request"


class InfrastructureError(WorkflowEngineError):
    """A data-store failure inside a state-mutating path."""

    status_code = 500
    error = "Internal server error"


class WorkflowLockedError(WorkflowEngineError):
    """A gate denied the attempted step; the body is the gate's locked payload."""

    status_code = 423
    error = "Workflow step locked"

    def __init__(self, payload: Dict[str, Any]) -> None:
        self.payload = dict(payload)
        super().__init__(str(self.payload.get("error") or self.error))

    def to_payload(self) -> Dict[str, Any]:
        return dict(self.payload)
