"""Operation errors raised by the program engines.

Each error carries the HTTP-equivalent ``status`` a caller should answer with
and an optional ``payload`` (``details``, ``analysis``) for display.
Storage errors are not wrapped: they propagate as SQLAlchemy exceptions.
"""
from typing import Any, Dict, List, Optional


class OperationError(Exception):
    """Base class for every expected failure of an engine operation."""

    status = 500

    def __init__(self, message: str, status: Optional[int] = None,
                 payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        """Response body: ``{"error": message, **payload}``."""
        return {"error": self.message, **self.payload}


class ValidationFailed(OperationError):
    """Malformed or inconsistent input."""

    status = 400

    def __init__(self, message: str, details: Optional[List[str]] = None) -> None:
        super().__init__(message, payload={"details": details} if details else None)
        self.details = details or []


class AccessDenied(OperationError):
    """The record exists but lies outside the caller's scope."""

    status = 403


class NotFound(OperationError):
    """A referenced record does not exist."""

    status = 404


class Conflict(OperationError):
    """The operation collides with existing state."""

    status = 409


class ImportRejected(Conflict):
    """A sales import with no row ready to be inserted.

    Attributes:
        analysis: The full analysis, so the caller can show every row error.
    """

    def __init__(self, message: str, analysis) -> None:
        super().__init__(message, payload={"analysis": analysis.model_dump(by_alias=True)})
        self.analysis = analysis
