from __future__ import annotations

from typing import Any, Dict, Optional


class TaskboardError(Exception):
    """Base class for errors reported by the board/task core."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidIdentifier(TaskboardError):
    code = "invalid_identifier"
    status_code = 400


class ValidationFailed(TaskboardError):
    code = "validation_failed"
    status_code = 400


class NotFound(TaskboardError):
    code = "not_found"
    status_code = 404


class NoColumns(TaskboardError):
    code = "no_columns"
    status_code = 409


class ConcurrentModification(TaskboardError):
    code = "conflict"
    status_code = 409


class StoreUnavailable(TaskboardError):
    """The document store cannot be reached. Callers may retry."""

    code = "store_unavailable"
    status_code = 503
    retryable = True
