"""
Exception types for the lab notebook.

Store implementations wrap their library errors into these so the
controller only has to catch ``NotebookError`` at its boundary.
"""

from typing import Any, Dict, Optional


class NotebookError(Exception):
    """Base error for notebook operations.

    Args:
        message: Error description
        record_id: The record the operation was about, if any
        context: Additional error context
    """

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> None:
        self.message = message
        self.record_id = record_id
        self.context = context or {}
        super().__init__(self.message)


class StoreError(NotebookError):
    """The record store was unreachable or rejected the request."""


class RecordNotFoundError(StoreError):
    """No record with the given id exists in the store."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record with ID {record_id} not found", record_id=record_id)


class AuthError(NotebookError):
    """No owning identity could be resolved for a new record."""

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message)


class BackupError(NotebookError):
    """The local backup copy could not be read or written."""
