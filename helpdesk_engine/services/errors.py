"""
Helpdesk Engine Errors

NotFound, Forbidden and Validation errors are raised before anything is
written. StorageError means the transaction was rolled back.
"""

from typing import List, Optional


class WorkItemError(Exception):
    """Base class for update engine failures."""
    pass


class NotFoundError(WorkItemError):
    """Raised when the work item (or a referenced user) does not exist."""
    pass


class ForbiddenError(WorkItemError):
    """Raised when the access guard rejects the requester."""
    pass


class ValidationError(WorkItemError):
    """Raised for malformed update payloads."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class StorageError(WorkItemError):
    """Raised when a transaction could not begin, execute or commit."""
    pass


class ConflictError(StorageError):
    """Raised when the item changed between snapshot and commit."""
    pass


class PartialEnrichmentError(WorkItemError):
    """
    A relation of the returned work item could not be loaded.

    Never escapes the result assembler.
    """

    def __init__(self, relation: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to load relation '{relation}': {cause}")
        self.relation = relation
        self.cause = cause
