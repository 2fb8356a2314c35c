"""
Helpdesk Engine Services

The work item update path, one component per stage:
load, guard, plan, commit, notify, assemble.
"""

from .errors import (
    WorkItemError, NotFoundError, ForbiddenError, ValidationError,
    StorageError, ConflictError, PartialEnrichmentError,
)
from .loader import StateLoader
from .access import AccessGuard
from .planner import UpdatePlanner, parse_patch
from .committer import UpdateCommitter
from .notifications import (
    NotificationTask, NotificationQueue, AsyncioNotificationQueue,
    NotificationDispatcher,
)
from .mailer import NotificationTransport, LoggingTransport, SmtpTransport
from .assembler import ResultAssembler
from .update import WorkItemUpdateService

__all__ = [
    # Errors
    "WorkItemError", "NotFoundError", "ForbiddenError", "ValidationError",
    "StorageError", "ConflictError", "PartialEnrichmentError",

    # Update pipeline
    "StateLoader", "AccessGuard", "UpdatePlanner", "parse_patch",
    "UpdateCommitter", "ResultAssembler",

    # Notifications
    "NotificationTask", "NotificationQueue", "AsyncioNotificationQueue",
    "NotificationDispatcher",
    "NotificationTransport", "LoggingTransport", "SmtpTransport",

    # Entry point
    "WorkItemUpdateService",
]
