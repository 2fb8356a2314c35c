"""
Helpdesk Engine Models

Work items (tickets and tasks), users, audit comments and update plans.
"""

from .work_item import (
    # Enums
    WorkItemKind,
    TicketStatus,
    TaskStatus,
    UserRole,

    # Lifecycle
    StatusLifecycle,
    LIFECYCLES,
    lifecycle_for,
    utcnow,

    # Core models
    User,
    Requester,
    Tag,
    AuditComment,
    WorkItemSnapshot,
    WorkItem,
)
from .update import (
    UNSET,
    WorkItemPatch,
    FieldMutation,
    FieldChange,
    TransitionFacts,
    UpdatePlan,
)

__all__ = [
    "WorkItemKind", "TicketStatus", "TaskStatus", "UserRole",
    "StatusLifecycle", "LIFECYCLES", "lifecycle_for", "utcnow",
    "User", "Requester", "Tag", "AuditComment", "WorkItemSnapshot", "WorkItem",
    "UNSET", "WorkItemPatch", "FieldMutation", "FieldChange",
    "TransitionFacts", "UpdatePlan",
]
