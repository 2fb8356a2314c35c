"""
Helpdesk Work Item Model

Tickets and tasks are modeled uniformly as work items:
1. Ticket = request raised by an external contact (identified by e-mail)
2. Task = internal piece of work created by a staff user
3. Each kind has exactly one terminal status, paired 1:1 with closed_at
4. Every change leaves an append-only audit comment
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Type
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class WorkItemKind(str, Enum):
    TICKET = "ticket"
    TASK = "task"


class TicketStatus(str, Enum):
    OPEN = "Open"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    CLOSED = "Closed"          # Terminal


class TaskStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"    # Terminal


class UserRole(str, Enum):
    ADMIN = "Admin"
    STAFF = "Staff"


# =============================================================================
# STATUS LIFECYCLE
# =============================================================================

def _status_key(value: str) -> str:
    return re.sub(r"[\s_\-]+", "", value).lower()


class StatusLifecycle:
    """
    Status vocabulary of one work item kind.

    Input is matched case- and spacing-insensitively, so "InProgress",
    "in_progress" and "In Progress" all resolve to the same value.
    """

    def __init__(
        self,
        statuses: Type[Enum],
        terminal: Enum,
        in_progress: Enum,
        label: str
    ):
        self.statuses = statuses
        self.terminal = terminal.value
        self.in_progress = in_progress.value
        self.label = label
        self._by_key: Dict[str, str] = {
            _status_key(s.value): s.value for s in statuses
        }
        for s in statuses:
            self._by_key.setdefault(_status_key(s.name), s.value)

    @property
    def values(self) -> List[str]:
        return [s.value for s in self.statuses]

    def parse(self, raw) -> str:
        """Resolve raw input to a canonical status value or raise ValueError."""
        if isinstance(raw, Enum):
            raw = raw.value
        if not isinstance(raw, str) or not raw.strip():
            raise ValueError(f"Invalid {self.label.lower()} status: {raw!r}")
        value = self._by_key.get(_status_key(raw))
        if value is None:
            raise ValueError(
                f"Invalid {self.label.lower()} status: {raw!r}. "
                f"Expected one of {self.values}."
            )
        return value

    def is_terminal(self, status: Optional[str]) -> bool:
        return status == self.terminal


LIFECYCLES: Dict[WorkItemKind, StatusLifecycle] = {
    WorkItemKind.TICKET: StatusLifecycle(
        TicketStatus, TicketStatus.CLOSED, TicketStatus.IN_PROGRESS, "Ticket"
    ),
    WorkItemKind.TASK: StatusLifecycle(
        TaskStatus, TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS, "Task"
    ),
}


def lifecycle_for(kind: WorkItemKind) -> StatusLifecycle:
    return LIFECYCLES[WorkItemKind(kind)]


# =============================================================================
# CORE MODELS
# =============================================================================

class User(BaseModel):
    """Staff member or administrator."""
    id: str
    name: str
    email: str
    role: UserRole = UserRole.STAFF

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Requester(BaseModel):
    """
    Already-authenticated caller of the engine.

    Supplied by the access-context provider; never re-validated here.
    """
    id: str
    role: UserRole = UserRole.STAFF

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Tag(BaseModel):
    id: str
    name: str
    created_at: Optional[datetime] = None


class AuditComment(BaseModel):
    """
    Append-only note on a work item.

    author_id = None means the change came from a system actor.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: WorkItemKind
    item_id: str

    author_id: Optional[str] = None
    author: Optional[User] = None

    text: str
    is_system: bool = False
    is_internal: bool = True

    created_at: datetime = Field(default_factory=utcnow)


class WorkItemSnapshot(BaseModel):
    """
    Minimal pre-update state of a work item.

    Everything the guard, planner and dispatcher need, nothing more.
    """
    model_config = ConfigDict(frozen=True)

    kind: WorkItemKind
    id: str
    number: int
    title: str
    status: str

    assignee_id: Optional[str] = None
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None

    # Ticket: end-user e-mail. Task: creator's e-mail.
    submitter_email: Optional[str] = None
    # Ticket: user whose e-mail matches the submitter. Task: creator.
    creator_id: Optional[str] = None

    resolution_notes: Optional[str] = None

    # Task-only diffable fields
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    is_recurring: bool = False
    recurrence_rule: Optional[str] = None

    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # updated_at exactly as stored; compared verbatim by optimistic locking
    revision: Optional[str] = None

    @property
    def lifecycle(self) -> StatusLifecycle:
        return lifecycle_for(self.kind)

    @property
    def is_closed(self) -> bool:
        return self.lifecycle.is_terminal(self.status)


class WorkItem(BaseModel):
    """
    The full work item as returned to callers.

    Relations (assignee, submitter, tags, updates) are filled in by the
    result assembler; a relation that could not be loaded is left empty
    and named in missing_relations.
    """
    id: str
    kind: WorkItemKind
    number: int

    title: str
    description: Optional[str] = None
    status: str

    assignee_id: Optional[str] = None
    assignee: Optional[User] = None

    # Ticket submitter (external contact)
    submitter_email: Optional[str] = None
    submitter_name: Optional[str] = None
    # Task creator
    created_by_user_id: Optional[str] = None
    submitter: Optional[User] = None

    resolution_notes: Optional[str] = None

    due_date: Optional[datetime] = None
    is_recurring: bool = False
    recurrence_rule: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None

    tags: List[Tag] = Field(default_factory=list)
    updates: List[AuditComment] = Field(default_factory=list)

    missing_relations: List[str] = Field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return lifecycle_for(self.kind).is_terminal(self.status)
