"""
Update Plan Models

A partial update is an explicit record: each mutable field is either UNSET
(caller did not send it) or supplied with a value, where None means
"clear this field". The planner turns a patch into an UpdatePlan, which is
the only thing the committer and dispatcher ever see.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from .work_item import WorkItemKind, WorkItemSnapshot


class _Unset:
    """Marker for a field the caller did not supply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class WorkItemPatch:
    """
    Fields a caller may change on a work item.

    Ticket: status, assignee_id, resolution_notes.
    Task: status, assignee_id, title, description, due_date,
          is_recurring, recurrence_rule.
    """
    status: Union[str, _Unset] = UNSET
    assignee_id: Union[str, None, _Unset] = UNSET
    resolution_notes: Union[str, None, _Unset] = UNSET
    title: Union[str, _Unset] = UNSET
    description: Union[str, None, _Unset] = UNSET
    due_date: Union[datetime, None, _Unset] = UNSET
    is_recurring: Union[bool, _Unset] = UNSET
    recurrence_rule: Union[str, None, _Unset] = UNSET

    def supplied(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def is_supplied(self, name: str) -> bool:
        return getattr(self, name) is not UNSET


@dataclass(frozen=True)
class FieldMutation:
    """One (field, new value) pair; field names are logical, not columns."""
    field: str
    value: Any


FIELD_LABELS = {
    "status": "Status",
    "assignee_id": "Assignee",
    "resolution_notes": "Resolution notes",
    "title": "Title",
    "description": "Description",
    "due_date": "Due date",
    "is_recurring": "Recurring",
    "recurrence_rule": "Recurrence rule",
}

# Free-text fields are summarized instead of quoted in the audit trail
_TEXT_FIELDS = {"resolution_notes", "description"}


@dataclass(frozen=True)
class FieldChange:
    """Human-readable before/after of one changed field."""
    field: str
    old: str
    new: str
    note: Optional[str] = None

    def describe(self) -> str:
        label = FIELD_LABELS.get(self.field, self.field)
        if self.field in _TEXT_FIELDS:
            text = f"{label} cleared" if self.new == "" else f"{label} updated"
        else:
            text = f"{label} changed from {self.old} to {self.new}"
        if self.note:
            text += f" ({self.note})"
        return text + "."


@dataclass(frozen=True)
class TransitionFacts:
    """Facts about the transition the dispatcher's predicates run on."""
    became_closed: bool = False
    reopened: bool = False
    became_in_progress: bool = False
    auto_closed: bool = False

    # Set only when the assignee changed to a non-null user
    assignee_changed_to: Optional[str] = None
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None


@dataclass(frozen=True)
class UpdatePlan:
    """Everything needed to commit one update and notify about it."""
    kind: WorkItemKind
    item_id: str
    mutations: Tuple[FieldMutation, ...]
    changes: Tuple[FieldChange, ...]
    before: WorkItemSnapshot
    after: WorkItemSnapshot
    facts: TransitionFacts = field(default_factory=TransitionFacts)

    def mutation_map(self) -> Dict[str, Any]:
        return {m.field: m.value for m in self.mutations}

    def changed_fields(self) -> Tuple[str, ...]:
        return tuple(m.field for m in self.mutations)

    def describe(self, actor_name: Optional[str] = None) -> str:
        """Audit comment text for this plan."""
        lines = [change.describe() for change in self.changes]
        lines.append(f"Updated by {actor_name or 'System'}.")
        return " ".join(lines)
