"""
Helpdesk Update Planner

Turns a caller payload into an UpdatePlan:
1. parse_patch() validates the payload into an explicit WorkItemPatch
2. UpdatePlanner.plan() diffs the patch against the snapshot
3. Only fields whose VALUE differs become mutations
4. Closing sets closed_at, reopening clears it
5. Non-empty resolution notes close the item automatically
6. No mutations means no plan (None)

Pure: no I/O, "now" is passed in.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Mapping, Optional

from ..models import (
    FieldChange,
    FieldMutation,
    TransitionFacts,
    UpdatePlan,
    User,
    WorkItemKind,
    WorkItemPatch,
    WorkItemSnapshot,
    lifecycle_for,
    utcnow,
)
from .errors import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# PAYLOAD PARSING
# =============================================================================

MUTABLE_FIELDS = {
    WorkItemKind.TICKET: ("status", "assignee_id", "resolution_notes"),
    WorkItemKind.TASK: (
        "status", "assignee_id", "title", "description",
        "due_date", "is_recurring", "recurrence_rule",
    ),
}

# Accepted spellings of the assignee key
FIELD_ALIASES = {
    "assigned_to": "assignee_id",
    "assigned_to_user_id": "assignee_id",
    "assignedToId": "assignee_id",
}


def _optional_text(name: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string or null")
    return value if value.strip() else None


def _parse_assignee(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError("assignee must be a user id or null")
    value = str(value).strip()
    # Empty string unassigns
    return value or None


def _parse_title(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("title must be a non-empty string")
    return value.strip()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_due_date(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _as_utc(datetime.fromisoformat(text))
        except ValueError:
            pass
        try:
            return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
        except ValueError:
            pass
    raise ValueError(f"due_date must be an ISO 8601 date or null, got {value!r}")


def _parse_is_recurring(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError("is_recurring must be true or false")
    return value


def parse_patch(kind: WorkItemKind, payload: Mapping[str, Any]) -> WorkItemPatch:
    """
    Validate a raw payload into a WorkItemPatch.

    Keys absent from the payload stay UNSET; present keys with null clear
    the field. Unknown keys, keys that do not apply to the kind and
    malformed values are collected and raised as one ValidationError.
    """
    kind = WorkItemKind(kind)
    if not isinstance(payload, Mapping):
        raise ValidationError("Update payload must be an object.")

    lifecycle = lifecycle_for(kind)
    allowed = MUTABLE_FIELDS[kind]
    values: Dict[str, Any] = {}
    errors: List[str] = []

    for key, raw in payload.items():
        name = FIELD_ALIASES.get(key, key)
        if name not in allowed:
            errors.append(f"Field '{key}' cannot be updated on a {lifecycle.label.lower()}.")
            continue
        if name in values:
            errors.append(f"Field '{name}' was supplied more than once.")
            continue
        try:
            if name == "status":
                values[name] = lifecycle.parse(raw)
            elif name == "assignee_id":
                values[name] = _parse_assignee(raw)
            elif name == "title":
                values[name] = _parse_title(raw)
            elif name == "due_date":
                values[name] = _parse_due_date(raw)
            elif name == "is_recurring":
                values[name] = _parse_is_recurring(raw)
            else:
                values[name] = _optional_text(name, raw)
        except ValueError as e:
            errors.append(str(e))

    if errors:
        raise ValidationError("Invalid update: " + " ".join(errors), errors)
    return WorkItemPatch(**values)


# =============================================================================
# PLANNING
# =============================================================================

def _display(field: str, value: Any) -> str:
    if field == "due_date":
        return value.date().isoformat() if value else "none"
    if field == "is_recurring":
        return "yes" if value else "no"
    if field == "title":
        return f"'{value}'"
    if field in ("resolution_notes", "description"):
        return value or ""
    return value if value else "none"


class UpdatePlanner:
    """
    Diff a patch against a snapshot.

    Rules:
    - A supplied value equal to the current one is ignored
    - Non-terminal -> terminal sets closed_at = now
    - Terminal -> non-terminal clears closed_at
    - Resolution notes set or changed to non-empty text force the terminal
      status unless the caller explicitly asked for it
    - Any mutation also sets updated_at = now
    """

    def __init__(self, require_resolution_to_close: bool = False):
        self.require_resolution_to_close = require_resolution_to_close

    def plan(
        self,
        snapshot: WorkItemSnapshot,
        patch: WorkItemPatch,
        new_assignee: Optional[User] = None,
        now: Optional[datetime] = None
    ) -> Optional[UpdatePlan]:
        """Build the plan, or None when nothing would change."""
        now = now or utcnow()
        lifecycle = snapshot.lifecycle

        mutations: List[FieldMutation] = []
        changes: List[FieldChange] = []
        after: Dict[str, Any] = {}

        # Resolution notes first: they drive the auto-close rule
        notes_changed = False
        new_notes = snapshot.resolution_notes
        if patch.is_supplied("resolution_notes") and \
                patch.resolution_notes != (snapshot.resolution_notes or None):
            notes_changed = True
            new_notes = patch.resolution_notes

        # Status
        target_status = snapshot.status
        explicit_terminal = False
        if patch.is_supplied("status"):
            target_status = patch.status
            explicit_terminal = lifecycle.is_terminal(patch.status)

        auto_closed = False
        if notes_changed and new_notes and not explicit_terminal:
            target_status = lifecycle.terminal
            auto_closed = not snapshot.is_closed

        became_closed = False
        reopened = False
        became_in_progress = False
        if target_status != snapshot.status:
            was_closed = snapshot.is_closed
            is_closed = lifecycle.is_terminal(target_status)
            note = None
            if auto_closed:
                note = "closed automatically on resolution"
            elif was_closed and not is_closed:
                note = "reopened"

            mutations.append(FieldMutation("status", target_status))
            changes.append(FieldChange("status", snapshot.status, target_status, note))
            after["status"] = target_status

            if is_closed and not was_closed:
                became_closed = True
                mutations.append(FieldMutation("closed_at", now))
                after["closed_at"] = now
            elif was_closed and not is_closed:
                reopened = True
                mutations.append(FieldMutation("closed_at", None))
                after["closed_at"] = None

            became_in_progress = target_status == lifecycle.in_progress

        if became_closed and self.require_resolution_to_close \
                and snapshot.kind == WorkItemKind.TICKET and not new_notes:
            raise ValidationError(
                "Resolution notes are required to close a ticket."
            )

        # Assignee
        assignee_changed_to = None
        if patch.is_supplied("assignee_id") and patch.assignee_id != snapshot.assignee_id:
            new_id = patch.assignee_id
            old_display = snapshot.assignee_name or snapshot.assignee_id or "Unassigned"
            new_name = None
            new_email = None
            if new_id is not None and new_assignee is not None and new_assignee.id == new_id:
                new_name = new_assignee.name
                new_email = new_assignee.email
            new_display = (new_name or new_id) if new_id else "Unassigned"

            mutations.append(FieldMutation("assignee_id", new_id))
            changes.append(FieldChange("assignee_id", old_display, new_display))
            after.update(assignee_id=new_id, assignee_name=new_name, assignee_email=new_email)
            assignee_changed_to = new_id

        if notes_changed:
            mutations.append(FieldMutation("resolution_notes", new_notes))
            changes.append(FieldChange(
                "resolution_notes",
                _display("resolution_notes", snapshot.resolution_notes),
                _display("resolution_notes", new_notes),
            ))
            after["resolution_notes"] = new_notes

        # Task-only fields
        for name in ("title", "description", "due_date", "is_recurring", "recurrence_rule"):
            if not patch.is_supplied(name):
                continue
            new_value = getattr(patch, name)
            old_value = getattr(snapshot, name)
            if name == "due_date" and old_value is not None:
                old_value = _as_utc(old_value)
            if name in ("description", "recurrence_rule"):
                old_value = old_value or None
            if new_value == old_value:
                continue
            mutations.append(FieldMutation(name, new_value))
            changes.append(FieldChange(name, _display(name, old_value), _display(name, new_value)))
            after[name] = new_value

        if not mutations:
            return None

        mutations.append(FieldMutation("updated_at", now))
        after["updated_at"] = now

        facts = TransitionFacts(
            became_closed=became_closed,
            reopened=reopened,
            became_in_progress=became_in_progress,
            auto_closed=auto_closed,
            assignee_changed_to=assignee_changed_to,
            assignee_name=after.get("assignee_name") if assignee_changed_to else None,
            assignee_email=after.get("assignee_email") if assignee_changed_to else None,
        )

        return UpdatePlan(
            kind=snapshot.kind,
            item_id=snapshot.id,
            mutations=tuple(mutations),
            changes=tuple(changes),
            before=snapshot,
            after=snapshot.model_copy(update=after),
            facts=facts,
        )
