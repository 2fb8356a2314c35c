"""
Helpdesk Result Assembler

Reloads the full work item and hangs its relations on it. Relations are
best-effort; the core row is not.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from ..models import WorkItem, WorkItemKind, WorkItemSnapshot, lifecycle_for
from .errors import NotFoundError, PartialEnrichmentError

logger = logging.getLogger(__name__)

RELATIONS = ("assignee", "submitter", "tags", "updates")


class ResultAssembler:

    def __init__(self, item_repo, user_repo):
        self.items = item_repo
        self.users = user_repo

    async def assemble(self, kind: WorkItemKind, item_id: str) -> WorkItem:
        """
        Full work item with assignee, submitter, tags and comment stream.

        A relation that fails to load is left empty and listed in
        missing_relations. StorageError from the core read propagates.
        """
        kind = WorkItemKind(kind)
        item = await self.items.get(kind, item_id)
        if item is None:
            raise NotFoundError(f"{lifecycle_for(kind).label} {item_id} not found.")

        loaders: List[Tuple[str, Callable[[], Awaitable[Any]]]] = [
            ("assignee", lambda: self._load_assignee(item)),
            ("submitter", lambda: self._load_submitter(item)),
            ("tags", lambda: self.items.list_tags(kind, item_id)),
            ("updates", lambda: self.items.list_comments(kind, item_id)),
        ]

        relations: Dict[str, Any] = {}
        missing: List[str] = []
        for name, load in loaders:
            try:
                relations[name] = await load()
            except Exception as e:
                error = PartialEnrichmentError(name, e)
                logger.warning("%s %s: %s", kind.value, item_id, error)
                missing.append(name)

        return item.model_copy(update={**relations, "missing_relations": missing})

    def from_snapshot(self, snapshot: WorkItemSnapshot) -> WorkItem:
        """
        Core work item built from a committed post-update snapshot.

        Used when the item cannot be reloaded after its update was
        committed. Every relation is reported missing.
        """
        is_task = snapshot.kind == WorkItemKind.TASK
        return WorkItem(
            id=snapshot.id,
            kind=snapshot.kind,
            number=snapshot.number,
            title=snapshot.title,
            description=snapshot.description,
            status=snapshot.status,
            assignee_id=snapshot.assignee_id,
            submitter_email=None if is_task else snapshot.submitter_email,
            created_by_user_id=snapshot.creator_id if is_task else None,
            resolution_notes=snapshot.resolution_notes,
            due_date=snapshot.due_date,
            is_recurring=snapshot.is_recurring,
            recurrence_rule=snapshot.recurrence_rule,
            created_at=snapshot.created_at or snapshot.updated_at,
            updated_at=snapshot.updated_at,
            closed_at=snapshot.closed_at,
            missing_relations=list(RELATIONS),
        )

    async def _load_assignee(self, item: WorkItem):
        if item.assignee_id is None:
            return None
        return await self.users.get(item.assignee_id)

    async def _load_submitter(self, item: WorkItem):
        if item.kind == WorkItemKind.TASK:
            if item.created_by_user_id is None:
                return None
            return await self.users.get(item.created_by_user_id)
        if not item.submitter_email:
            return None
        return await self.users.get_by_email(item.submitter_email)
