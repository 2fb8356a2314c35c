"""
Helpdesk Work Item Update Service

The one entry point for changing a ticket or task.

Pipeline:
    load snapshot -> guard -> plan -> commit -> notify -> assemble

NotFound, Forbidden and Validation errors happen before any write. A
request that changes nothing returns the current item and writes nothing.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from ..models import (
    Requester,
    User,
    WorkItem,
    WorkItemKind,
    WorkItemPatch,
    WorkItemSnapshot,
    utcnow,
)
from .access import AccessGuard
from .assembler import ResultAssembler
from .committer import UpdateCommitter
from .errors import (
    PartialEnrichmentError,
    StorageError,
    ValidationError,
    WorkItemError,
)
from .loader import StateLoader
from .notifications import NotificationDispatcher, NotificationQueue
from .planner import UpdatePlanner, parse_patch

logger = logging.getLogger(__name__)


class WorkItemUpdateService:
    """
    Applies partial updates to tickets and tasks.

    Store, user lookup, notification queue and clock are injected.
    """

    def __init__(
        self,
        item_repo,
        user_repo,
        notification_queue: NotificationQueue,
        clock: Callable[[], datetime] = utcnow,
        optimistic_locking: bool = False,
        require_resolution_to_close: bool = False
    ):
        self.users = user_repo
        self.clock = clock
        self.loader = StateLoader(item_repo)
        self.guard = AccessGuard()
        self.planner = UpdatePlanner(require_resolution_to_close)
        self.committer = UpdateCommitter(item_repo, optimistic_locking)
        self.dispatcher = NotificationDispatcher(notification_queue)
        self.assembler = ResultAssembler(item_repo, user_repo)

    async def apply_update(
        self,
        kind: WorkItemKind,
        item_id: str,
        payload: Mapping[str, Any],
        requester: Optional[Requester] = None
    ) -> WorkItem:
        """
        Apply a partial update and return the resulting work item.

        requester=None acts as the system. Raises NotFoundError,
        ForbiddenError, ValidationError or StorageError. Once the write
        has committed nothing is raised; if the item cannot be reloaded
        the planned post-state is returned with every relation missing.
        """
        kind = self._kind(kind)
        snapshot = await self.loader.load(kind, item_id)
        self.guard.require_update_access(snapshot, requester)

        patch = parse_patch(kind, payload)
        new_assignee = await self._resolve_assignee(snapshot, patch)

        plan = self.planner.plan(snapshot, patch, new_assignee=new_assignee, now=self.clock())
        if plan is None:
            logger.debug("No changes for %s %s; nothing written", kind.value, item_id)
            return await self.assembler.assemble(kind, item_id)

        actor_name = await self._actor_name(requester)
        await self.committer.commit(
            plan,
            plan.describe(actor_name),
            requester.id if requester else None
        )

        self.dispatcher.dispatch(plan.before, plan.after, plan.facts)

        try:
            return await self.assembler.assemble(kind, item_id)
        except WorkItemError as e:
            # Committed; the caller gets the planned post-state instead.
            error = PartialEnrichmentError("item", e)
            logger.warning("%s %s updated but not reloaded: %s", kind.value, item_id, error)
            return self.assembler.from_snapshot(plan.after)

    async def get_item(self, kind: WorkItemKind, item_id: str) -> WorkItem:
        """Read a work item with its relations."""
        return await self.assembler.assemble(self._kind(kind), item_id)

    # =========================================================================
    # Private methods
    # =========================================================================

    def _kind(self, kind) -> WorkItemKind:
        try:
            return WorkItemKind(kind)
        except ValueError as e:
            raise ValidationError(f"Unknown work item kind: {kind!r}") from e

    async def _resolve_assignee(
        self,
        snapshot: WorkItemSnapshot,
        patch: WorkItemPatch
    ) -> Optional[User]:
        """The user being assigned, if the patch assigns someone new."""
        if not patch.is_supplied("assignee_id") or patch.assignee_id is None:
            return None
        if patch.assignee_id == snapshot.assignee_id:
            return None
        user = await self.users.get(patch.assignee_id)
        if user is None:
            raise ValidationError(f"Assignee {patch.assignee_id} does not exist.")
        return user

    async def _actor_name(self, requester: Optional[Requester]) -> Optional[str]:
        if requester is None:
            return None
        try:
            user = await self.users.get(requester.id)
        except StorageError:
            logger.warning("Could not look up name of requester %s", requester.id)
            return requester.id
        return user.name if user else requester.id
