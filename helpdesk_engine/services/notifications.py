"""
Helpdesk Notification Dispatcher

Decides who hears about a committed transition and hands the work to a
queue. Three independent predicates:
1. Became closed -> "closed" to the submitter
2. Became in progress -> "in_progress" to the submitter
3. Assigned to someone -> "assigned" to the new assignee only

Delivery happens after the commit and never affects the update's outcome.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from ..models import TransitionFacts, WorkItemSnapshot

logger = logging.getLogger(__name__)


TEMPLATE_CLOSED = "closed"
TEMPLATE_IN_PROGRESS = "in_progress"
TEMPLATE_ASSIGNED = "assigned"

DEFAULT_RESOLUTION = "Issue resolved."
DEFAULT_STAFF_NAME = "IT Staff"


@dataclass(frozen=True)
class NotificationTask:
    """One message to one recipient."""
    recipient: str
    template_key: str
    params: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# QUEUE
# =============================================================================

class NotificationQueue:
    """
    Where dispatched notifications go.

    submit() must return immediately; the update path never waits on it.
    """

    def submit(self, task: NotificationTask) -> None:
        raise NotImplementedError

    async def drain(self) -> None:
        """Wait for everything submitted so far. For shutdown and tests."""
        return None


class AsyncioNotificationQueue(NotificationQueue):
    """
    Runs each delivery as a detached asyncio task.

    No timeout, no retry. A failed delivery is logged and dropped.
    """

    def __init__(self, transport):
        self.transport = transport
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def submit(self, task: NotificationTask) -> None:
        job = asyncio.get_running_loop().create_task(self._deliver(task))
        # The loop only keeps weak references to tasks
        self._pending.add(job)
        job.add_done_callback(self._pending.discard)

    async def _deliver(self, task: NotificationTask) -> None:
        try:
            await self.transport.send(task.recipient, task.template_key, task.params)
        except Exception:
            logger.exception(
                "Failed to send %s notification to %s",
                task.template_key, task.recipient
            )
        else:
            logger.info("Sent %s notification to %s", task.template_key, task.recipient)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# =============================================================================
# DISPATCHER
# =============================================================================

class NotificationDispatcher:

    def __init__(self, queue: NotificationQueue):
        self.queue = queue

    def plan_notifications(
        self,
        before: WorkItemSnapshot,
        after: WorkItemSnapshot,
        facts: TransitionFacts
    ) -> List[NotificationTask]:
        """Evaluate the predicates; no side effects besides logging."""
        lifecycle = after.lifecycle
        base = {
            "kind": lifecycle.label,
            "item_id": after.id,
            "number": after.number,
            "title": after.title,
            "status": after.status,
        }
        tasks: List[NotificationTask] = []

        if not before.is_closed and after.is_closed:
            self._add(tasks, after.submitter_email, TEMPLATE_CLOSED, after, {
                **base,
                "resolution": after.resolution_notes or DEFAULT_RESOLUTION,
            })

        if before.status != lifecycle.in_progress and after.status == lifecycle.in_progress:
            self._add(tasks, after.submitter_email, TEMPLATE_IN_PROGRESS, after, {
                **base,
                "assigned_staff_name": after.assignee_name or DEFAULT_STAFF_NAME,
            })

        if facts.assignee_changed_to is not None:
            self._add(tasks, facts.assignee_email, TEMPLATE_ASSIGNED, after, {
                **base,
                "assignee_name": facts.assignee_name or facts.assignee_changed_to,
            })

        return tasks

    def dispatch(
        self,
        before: WorkItemSnapshot,
        after: WorkItemSnapshot,
        facts: TransitionFacts
    ) -> List[NotificationTask]:
        """Submit every due notification. Never raises."""
        tasks = self.plan_notifications(before, after, facts)
        for task in tasks:
            try:
                self.queue.submit(task)
            except Exception:
                logger.exception(
                    "Failed to queue %s notification for %s %s",
                    task.template_key, after.kind.value, after.id
                )
        return tasks

    def _add(
        self,
        tasks: List[NotificationTask],
        recipient,
        template_key: str,
        item: WorkItemSnapshot,
        params: Dict[str, Any]
    ) -> None:
        if not recipient:
            logger.warning(
                "No recipient address for %s notification on %s %s; skipping",
                template_key, item.kind.value, item.id
            )
            return
        tasks.append(NotificationTask(recipient, template_key, params))
