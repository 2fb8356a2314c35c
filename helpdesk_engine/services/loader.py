"""
Helpdesk Current-State Loader

Reads the minimal snapshot the rest of the update path works from.
Read-only; runs outside any transaction.
"""

import logging

from ..models import WorkItemKind, WorkItemSnapshot, lifecycle_for
from .errors import NotFoundError

logger = logging.getLogger(__name__)


class StateLoader:

    def __init__(self, item_repo):
        self.items = item_repo

    async def load(self, kind: WorkItemKind, item_id: str) -> WorkItemSnapshot:
        """Snapshot of the item, or NotFoundError."""
        snapshot = await self.items.get_snapshot(kind, item_id)
        if snapshot is None:
            label = lifecycle_for(kind).label
            logger.warning("%s %s not found", label, item_id)
            raise NotFoundError(f"{label} {item_id} not found.")
        return snapshot
