"""
Helpdesk Access Guard

Who may change a work item:
1. Admins, always
2. The system actor (no requester), always
3. The creator / submitter
4. The current assignee
5. Anyone, while the item is unassigned (taking it is a claim)

Everyone else is turned away before anything is planned or written.
"""

import logging
from typing import Optional

from ..models import Requester, WorkItemSnapshot
from .errors import ForbiddenError

logger = logging.getLogger(__name__)


class AccessGuard:
    """
    Pure predicate over (snapshot, requester).

    Use before any write to a work item.
    """

    def grant_reason(
        self,
        snapshot: WorkItemSnapshot,
        requester: Optional[Requester]
    ) -> Optional[str]:
        """Why the requester may update the item, or None if they may not."""
        if requester is None:
            return "system"
        if requester.is_admin:
            return "admin"
        if snapshot.creator_id is not None and snapshot.creator_id == requester.id:
            return "creator"
        if snapshot.assignee_id is None:
            return "claim"
        if snapshot.assignee_id == requester.id:
            return "assignee"
        return None

    def is_authorized(
        self,
        snapshot: WorkItemSnapshot,
        requester: Optional[Requester]
    ) -> bool:
        return self.grant_reason(snapshot, requester) is not None

    def require_update_access(
        self,
        snapshot: WorkItemSnapshot,
        requester: Optional[Requester],
        action: str = "update"
    ) -> str:
        """
        Raise ForbiddenError unless the requester may change the item.

        Returns the grant reason for logging.
        """
        reason = self.grant_reason(snapshot, requester)
        if reason is None:
            logger.warning(
                "Unauthorized attempt to %s %s %s by %s (assignee %s)",
                action, snapshot.kind.value, snapshot.id,
                requester.id, snapshot.assignee_id
            )
            raise ForbiddenError(
                f"Not authorized to {action} this {snapshot.lifecycle.label.lower()}. "
                "Only its creator, its assignee or an admin can."
            )
        return reason
