"""
Helpdesk Persistence Committer

Writes one UpdatePlan atomically: the field UPDATE and its audit comment
land together or not at all.
"""

import logging
from typing import Optional

from ..models import AuditComment, UpdatePlan
from .errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class UpdateCommitter:
    """
    Apply a plan inside a single BEGIN IMMEDIATE transaction.

    With optimistic_locking on, the UPDATE only matches if updated_at is
    still what the snapshot saw; a miss is a ConflictError.
    """

    def __init__(self, item_repo, optimistic_locking: bool = False):
        self.items = item_repo
        self.optimistic_locking = optimistic_locking

    async def commit(
        self,
        plan: UpdatePlan,
        description: str,
        requester_id: Optional[str] = None
    ) -> AuditComment:
        comment = AuditComment(
            kind=plan.kind,
            item_id=plan.item_id,
            author_id=requester_id,
            text=description,
            is_system=requester_id is None,
            is_internal=True,
            created_at=plan.mutation_map()["updated_at"],
        )
        expected = plan.before.revision if self.optimistic_locking else None

        async with self.items.transaction() as db:
            count = await self.items.apply_mutations(
                db, plan.kind, plan.item_id, plan.mutations, expected
            )
            if count == 0:
                label = plan.before.lifecycle.label
                if expected is not None:
                    raise ConflictError(
                        f"{label} {plan.item_id} was modified concurrently; reload and retry."
                    )
                raise NotFoundError(f"{label} {plan.item_id} not found.")
            await self.items.insert_comment(db, comment)

        logger.info(
            "Committed %s %s update (%s) by %s",
            plan.kind.value, plan.item_id,
            ", ".join(plan.changed_fields()), requester_id or "system"
        )
        return comment
