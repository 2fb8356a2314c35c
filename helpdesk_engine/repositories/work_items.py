"""Work item repository

Snapshot and entity reads, the comment stream, and the two statements the
committer runs inside its transaction.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from ..models import (
    AuditComment,
    FieldMutation,
    Tag,
    User,
    WorkItem,
    WorkItemKind,
    WorkItemSnapshot,
)
from .base import BaseRepository, to_db
from .schema import table_for

logger = logging.getLogger(__name__)


_SNAPSHOT_SQL = {
    WorkItemKind.TICKET: """
        SELECT t.id, t.ticket_number AS number, t.subject AS title, t.status,
               t.assigned_to_user_id AS assignee_id,
               a.name AS assignee_name, a.email AS assignee_email,
               t.end_user_email AS submitter_email,
               (SELECT s.id FROM users s
                 WHERE lower(s.email) = lower(t.end_user_email)
                 ORDER BY s.created_at, s.id LIMIT 1) AS creator_id,
               t.resolution_notes, t.created_at, t.closed_at, t.updated_at,
               t.updated_at AS revision
        FROM tickets t
        LEFT JOIN users a ON a.id = t.assigned_to_user_id
        WHERE t.id = ?
    """,
    WorkItemKind.TASK: """
        SELECT t.id, t.task_number AS number, t.title, t.status,
               t.assigned_to_user_id AS assignee_id,
               a.name AS assignee_name, a.email AS assignee_email,
               c.email AS submitter_email, t.created_by_user_id AS creator_id,
               t.description, t.due_date, t.is_recurring, t.recurrence_rule,
               t.created_at, t.completed_at AS closed_at, t.updated_at,
               t.updated_at AS revision
        FROM tasks t
        LEFT JOIN users a ON a.id = t.assigned_to_user_id
        LEFT JOIN users c ON c.id = t.created_by_user_id
        WHERE t.id = ?
    """,
}

_ENTITY_SQL = {
    WorkItemKind.TICKET: """
        SELECT id, ticket_number AS number, subject AS title, description,
               status, assigned_to_user_id AS assignee_id,
               end_user_email AS submitter_email, submitter_name,
               resolution_notes, created_at, updated_at, closed_at
        FROM tickets
        WHERE id = ?
    """,
    WorkItemKind.TASK: """
        SELECT id, task_number AS number, title, description, status,
               assigned_to_user_id AS assignee_id, created_by_user_id,
               due_date, is_recurring, recurrence_rule,
               created_at, updated_at, completed_at AS closed_at
        FROM tasks
        WHERE id = ?
    """,
}


class WorkItemRepository(BaseRepository):
    """Tickets and tasks behind one interface."""

    async def get_snapshot(
        self, kind: WorkItemKind, item_id: str
    ) -> Optional[WorkItemSnapshot]:
        row = await self.fetch_one(_SNAPSHOT_SQL[WorkItemKind(kind)], (item_id,))
        if row is None:
            return None
        return WorkItemSnapshot(kind=kind, **row)

    async def get(self, kind: WorkItemKind, item_id: str) -> Optional[WorkItem]:
        row = await self.fetch_one(_ENTITY_SQL[WorkItemKind(kind)], (item_id,))
        if row is None:
            return None
        return WorkItem(kind=kind, **row)

    async def list_tags(self, kind: WorkItemKind, item_id: str) -> List[Tag]:
        tables = table_for(kind)
        if tables.tag_link_table is None:
            return []
        rows = await self.fetch_all(
            f"""
            SELECT tg.id, tg.name, tg.created_at
            FROM tags tg
            JOIN {tables.tag_link_table} link ON link.tag_id = tg.id
            WHERE link.{tables.comment_fk} = ?
            ORDER BY tg.name
            """,
            (item_id,),
        )
        return [Tag(**row) for row in rows]

    async def list_comments(
        self, kind: WorkItemKind, item_id: str
    ) -> List[AuditComment]:
        """Comment stream of an item, oldest first."""
        tables = table_for(kind)
        rows = await self.fetch_all(
            f"""
            SELECT c.id, c.user_id, c.comment, c.is_internal_note,
                   c.is_system_update, c.created_at,
                   u.name AS author_name, u.email AS author_email,
                   u.role AS author_role
            FROM {tables.comment_table} c
            LEFT JOIN users u ON u.id = c.user_id
            WHERE c.{tables.comment_fk} = ?
            ORDER BY c.created_at ASC, c.rowid ASC
            """,
            (item_id,),
        )
        comments = []
        for row in rows:
            author = None
            if row["user_id"] and row["author_name"] is not None:
                author = User(
                    id=row["user_id"],
                    name=row["author_name"],
                    email=row["author_email"],
                    role=row["author_role"],
                )
            comments.append(AuditComment(
                id=row["id"],
                kind=kind,
                item_id=item_id,
                author_id=row["user_id"],
                author=author,
                text=row["comment"],
                is_system=bool(row["is_system_update"]),
                is_internal=bool(row["is_internal_note"]),
                created_at=row["created_at"],
            ))
        return comments

    # =========================================================================
    # Transactional writes (caller owns the transaction)
    # =========================================================================

    def build_update(
        self,
        kind: WorkItemKind,
        item_id: str,
        mutations: Sequence[FieldMutation],
        expected_revision: Optional[str] = None,
    ) -> "tuple[str, List[Any]]":
        """
        Translate a mutation list into one parameterized UPDATE.

        Column names come from the kind's whitelist only; values are always
        bound parameters.
        """
        if not mutations:
            raise ValueError("Cannot build an UPDATE without mutations")

        tables = table_for(kind)
        assignments = []
        params: List[Any] = []
        for mutation in mutations:
            assignments.append(f"{tables.column(mutation.field)} = ?")
            params.append(to_db(mutation.value))

        sql = f"UPDATE {tables.table} SET {', '.join(assignments)} WHERE id = ?"
        params.append(item_id)

        if expected_revision is not None:
            sql += " AND updated_at = ?"
            params.append(expected_revision)

        return sql, params

    async def apply_mutations(
        self,
        db: aiosqlite.Connection,
        kind: WorkItemKind,
        item_id: str,
        mutations: Sequence[FieldMutation],
        expected_revision: Optional[str] = None,
    ) -> int:
        """Run the UPDATE inside db's transaction. Returns rows affected."""
        sql, params = self.build_update(kind, item_id, mutations, expected_revision)
        logger.debug("Executing %s update: %s (%d params)", kind.value, sql, len(params))
        cursor = await db.execute(sql, params)
        count = cursor.rowcount
        await cursor.close()
        return count

    async def insert_comment(
        self, db: aiosqlite.Connection, comment: AuditComment
    ) -> None:
        tables = table_for(comment.kind)
        await db.execute(
            f"""
            INSERT INTO {tables.comment_table}
                (id, {tables.comment_fk}, user_id, comment,
                 is_internal_note, is_system_update, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                comment.id,
                comment.item_id,
                comment.author_id,
                comment.text,
                to_db(comment.is_internal),
                to_db(comment.is_system),
                to_db(comment.created_at),
            ),
        )
