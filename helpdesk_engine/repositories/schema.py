"""Database schema

One table per work item kind, one append-only comment table per kind.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import aiosqlite

from ..models import WorkItemKind

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL DEFAULT 'Staff',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tickets (
    id TEXT PRIMARY KEY,
    ticket_number INTEGER NOT NULL UNIQUE,
    end_user_email TEXT NOT NULL,
    submitter_name TEXT,
    issue_type TEXT,
    urgency TEXT NOT NULL DEFAULT 'Medium',
    subject TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'Open',
    assigned_to_user_id TEXT REFERENCES users(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    closed_at TEXT,
    resolution_notes TEXT
);

CREATE TABLE IF NOT EXISTS ticket_updates (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
    user_id TEXT REFERENCES users(id),
    comment TEXT NOT NULL,
    is_internal_note INTEGER NOT NULL DEFAULT 0,
    is_system_update INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ticket_tags (
    ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
    tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (ticket_id, tag_id)
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    task_number INTEGER NOT NULL UNIQUE,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'Open',
    assigned_to_user_id TEXT REFERENCES users(id),
    created_by_user_id TEXT NOT NULL REFERENCES users(id),
    due_date TEXT,
    is_recurring INTEGER NOT NULL DEFAULT 0,
    recurrence_rule TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS task_updates (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    user_id TEXT REFERENCES users(id),
    comment TEXT NOT NULL,
    is_internal_note INTEGER NOT NULL DEFAULT 0,
    is_system_update INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tickets_status ON tickets(status);
CREATE INDEX IF NOT EXISTS idx_tickets_assigned_to ON tickets(assigned_to_user_id);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_assigned_to ON tasks(assigned_to_user_id);
CREATE INDEX IF NOT EXISTS idx_ticket_updates_ticket_id ON ticket_updates(ticket_id, created_at);
CREATE INDEX IF NOT EXISTS idx_task_updates_task_id ON task_updates(task_id, created_at);
"""


@dataclass(frozen=True)
class KindTable:
    """Where a work item kind lives and how its logical fields map to columns."""
    kind: WorkItemKind
    table: str
    number_column: str
    comment_table: str
    comment_fk: str
    columns: Dict[str, str]
    tag_link_table: Optional[str] = None

    def column(self, field: str) -> str:
        try:
            return self.columns[field]
        except KeyError:
            raise ValueError(
                f"Field '{field}' is not updatable on {self.kind.value}s"
            ) from None


TABLES: Dict[WorkItemKind, KindTable] = {
    WorkItemKind.TICKET: KindTable(
        kind=WorkItemKind.TICKET,
        table="tickets",
        number_column="ticket_number",
        comment_table="ticket_updates",
        comment_fk="ticket_id",
        columns={
            "status": "status",
            "assignee_id": "assigned_to_user_id",
            "resolution_notes": "resolution_notes",
            "closed_at": "closed_at",
            "updated_at": "updated_at",
        },
        tag_link_table="ticket_tags",
    ),
    WorkItemKind.TASK: KindTable(
        kind=WorkItemKind.TASK,
        table="tasks",
        number_column="task_number",
        comment_table="task_updates",
        comment_fk="task_id",
        columns={
            "status": "status",
            "assignee_id": "assigned_to_user_id",
            "title": "title",
            "description": "description",
            "due_date": "due_date",
            "is_recurring": "is_recurring",
            "recurrence_rule": "recurrence_rule",
            "closed_at": "completed_at",
            "updated_at": "updated_at",
        },
    ),
}


def table_for(kind: WorkItemKind) -> KindTable:
    return TABLES[WorkItemKind(kind)]


async def init_database(db_path: str) -> None:
    """Create all tables and indexes if they do not exist yet."""
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.executescript(SCHEMA)
        await db.commit()
    logger.info("Database schema ready at %s", db_path)
