"""Shared pytest fixtures for the helpdesk engine test suite."""

import sqlite3
from datetime import datetime, timezone

import pytest

from helpdesk_engine.models import Requester, UserRole
from helpdesk_engine.repositories import UserRepository, WorkItemRepository
from helpdesk_engine.repositories.schema import SCHEMA
from helpdesk_engine.services import NotificationQueue, WorkItemUpdateService

T0 = "2024-05-01T09:00:00+00:00"
NOW = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)

ADMIN_ID = "u-admin"
JANE_ID = "u-jane"        # staff, assignee of the seeded items
BOB_ID = "u-bob"          # staff, creator of the seeded tasks
CAROL_ID = "u-carol"      # staff who also submitted ticket 101
MALLORY_ID = "u-mallory"  # staff with no relation to anything

USERS = [
    (ADMIN_ID, "Ada Admin", "admin@example.com", "Admin"),
    (JANE_ID, "Jane Staff", "jane@example.com", "Staff"),
    (BOB_ID, "Bob Builder", "bob@example.com", "Staff"),
    (CAROL_ID, "Carol Jones", "carol@example.com", "Staff"),
    (MALLORY_ID, "Mallory Quinn", "mallory@example.com", "Staff"),
]


class RecordingQueue(NotificationQueue):
    """Keeps submitted notifications instead of delivering them."""

    def __init__(self):
        self.tasks = []

    def submit(self, task):
        self.tasks.append(task)


def seed_database(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.executescript(SCHEMA)
        conn.executemany(
            "INSERT INTO users (id, name, email, role, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [(*user, T0, T0) for user in USERS],
        )
        conn.executemany(
            """
            INSERT INTO tickets (id, ticket_number, end_user_email, submitter_name,
                                 urgency, subject, description, status,
                                 assigned_to_user_id, created_at, updated_at,
                                 closed_at, resolution_notes)
            VALUES (?, ?, ?, ?, 'Medium', ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                ("tkt-assigned", 101, "carol@example.com", "Carol Jones",
                 "VPN drops", "VPN drops every hour", "Assigned", JANE_ID,
                 T0, T0, None, None),
                ("tkt-closed", 102, "outsider@example.com", "Olive Outsider",
                 "Printer jam", "Tray 2 jams", "Closed", JANE_ID,
                 T0, T0, T0, "Rebooted."),
                ("tkt-open", 103, "outsider@example.com", "Olive Outsider",
                 "New laptop", "Need a laptop", "Open", None,
                 T0, T0, None, None),
            ],
        )
        conn.executemany(
            """
            INSERT INTO tasks (id, task_number, title, description, status,
                               assigned_to_user_id, created_by_user_id, due_date,
                               is_recurring, recurrence_rule, created_at, updated_at,
                               completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                ("task-open", 201, "Rotate backups", None, "Open", None, BOB_ID,
                 None, 0, None, T0, T0, None),
                ("task-active", 202, "Patch servers", "Monthly patching", "In Progress",
                 JANE_ID, BOB_ID, "2024-06-01T00:00:00+00:00", 1, "monthly",
                 T0, T0, None),
            ],
        )
        conn.execute("INSERT INTO tags (id, name, created_at) VALUES ('tag-net', 'network', ?)", (T0,))
        conn.execute("INSERT INTO ticket_tags (ticket_id, tag_id) VALUES ('tkt-assigned', 'tag-net')")
        conn.execute(
            "INSERT INTO ticket_updates (id, ticket_id, user_id, comment, is_internal_note, "
            "is_system_update, created_at) VALUES ('c-1', 'tkt-assigned', ?, 'Looking into it.', 0, 0, ?)",
            (JANE_ID, T0),
        )


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "helpdesk.db")
    seed_database(path)
    return path


@pytest.fixture
def query(db_path):
    """Run a read query against the test database, returning dict rows."""
    def _query(sql, params=()):
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        try:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()
    return _query


@pytest.fixture
def item_repo(db_path):
    return WorkItemRepository(db_path)


@pytest.fixture
def user_repo(db_path):
    return UserRepository(db_path)


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def service(item_repo, user_repo, queue):
    return WorkItemUpdateService(
        item_repo=item_repo,
        user_repo=user_repo,
        notification_queue=queue,
        clock=lambda: NOW,
    )


@pytest.fixture
def admin():
    return Requester(id=ADMIN_ID, role=UserRole.ADMIN)


@pytest.fixture
def jane():
    return Requester(id=JANE_ID)


@pytest.fixture
def bob():
    return Requester(id=BOB_ID)


@pytest.fixture
def carol():
    return Requester(id=CAROL_ID)


@pytest.fixture
def mallory():
    return Requester(id=MALLORY_ID)
