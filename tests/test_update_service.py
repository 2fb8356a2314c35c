"""
tests/test_update_service.py
End-to-end tests for WorkItemUpdateService against a real SQLite file.
"""

import sqlite3

import aiosqlite
import pytest

from conftest import BOB_ID, JANE_ID, MALLORY_ID, NOW, T0
from helpdesk_engine.models import WorkItemKind, WorkItemPatch
from helpdesk_engine.repositories import UserRepository, WorkItemRepository
from helpdesk_engine.services import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    UpdateCommitter,
    UpdatePlanner,
    ValidationError,
    WorkItemUpdateService,
)

TICKET = WorkItemKind.TICKET
TASK = WorkItemKind.TASK


def ticket_row(query, ticket_id):
    return query("SELECT * FROM tickets WHERE id = ?", (ticket_id,))[0]


def ticket_comments(query, ticket_id):
    return query(
        "SELECT * FROM ticket_updates WHERE ticket_id = ? ORDER BY created_at, rowid",
        (ticket_id,),
    )


class FailingCommentRepository(WorkItemRepository):
    """Fails the second statement of the commit transaction."""

    async def insert_comment(self, db, comment):
        raise aiosqlite.OperationalError("disk I/O error")


# =============================================================================
# Scenarios
# =============================================================================

async def test_resolution_notes_close_ticket_and_notify_submitter(service, queue, query, jane):
    item = await service.apply_update(
        TICKET, "tkt-assigned", {"resolution_notes": "Replaced cable"}, jane
    )

    assert item.status == "Closed"
    assert item.closed_at == NOW
    assert item.resolution_notes == "Replaced cable"

    row = ticket_row(query, "tkt-assigned")
    assert row["status"] == "Closed"
    assert row["closed_at"] == NOW.isoformat()
    assert row["updated_at"] == NOW.isoformat()

    comments = ticket_comments(query, "tkt-assigned")
    assert len(comments) == 2
    assert comments[-1]["user_id"] == JANE_ID
    assert comments[-1]["comment"] == (
        "Status changed from Assigned to Closed (closed automatically on resolution). "
        "Resolution notes updated. Updated by Jane Staff."
    )
    assert comments[-1]["is_system_update"] == 0

    assert [(t.recipient, t.template_key) for t in queue.tasks] == [
        ("carol@example.com", "closed")
    ]
    assert queue.tasks[0].params["resolution"] == "Replaced cable"
    assert queue.tasks[0].params["number"] == 101


async def test_admin_reopens_closed_ticket(service, queue, query, admin):
    item = await service.apply_update(TICKET, "tkt-closed", {"status": "open"}, admin)

    assert item.status == "Open"
    assert item.closed_at is None
    assert item.resolution_notes == "Rebooted."

    row = ticket_row(query, "tkt-closed")
    assert row["closed_at"] is None
    comments = ticket_comments(query, "tkt-closed")
    assert len(comments) == 1
    assert "(reopened)" in comments[0]["comment"]
    assert queue.tasks == []


async def test_admin_reopens_closed_ticket_to_in_progress_and_notifies_submitter(
    service, queue, query, admin
):
    item = await service.apply_update(TICKET, "tkt-closed", {"status": "InProgress"}, admin)

    assert item.status == "In Progress"
    assert item.closed_at is None
    assert ticket_row(query, "tkt-closed")["closed_at"] is None

    comments = ticket_comments(query, "tkt-closed")
    assert len(comments) == 1
    assert comments[0]["comment"] == (
        "Status changed from Closed to In Progress (reopened). Updated by Ada Admin."
    )
    assert [(t.recipient, t.template_key) for t in queue.tasks] == [
        ("outsider@example.com", "in_progress")
    ]


async def test_failed_comment_insert_rolls_back_field_update(db_path, user_repo, queue, query, jane):
    service = WorkItemUpdateService(
        FailingCommentRepository(db_path), user_repo, queue, clock=lambda: NOW
    )

    with pytest.raises(StorageError):
        await service.apply_update(TICKET, "tkt-assigned", {"status": "Closed"}, jane)

    row = ticket_row(query, "tkt-assigned")
    assert row["status"] == "Assigned"
    assert row["closed_at"] is None
    assert row["updated_at"] == T0
    assert len(ticket_comments(query, "tkt-assigned")) == 1
    assert queue.tasks == []


# =============================================================================
# Idempotence and invariants
# =============================================================================

async def test_no_op_update_writes_nothing(service, queue, query, jane):
    item = await service.apply_update(
        TICKET, "tkt-assigned", {"status": "Assigned", "assignedToId": JANE_ID}, jane
    )

    assert item.status == "Assigned"
    assert ticket_row(query, "tkt-assigned")["updated_at"] == T0
    assert len(ticket_comments(query, "tkt-assigned")) == 1
    assert queue.tasks == []


async def test_repeated_update_is_idempotent(service, queue, query, jane):
    await service.apply_update(TICKET, "tkt-assigned", {"status": "Closed"}, jane)
    await service.apply_update(TICKET, "tkt-assigned", {"status": "Closed"}, jane)

    assert len(ticket_comments(query, "tkt-assigned")) == 2
    assert len(queue.tasks) == 1


async def test_closed_status_and_closed_at_move_together(service, query, admin):
    for status in ["Closed", "In Progress", "Closed", "Open"]:
        await service.apply_update(TICKET, "tkt-assigned", {"status": status}, admin)
        row = ticket_row(query, "tkt-assigned")
        assert (row["status"] == "Closed") == (row["closed_at"] is not None)


# =============================================================================
# Authorization
# =============================================================================

async def test_unrelated_staff_cannot_update(service, queue, query, mallory):
    with pytest.raises(ForbiddenError):
        await service.apply_update(TICKET, "tkt-assigned", {"status": "Closed"}, mallory)

    assert ticket_row(query, "tkt-assigned")["status"] == "Assigned"
    assert queue.tasks == []


async def test_submitter_matched_by_email_can_update(service, carol):
    item = await service.apply_update(TICKET, "tkt-assigned", {"status": "In Progress"}, carol)
    assert item.status == "In Progress"


async def test_anyone_can_claim_unassigned_ticket(service, queue, query, mallory):
    item = await service.apply_update(TICKET, "tkt-open", {"assigned_to": MALLORY_ID}, mallory)

    assert item.assignee_id == MALLORY_ID
    assert item.assignee.name == "Mallory Quinn"
    assert [(t.recipient, t.template_key) for t in queue.tasks] == [
        ("mallory@example.com", "assigned")
    ]
    comments = ticket_comments(query, "tkt-open")
    assert [c["comment"] for c in comments] == [
        "Assignee changed from Unassigned to Mallory Quinn. Updated by Mallory Quinn."
    ]


async def test_system_actor_writes_system_comment(service, query):
    await service.apply_update(TICKET, "tkt-assigned", {"status": "Closed"}, None)

    comment = ticket_comments(query, "tkt-assigned")[-1]
    assert comment["user_id"] is None
    assert comment["is_system_update"] == 1
    assert comment["comment"].endswith("Updated by System.")


# =============================================================================
# Errors before any write
# =============================================================================

async def test_missing_item_is_not_found(service, jane):
    with pytest.raises(NotFoundError):
        await service.apply_update(TICKET, "nope", {"status": "Closed"}, jane)


async def test_unknown_assignee_is_rejected(service, query, admin):
    with pytest.raises(ValidationError, match="does not exist"):
        await service.apply_update(TICKET, "tkt-assigned", {"assignee_id": "u-ghost"}, admin)
    assert ticket_row(query, "tkt-assigned")["assigned_to_user_id"] == JANE_ID


async def test_invalid_payload_is_rejected(service, jane):
    with pytest.raises(ValidationError):
        await service.apply_update(TICKET, "tkt-assigned", {"status": "Done-ish"}, jane)


async def test_unknown_kind_is_rejected(service, jane):
    with pytest.raises(ValidationError):
        await service.apply_update("incident", "tkt-assigned", {}, jane)


# =============================================================================
# Notifications
# =============================================================================

async def test_in_progress_notifies_submitter_with_staff_name(service, queue, jane):
    await service.apply_update(TICKET, "tkt-assigned", {"status": "inprogress"}, jane)

    assert len(queue.tasks) == 1
    task = queue.tasks[0]
    assert task.recipient == "carol@example.com"
    assert task.template_key == "in_progress"
    assert task.params["assigned_staff_name"] == "Jane Staff"


async def test_reassignment_notifies_only_new_assignee(service, queue, admin):
    await service.apply_update(TICKET, "tkt-assigned", {"assignee_id": BOB_ID}, admin)

    assert [(t.recipient, t.template_key) for t in queue.tasks] == [
        ("bob@example.com", "assigned")
    ]


async def test_unassigning_sends_nothing(service, queue, admin):
    await service.apply_update(TICKET, "tkt-assigned", {"assignee_id": ""}, admin)
    assert queue.tasks == []


# =============================================================================
# Tasks
# =============================================================================

async def test_task_completion_sets_completed_at_and_notifies_creator(service, queue, query, jane):
    item = await service.apply_update(TASK, "task-active", {"status": "completed"}, jane)

    assert item.status == "Completed"
    assert item.closed_at == NOW
    assert query("SELECT completed_at FROM tasks WHERE id = 'task-active'")[0]["completed_at"] == NOW.isoformat()
    assert [(t.recipient, t.template_key) for t in queue.tasks] == [
        ("bob@example.com", "closed")
    ]
    assert queue.tasks[0].params["resolution"] == "Issue resolved."


async def test_task_field_edits_by_creator(service, query, bob):
    item = await service.apply_update(TASK, "task-open", {
        "title": "Rotate tapes",
        "due_date": "2024-07-01",
        "is_recurring": True,
        "recurrence_rule": "weekly",
    }, bob)

    assert item.title == "Rotate tapes"
    assert item.is_recurring is True
    assert item.due_date.date().isoformat() == "2024-07-01"
    comments = query("SELECT comment, user_id FROM task_updates WHERE task_id = 'task-open'")
    assert len(comments) == 1
    assert comments[0]["user_id"] == BOB_ID
    assert comments[0]["comment"] == (
        "Title changed from 'Rotate backups' to 'Rotate tapes'. "
        "Due date changed from none to 2024-07-01. "
        "Recurring changed from no to yes. "
        "Recurrence rule changed from none to weekly. "
        "Updated by Bob Builder."
    )


async def test_task_rejects_ticket_only_fields(service, bob):
    with pytest.raises(ValidationError):
        await service.apply_update(TASK, "task-open", {"resolution_notes": "x"}, bob)


# =============================================================================
# Committer edge cases
# =============================================================================

async def test_optimistic_locking_detects_concurrent_change(item_repo, db_path):
    snapshot = await item_repo.get_snapshot(TICKET, "tkt-assigned")
    plan = UpdatePlanner().plan(snapshot, WorkItemPatch(status="Closed"), now=NOW)

    with sqlite3.connect(db_path) as conn:
        conn.execute("UPDATE tickets SET updated_at = '2024-05-02T11:00:00+00:00' WHERE id = 'tkt-assigned'")

    committer = UpdateCommitter(item_repo, optimistic_locking=True)
    with pytest.raises(ConflictError):
        await committer.commit(plan, plan.describe(), None)


async def test_commit_against_deleted_row_is_not_found(item_repo, db_path):
    snapshot = await item_repo.get_snapshot(TICKET, "tkt-open")
    plan = UpdatePlanner().plan(snapshot, WorkItemPatch(status="Closed"), now=NOW)

    with sqlite3.connect(db_path) as conn:
        conn.execute("DELETE FROM tickets WHERE id = 'tkt-open'")

    with pytest.raises(NotFoundError):
        await UpdateCommitter(item_repo).commit(plan, plan.describe(), None)


async def test_get_item_reads_relations(service):
    item = await service.get_item(TICKET, "tkt-assigned")
    assert item.assignee.name == "Jane Staff"
    assert item.submitter.id == "u-carol"
    assert [t.name for t in item.tags] == ["network"]
    assert [c.text for c in item.updates] == ["Looking into it."]
    assert item.missing_relations == []


async def test_service_accepts_injected_repositories(db_path, queue, jane):
    service = WorkItemUpdateService(
        WorkItemRepository(db_path), UserRepository(db_path), queue,
        clock=lambda: NOW, require_resolution_to_close=True,
    )
    with pytest.raises(ValidationError):
        await service.apply_update(TICKET, "tkt-assigned", {"status": "Closed"}, jane)


# =============================================================================
# Reload after commit
# =============================================================================

async def test_reload_failure_after_commit_returns_committed_state(
    service, queue, query, admin, monkeypatch
):
    async def broken_get(kind, item_id):
        raise StorageError("database is locked")

    monkeypatch.setattr(service.assembler.items, "get", broken_get)

    item = await service.apply_update(TICKET, "tkt-assigned", {"status": "Closed"}, admin)

    assert item.status == "Closed"
    assert item.closed_at == NOW
    assert item.updated_at == NOW
    assert item.number == 101
    assert item.submitter_email == "carol@example.com"
    assert item.missing_relations == ["assignee", "submitter", "tags", "updates"]

    assert ticket_row(query, "tkt-assigned")["status"] == "Closed"
    assert len(ticket_comments(query, "tkt-assigned")) == 2
    assert [t.template_key for t in queue.tasks] == ["closed"]


async def test_task_vanishing_after_commit_is_not_an_error(service, queue, jane, monkeypatch):
    async def missing_get(kind, item_id):
        return None

    monkeypatch.setattr(service.assembler.items, "get", missing_get)

    item = await service.apply_update(TASK, "task-active", {"status": "Completed"}, jane)

    assert item.kind == TASK
    assert item.status == "Completed"
    assert item.closed_at == NOW
    assert item.created_by_user_id == BOB_ID
    assert item.submitter_email is None
    assert item.assignee is None
    assert "updates" in item.missing_relations
    assert len(queue.tasks) == 1
