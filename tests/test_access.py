"""
tests/test_access.py
Unit tests for helpdesk_engine/services/access.py.
"""

import pytest

from helpdesk_engine.models import Requester, UserRole, WorkItemKind, WorkItemSnapshot
from helpdesk_engine.services import AccessGuard, ForbiddenError


def snapshot(assignee_id="u-jane", creator_id="u-carol"):
    return WorkItemSnapshot(
        kind=WorkItemKind.TICKET,
        id="tkt-1",
        number=1,
        title="VPN drops",
        status="Assigned",
        assignee_id=assignee_id,
        creator_id=creator_id,
    )


@pytest.mark.parametrize("requester, reason", [
    (None, "system"),
    (Requester(id="u-admin", role=UserRole.ADMIN), "admin"),
    (Requester(id="u-carol"), "creator"),
    (Requester(id="u-jane"), "assignee"),
])
def test_grant_reasons(requester, reason):
    assert AccessGuard().grant_reason(snapshot(), requester) == reason


def test_unassigned_item_can_be_claimed_by_anyone():
    guard = AccessGuard()
    assert guard.require_update_access(snapshot(assignee_id=None), Requester(id="u-mallory")) == "claim"


def test_unrelated_staff_is_forbidden():
    guard = AccessGuard()
    assert not guard.is_authorized(snapshot(), Requester(id="u-mallory"))
    with pytest.raises(ForbiddenError, match="Not authorized to update this ticket"):
        guard.require_update_access(snapshot(), Requester(id="u-mallory"))


def test_ticket_without_matching_user_has_no_creator():
    guard = AccessGuard()
    item = snapshot(creator_id=None)
    assert guard.grant_reason(item, Requester(id="u-mallory")) is None
