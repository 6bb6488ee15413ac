"""
Tests for the request status state machine and field presence rules.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.models.join_request import ALLOWED_TRANSITIONS, JoinRequest, JoinRequestStatus, can_transition
from app.schemas.join_request import JoinRequestResponse

TERMINAL = [
    JoinRequestStatus.APPROVED,
    JoinRequestStatus.DECLINED,
    JoinRequestStatus.EXPIRED,
    JoinRequestStatus.CANCELLED,
]

NOW = datetime(2026, 6, 1, 18, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("target", ["approved", "declined", "waitlisted", "cancelled", "expired"])
def test_pending_moves_anywhere(target):
    assert can_transition("pending", target)


def test_waitlisted_moves():
    assert can_transition("waitlisted", "approved")
    assert can_transition("waitlisted", "cancelled")
    assert not can_transition("waitlisted", "declined")
    assert not can_transition("waitlisted", "expired")
    assert not can_transition("waitlisted", "pending")


@pytest.mark.parametrize("status", TERMINAL)
def test_terminal_states(status):
    assert ALLOWED_TRANSITIONS[status] == frozenset()
    for target in JoinRequestStatus:
        assert not can_transition(status.value, target.value)


def test_unknown_status_rejected():
    with pytest.raises(ValueError):
        can_transition("pending", "accepted")


def test_party_size_is_immutable():
    request = JoinRequest(event_id=1, user_id=1, party_size=2, status="pending", hold_expires_at=NOW)
    with pytest.raises(ValueError):
        request.party_size = 3


def test_party_size_positive():
    with pytest.raises(ValueError):
        JoinRequest(event_id=1, user_id=1, party_size=0, status="pending", hold_expires_at=NOW)


def test_note_length():
    with pytest.raises(ValueError):
        JoinRequest(event_id=1, user_id=1, party_size=1, note="x" * 501, status="pending", hold_expires_at=NOW)


def test_invariants_tie_fields_to_status():
    JoinRequest(event_id=1, user_id=1, party_size=1, status="pending", hold_expires_at=NOW).check_invariants()
    JoinRequest(event_id=1, user_id=1, party_size=1, status="waitlisted", waitlist_pos=1).check_invariants()

    with pytest.raises(ValueError):
        JoinRequest(event_id=1, user_id=1, party_size=1, status="pending").check_invariants()
    with pytest.raises(ValueError):
        JoinRequest(event_id=1, user_id=1, party_size=1, status="approved", hold_expires_at=NOW).check_invariants()
    with pytest.raises(ValueError):
        JoinRequest(event_id=1, user_id=1, party_size=1, status="waitlisted").check_invariants()
    with pytest.raises(ValueError):
        JoinRequest(event_id=1, user_id=1, party_size=1, status="declined", waitlist_pos=2).check_invariants()


def test_response_model_enforces_presence():
    base = {
        "id": 1,
        "event_id": 1,
        "user_id": 1,
        "party_size": 2,
        "created_at": NOW,
        "updated_at": NOW,
    }
    JoinRequestResponse(**base, status="pending", hold_expires_at=NOW)
    JoinRequestResponse(**base, status="waitlisted", waitlist_pos=3)
    JoinRequestResponse(**base, status="approved")

    with pytest.raises(ValidationError):
        JoinRequestResponse(**base, status="pending")
    with pytest.raises(ValidationError):
        JoinRequestResponse(**base, status="approved", waitlist_pos=1)


@pytest.mark.parametrize("value,expected", [(45, 45), (5, 5), (120, 120), (4, 30), (121, 30), ("soon", 30)])
def test_hold_ttl_falls_back_to_default(value, expected):
    assert Settings(JOIN_HOLD_TTL_MIN=value).JOIN_HOLD_TTL_MIN == expected
