"""
Join request model: a guest's request for seats, holding capacity while pending.

Key design decisions:
- Partial unique index allows only one pending request per (event, user)
- CHECK constraints tie `hold_expires_at` to `pending` and
  `waitlist_pos` to `waitlisted`
- `party_size` is fixed at creation; capacity math sums it directly
- Composite index on (event_id, status, hold_expires_at) serves both the
  availability sums and the sweeper's stale-hold scan
"""

import enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import validates

from app.db.base import Base, TimestampMixin, UTCDateTime

NOTE_MAX_LENGTH = 500


class JoinRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    WAITLISTED = "waitlisted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Authoritative state machine
ALLOWED_TRANSITIONS: dict[JoinRequestStatus, frozenset[JoinRequestStatus]] = {
    JoinRequestStatus.PENDING: frozenset({
        JoinRequestStatus.APPROVED,
        JoinRequestStatus.DECLINED,
        JoinRequestStatus.WAITLISTED,
        JoinRequestStatus.CANCELLED,
        JoinRequestStatus.EXPIRED,
    }),
    JoinRequestStatus.WAITLISTED: frozenset({
        JoinRequestStatus.APPROVED,
        JoinRequestStatus.CANCELLED,
    }),
    JoinRequestStatus.APPROVED: frozenset(),
    JoinRequestStatus.DECLINED: frozenset(),
    JoinRequestStatus.EXPIRED: frozenset(),
    JoinRequestStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return JoinRequestStatus(target) in ALLOWED_TRANSITIONS[JoinRequestStatus(current)]


class JoinRequest(Base, TimestampMixin):
    __tablename__ = "event_join_requests"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, nullable=False, index=True)
    party_size = Column(Integer, nullable=False)
    note = Column(String(NOTE_MAX_LENGTH), nullable=True)
    status = Column(String(20), nullable=False, default=JoinRequestStatus.PENDING.value)
    hold_expires_at = Column(UTCDateTime(), nullable=True)
    waitlist_pos = Column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("party_size >= 1", name="check_join_request_party_size_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'declined', 'waitlisted', 'expired', 'cancelled')",
            name="check_join_request_status",
        ),
        CheckConstraint(
            "(status = 'pending') = (hold_expires_at IS NOT NULL)",
            name="check_hold_only_while_pending",
        ),
        CheckConstraint(
            "(status = 'waitlisted') = (waitlist_pos IS NOT NULL)",
            name="check_position_only_while_waitlisted",
        ),
        Index(
            "uq_join_requests_one_pending",
            "event_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_join_requests_event_status_hold", "event_id", "status", "hold_expires_at"),
        Index("ix_join_requests_waitlist", "event_id", "status", "waitlist_pos"),
        Index("ix_join_requests_event_created", "event_id", "created_at"),
    )

    @validates("party_size")
    def _validate_party_size(self, key, value):
        if self.party_size is not None and value != self.party_size:
            raise ValueError("party_size cannot change after creation")
        if value is None or value < 1:
            raise ValueError("party_size must be at least 1")
        return value

    @validates("note")
    def _validate_note(self, key, value):
        if value is not None and len(value) > NOTE_MAX_LENGTH:
            raise ValueError(f"note must be at most {NOTE_MAX_LENGTH} characters")
        return value

    @validates("status")
    def _validate_status(self, key, value):
        return JoinRequestStatus(value).value

    def check_invariants(self) -> None:
        """Raise ValueError if field presence does not match the status."""
        pending = self.status == JoinRequestStatus.PENDING
        if pending != (self.hold_expires_at is not None):
            raise ValueError("hold_expires_at must be set if and only if the request is pending")
        waitlisted = self.status == JoinRequestStatus.WAITLISTED
        if waitlisted != (self.waitlist_pos is not None):
            raise ValueError("waitlist_pos must be set if and only if the request is waitlisted")

    def __repr__(self) -> str:
        return (
            f"<JoinRequest(id={self.id}, event={self.event_id}, user={self.user_id}, "
            f"party={self.party_size}, status={self.status})>"
        )
