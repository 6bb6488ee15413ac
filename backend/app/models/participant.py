"""
Accepted attendance for an event.

Rows are owned by the attendance component, but the join request engine
inserts one per approved request, inside the approval transaction.
`join_request_id` is unique so a request can never be seated twice.
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String

from app.db.base import Base, UTCDateTime, utcnow

PARTICIPANT_ACCEPTED = "accepted"


class Participant(Base):
    __tablename__ = "event_participants"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    join_request_id = Column(Integer, ForeignKey("event_join_requests.id"), nullable=True, unique=True)
    status = Column(String(20), nullable=False, default=PARTICIPANT_ACCEPTED)
    party_size = Column(Integer, nullable=False, default=1)
    joined_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("party_size >= 1", name="check_participant_party_size_positive"),
    )

    def __repr__(self) -> str:
        return f"<Participant(event={self.event_id}, user={self.user_id}, party={self.party_size})>"
