"""
Event model as seen by the join request engine.

Events are created and edited by the event component; this service only
reads `capacity_total`, `status` and the host columns. The event row is
also the lock that serializes every capacity decision for that event.
"""

import enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, UniqueConstraint

from app.db.base import Base, TimestampMixin


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


EDITABLE_EVENT_STATUSES = (EventStatus.DRAFT.value, EventStatus.PUBLISHED.value)


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    host_id = Column(Integer, nullable=False, index=True)
    capacity_total = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=EventStatus.PUBLISHED.value)

    __table_args__ = (
        CheckConstraint("capacity_total >= 1", name="check_event_capacity_positive"),
        CheckConstraint(
            "status IN ('draft', 'published', 'cancelled', 'completed')",
            name="check_event_status",
        ),
    )

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_EVENT_STATUSES

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, capacity={self.capacity_total}, status={self.status})>"


class EventCoHost(Base, TimestampMixin):
    __tablename__ = "event_cohosts"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_cohost"),
    )
