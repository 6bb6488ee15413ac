from app.models.event import Event, EventCoHost, EventStatus
from app.models.join_request import JoinRequest, JoinRequestStatus
from app.models.participant import Participant

__all__ = [
    "Event", "EventCoHost", "EventStatus",
    "JoinRequest", "JoinRequestStatus",
    "Participant",
]
