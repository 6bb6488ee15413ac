"""
Collaborator interfaces for event state and host authorization.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass


class EventRole(str, enum.Enum):
    HOST = "host"
    COHOST = "cohost"
    GUEST = "guest"


HOST_ROLES = (EventRole.HOST, EventRole.COHOST)


@dataclass(frozen=True)
class EventState:
    id: int
    host_id: int
    capacity_total: int
    status: str


class EventStateProvider(ABC):
    """Read-only view of events owned by the event component."""

    @abstractmethod
    async def get_event(self, event_id: int) -> EventState:
        """Return the event or raise EventNotFound."""
        pass

    @abstractmethod
    async def is_editable(self, event_id: int) -> bool:
        pass


class AuthorizationProvider(ABC):
    """Resolves a user's role on an event."""

    @abstractmethod
    async def get_role(self, event_id: int, user_id: int) -> EventRole:
        pass
