"""
Default event-state and authorization providers backed by the local
`events` and `event_cohosts` tables.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import EventNotFound
from app.models.event import Event, EventCoHost
from app.services.interfaces.access import AuthorizationProvider, EventRole, EventState, EventStateProvider


class DatabaseEventStateProvider(EventStateProvider):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_event(self, event_id: int) -> EventState:
        event = await self.db.get(Event, event_id)
        if event is None:
            raise EventNotFound(event_id)
        return EventState(
            id=event.id,
            host_id=event.host_id,
            capacity_total=event.capacity_total,
            status=event.status,
        )

    async def is_editable(self, event_id: int) -> bool:
        event = await self.db.get(Event, event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event.is_editable


class DatabaseAuthorizationProvider(AuthorizationProvider):
    def __init__(self, db: AsyncSession, events: EventStateProvider):
        self.db = db
        self.events = events

    async def get_role(self, event_id: int, user_id: int) -> EventRole:
        event = await self.events.get_event(event_id)
        if event.host_id == user_id:
            return EventRole.HOST

        cohost = await self.db.scalar(
            select(EventCoHost.id).where(
                EventCoHost.event_id == event_id,
                EventCoHost.user_id == user_id,
            )
        )
        return EventRole.COHOST if cohost is not None else EventRole.GUEST
