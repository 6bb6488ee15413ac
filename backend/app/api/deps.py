"""
Shared route dependencies.

Tests override `get_clock` and `get_notifier` to control time and to
capture notifications.
"""

from datetime import datetime
from typing import Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import utcnow
from app.db.session import get_db
from app.services.interfaces.notifier import Notifier
from app.services.join_request_service import JoinRequestService
from app.services.notifier_factory import get_notifier


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_request_service(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> JoinRequestService:
    return JoinRequestService(db, notifier=notifier, clock=clock)
