"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .access import AuthorizationProvider, EventRole, EventState, EventStateProvider, HOST_ROLES
from .notifier import Notifier

__all__ = [
    'AuthorizationProvider', 'EventRole', 'EventState', 'EventStateProvider', 'HOST_ROLES',
    'Notifier',
]
