"""
Notifier factory.
Configures which notification backend to use.
"""

from app.core.config import get_settings
from app.services.interfaces.notifier import Notifier
from app.services.notifiers import LoggingNotifier, RedisNotifier


def build_notifier() -> Notifier:
    """
    Build the configured notifier.

    Selection via NOTIFIER_BACKEND:
    - "redis": RedisNotifier (falls back to logging while Redis is down)
    - "log": LoggingNotifier
    """
    backend = get_settings().NOTIFIER_BACKEND

    if backend == 'redis':
        return RedisNotifier()
    else:
        return LoggingNotifier()


# Singleton instance
_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    """Get notifier singleton."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier
