"""
Services module for the relay server

Provides the status directory watcher that feeds the broadcast hub.
"""

from .watcher import StatusChangeAdapter, StatusEventHandler, StatusWatcher

__all__ = [
    'StatusChangeAdapter',
    'StatusEventHandler',
    'StatusWatcher',
]
