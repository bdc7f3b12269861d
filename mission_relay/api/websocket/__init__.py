"""
WebSocket module for the mission relay
Pushes status envelopes from the relay to connected viewers
"""

from .manager import ConnectionManager
from .handlers import websocket_route

__all__ = [
    'ConnectionManager',
    'websocket_route',
]
