"""
WebSocket Connection Manager for the mission relay
Holds the open viewer channels and fans status envelopes out to them
"""

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from ...models.schemas import StatusEnvelope

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Broadcast hub for viewer channels.

    Delivery is best effort: channels that are not open are skipped, and
    nothing is queued for them. The registry only tracks membership; the
    endpoint that accepted a channel owns its lifecycle.
    """

    def __init__(self, replay_on_connect: bool = True):
        """
        Initialize the connection manager

        Args:
            replay_on_connect: Send the last envelope of every mission to
                channels as they connect
        """
        self._channels: "weakref.WeakSet[WebSocket]" = weakref.WeakSet()
        self._connected_at: "weakref.WeakKeyDictionary[WebSocket, datetime]" = weakref.WeakKeyDictionary()
        self.replay_on_connect = replay_on_connect
        self.latest: Dict[str, StatusEnvelope] = {}
        # Held across replay and publish so per-mission frames stay in write order
        self._lock = asyncio.Lock()
        self.stats = {
            "envelopes_published": 0,
            "messages_sent": 0,
            "send_failures": 0,
        }
        logger.info("WebSocket ConnectionManager initialized")

    def register(self, websocket: WebSocket):
        self._channels.add(websocket)
        self._connected_at.setdefault(websocket, datetime.now(timezone.utc))
        logger.info(f"Viewer connected. Total connections: {len(self._channels)}")

    def unregister(self, websocket: WebSocket):
        if websocket not in self._channels:
            return
        self._channels.discard(websocket)
        self._connected_at.pop(websocket, None)
        logger.info(f"Viewer disconnected. Remaining connections: {len(self._channels)}")

    async def connect(self, websocket: WebSocket):
        """
        Accept a new viewer channel and register it

        When replay is enabled the channel first receives the last known
        envelope of every mission, so a reconnecting viewer catches up.
        """
        await websocket.accept()
        async with self._lock:
            self.register(websocket)

            if self.replay_on_connect and self.latest:
                for envelope in list(self.latest.values()):
                    if not await self._send(websocket, envelope.to_wire()):
                        break

    def reset(self):
        """Forget cached envelopes; called when a new job is launched."""
        if self.latest:
            logger.info(f"Clearing cached status for: {', '.join(sorted(self.latest))}")
        self.latest.clear()

    async def publish(self, envelope: StatusEnvelope) -> int:
        """
        Send an envelope to every open channel

        Args:
            envelope: Status envelope to broadcast

        Returns:
            Number of channels the envelope was delivered to
        """
        async with self._lock:
            self.latest[envelope.mission] = envelope
            self.stats["envelopes_published"] += 1

            message = envelope.to_wire()
            ready = [ws for ws in list(self._channels) if self.is_open(ws)]
            if not ready:
                logger.debug(f"No open channels for {envelope.mission} update")
                return 0

            results = await asyncio.gather(*(self._send(ws, message) for ws in ready))
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"Broadcast {envelope.mission} update to {delivered}/{len(ready)} channels")
        return delivered

    async def close_all(self):
        """Close every open channel (server shutdown)."""
        for websocket in list(self._channels):
            if self.is_open(websocket):
                try:
                    await websocket.close()
                except Exception as e:
                    logger.debug(f"Error closing channel during shutdown: {e}")
            self.unregister(websocket)

    @staticmethod
    def is_open(websocket: WebSocket) -> bool:
        return (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        )

    async def _send(self, websocket: WebSocket, message: str) -> bool:
        """Send one frame; a failing channel is dropped from the registry."""
        try:
            await websocket.send_text(message)
        except Exception as e:
            self.stats["send_failures"] += 1
            logger.warning(f"Failed to send to viewer channel, dropping it: {e}")
            self.unregister(websocket)
            return False
        self.stats["messages_sent"] += 1
        return True

    def __len__(self) -> int:
        return len(self._channels)

    def get_connection_stats(self) -> Dict[str, Any]:
        """Get statistics about current connections"""
        clients: List[Dict[str, Any]] = [
            {"connected_at": connected_at.isoformat()}
            for connected_at in self._connected_at.values()
        ]
        return {
            "total_connections": len(self._channels),
            "replay_on_connect": self.replay_on_connect,
            "known_missions": sorted(self.latest),
            **self.stats,
            "clients": clients,
        }
