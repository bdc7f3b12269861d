"""
Reconnecting push-channel client.

Keeps one WebSocket open to the relay's ``/ws`` endpoint, validates each
frame as a status envelope and hands accepted envelopes to the viewer.
Lost connections are retried on a fixed interval for as long as
``should_reconnect()`` says so; once it says no, the client stays closed.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Optional, Union

import websockets
from pydantic import ValidationError

from ..config import RECONNECT_INTERVAL
from ..models.schemas import StatusEnvelope
from .scheduler import TaskScope

logger = logging.getLogger(__name__)

RECONNECT_TASK = "reconnect"


class ChannelState(Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"


def parse_status_message(raw: Union[str, bytes]) -> Optional[StatusEnvelope]:
    """
    Validate one push-channel frame.

    Returns:
        The envelope, or None for anything that is not
        ``{"type": "status", "mission": <non-empty>, "data": <non-empty object>}``
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Discarding non-UTF-8 frame")
            return None

    try:
        message = json.loads(raw)
    except ValueError:
        logger.debug("Discarding non-JSON frame")
        return None

    if not isinstance(message, dict) or message.get("type") != "status":
        logger.debug("Discarding frame that is not a status message")
        return None

    mission = message.get("mission")
    data = message.get("data")
    if not mission or not isinstance(mission, str) or not data or not isinstance(data, dict):
        logger.debug("Discarding status message without mission or data")
        return None

    try:
        return StatusEnvelope(mission=mission, data=data)
    except ValidationError as e:
        logger.debug(f"Discarding invalid status message: {e}")
        return None


class PushChannelClient:
    """
    One viewer's connection to the relay.

    State machine: CLOSED -> CONNECTING -> OPEN -> CLOSED (reconnect
    pending) -> CONNECTING ... ``disconnect()`` ends it for good.
    """

    def __init__(
        self,
        url: str,
        on_envelope: Callable[[StatusEnvelope], Any],
        on_open: Optional[Callable[[], Any]] = None,
        should_reconnect: Callable[[], bool] = lambda: True,
        reconnect_interval: float = RECONNECT_INTERVAL,
        scope: Optional[TaskScope] = None,
        connect: Callable[..., Any] = websockets.connect
    ):
        """
        Initialize the push-channel client.

        Args:
            url: WebSocket URL of the relay's push endpoint
            on_envelope: Called with every accepted envelope, in arrival order
            on_open: Called each time the channel opens
            should_reconnect: Checked before every reconnect attempt
            reconnect_interval: Seconds between reconnect attempts
            scope: Task scope that owns the reconnect timer
            connect: WebSocket connect factory
        """
        self.url = url
        self.on_envelope = on_envelope
        self.on_open = on_open
        self.should_reconnect = should_reconnect
        self.reconnect_interval = reconnect_interval
        self.scope = scope or TaskScope()
        self._connect = connect

        self.state = ChannelState.CLOSED
        self._websocket = None
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

        self.stats = {
            "connects": 0,
            "connect_attempts": 0,
            "messages_received": 0,
            "messages_discarded": 0,
        }

    @property
    def stopped(self) -> bool:
        return self._stopped

    def connect(self):
        """Open the channel; a no-op while connecting or open."""
        if self._stopped or self.state is not ChannelState.CLOSED:
            return
        self.state = ChannelState.CONNECTING
        self.stats["connect_attempts"] += 1
        self._task = asyncio.get_running_loop().create_task(self._run(), name="push-channel")

    async def disconnect(self):
        """Close the channel and cancel any pending reconnect; idempotent."""
        self._stopped = True
        self.scope.cancel(RECONNECT_TASK)

        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing push channel: {e}")

        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.state = ChannelState.CLOSED

    def handle_message(self, raw: Union[str, bytes]) -> Optional[StatusEnvelope]:
        """Validate a frame and pass it on; malformed frames are dropped."""
        self.stats["messages_received"] += 1
        envelope = parse_status_message(raw)
        if envelope is None:
            self.stats["messages_discarded"] += 1
            return None
        try:
            self.on_envelope(envelope)
        except Exception:
            logger.exception(f"Error handling {envelope.mission} envelope")
        return envelope

    async def _run(self):
        try:
            async with self._connect(self.url) as websocket:
                if self._stopped:
                    return
                self._websocket = websocket
                self.state = ChannelState.OPEN
                self.stats["connects"] += 1
                self.scope.cancel(RECONNECT_TASK)
                logger.info(f"[ws] connected to {self.url}")
                if self.on_open is not None:
                    self.on_open()

                async for raw in websocket:
                    self.handle_message(raw)
        except asyncio.CancelledError:
            raise
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.debug(f"[ws] connection lost: {e}")
        finally:
            self._websocket = None
            self.state = ChannelState.CLOSED

        logger.info("[ws] disconnected")
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        if self._stopped or not self.should_reconnect():
            return
        self.scope.periodic(RECONNECT_TASK, self.reconnect_interval, self._reconnect_tick)

    def _reconnect_tick(self):
        if self._stopped or not self.should_reconnect():
            self.scope.cancel(RECONNECT_TASK)
            return
        self.connect()
