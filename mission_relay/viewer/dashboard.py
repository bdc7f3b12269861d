"""
Viewer lifecycle controller.

Drives one viewer through setup -> running -> complete: launches the
missions through the relay's control endpoints, runs the push channel and
preview detector while running, folds envelopes through the reconciler and
switches to the complete stage once, after the settle delay, when every
mission has finished.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

import httpx
import websockets

from ..config import ViewerSettings
from ..models.schemas import LaunchConfig, StatusEnvelope
from .channel import PushChannelClient
from .control_client import ControlClient, ControlError
from .preview import PreviewDetector
from .reconciler import MissionReconciler, Stage, ViewerSession
from .render import MissionSummary
from .scheduler import TaskScope

logger = logging.getLogger(__name__)

SETTLE_TASK = "settle"
STALL_TASK = "stall-check"


class Viewer:
    """One connected viewer and the timers it owns."""

    def __init__(
        self,
        settings: Optional[ViewerSettings] = None,
        control: Optional[ControlClient] = None,
        connect: Callable[..., Any] = websockets.connect,
        preview_client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize a viewer.

        Args:
            settings: Viewer settings (environment defaults if omitted)
            control: Client for the relay's control endpoints
            connect: WebSocket connect factory for the push channel
            preview_client_factory: HTTP client factory for preview probes
            clock: Time source for log and timeline entries
        """
        self.settings = settings or ViewerSettings.from_env()
        self.clock = clock
        self.session = ViewerSession(missions=self.settings.missions, clock=clock)
        self.reconciler = MissionReconciler(self.session)
        self.scope = TaskScope()
        self.control = control or ControlClient(self.settings.server_url)

        self.channel = PushChannelClient(
            self.settings.websocket_url,
            on_envelope=self.handle_envelope,
            on_open=self._on_channel_open,
            should_reconnect=self.is_running,
            reconnect_interval=self.settings.reconnect_interval,
            scope=self.scope,
            connect=connect
        )
        self.preview = PreviewDetector(
            self.settings.preview_url,
            interval=self.settings.preview_interval,
            on_found=self._on_preview_found,
            scope=self.scope,
            client_factory=preview_client_factory
        )

        self.summaries: Optional[List[MissionSummary]] = None
        self._completed = asyncio.Event()

    @property
    def stage(self) -> Stage:
        return self.session.stage

    def is_running(self) -> bool:
        return self.session.stage is Stage.RUNNING

    async def launch(self, config: LaunchConfig) -> bool:
        """
        Save the config, start the missions and enter the running stage.

        Returns:
            True if the relay accepted the launch
        """
        try:
            await self.control.save_config(config)
            result = await self.control.launch()
        except ControlError as e:
            logger.error(f"Launch failed: {e}")
            return False

        if result.get("status") != "launching":
            logger.error(f"Unexpected launch response: {result}")
            return False

        self.start()
        return True

    def start(self):
        """Enter the running stage and start the channel and preview polling."""
        if self.session.stage is not Stage.SETUP:
            return
        self.reconciler.start()
        logger.info("Viewer running")

        self.channel.connect()
        self.preview.start()
        if self.settings.stall_timeout > 0:
            self.scope.periodic(STALL_TASK, self.settings.stall_check_interval, self._check_stalls)

    def handle_envelope(self, envelope: StatusEnvelope):
        if self.reconciler.apply(envelope):
            self.scope.later(SETTLE_TASK, self.settings.settle_delay, self.complete)

    async def complete(self):
        """Tear down and switch to the complete stage; runs at most once."""
        if self.session.stage is not Stage.RUNNING:
            return
        await self.disconnect()

        summaries = self.reconciler.finish()
        if summaries is None:
            return
        self.summaries = summaries
        logger.info("Viewer complete")
        self._completed.set()

    async def stop_agents(self) -> bool:
        """
        Ask the relay to kill the agent processes.

        The viewer keeps running; completion or disconnect() end it.
        """
        try:
            await self.control.stop()
        except ControlError as e:
            logger.error(f"Stop failed: {e}")
            return False
        self.session.add_timeline("website", "All agents stopped by user")
        return True

    async def disconnect(self):
        """Cancel every timer and close the channel; safe to call repeatedly."""
        self.preview.stop()
        self.scope.cancel_all()
        await self.channel.disconnect()

    async def wait_complete(self, timeout: Optional[float] = None) -> List[MissionSummary]:
        await asyncio.wait_for(self._completed.wait(), timeout)
        return self.summaries or []

    def _on_channel_open(self):
        for mission in self.session.missions:
            self.session.add_log(mission, "Connected to coordination server")

    def _on_preview_found(self, url: str):
        self.session.preview_url = url
        self.session.add_log("website", f"Live preview available at {url}")
        self.session.add_timeline("website", "Website preview is live")

    def _check_stalls(self):
        self.reconciler.check_stalls(self.clock(), self.settings.stall_timeout)

    async def __aenter__(self) -> "Viewer":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()
