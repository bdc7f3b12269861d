"""
Preview availability detector.

The website mission starts a dev server as a side effect. While the viewer
is running we probe its address on a fixed interval; the first answer of
any kind means it is up, and we stop probing for good.
"""

import logging
from typing import Any, Callable, Optional

import httpx

from ..config import DEFAULT_PREVIEW_URL, PREVIEW_POLL_INTERVAL
from .scheduler import TaskScope

logger = logging.getLogger(__name__)

PREVIEW_TASK = "preview-poll"


class PreviewDetector:
    """One-shot detector for the website preview server."""

    def __init__(
        self,
        url: str = DEFAULT_PREVIEW_URL,
        interval: float = PREVIEW_POLL_INTERVAL,
        on_found: Optional[Callable[[str], Any]] = None,
        scope: Optional[TaskScope] = None,
        client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient
    ):
        self.url = url
        self.interval = interval
        self.on_found = on_found
        self.scope = scope or TaskScope()
        self.client_factory = client_factory
        self.found = False
        self.probes = 0

    @property
    def polling(self) -> bool:
        return self.scope.is_active(PREVIEW_TASK)

    def start(self):
        """Start polling; a no-op once the preview was found."""
        if self.found:
            return
        self.scope.periodic(PREVIEW_TASK, self.interval, self.probe, immediate=True)

    def stop(self):
        self.scope.cancel(PREVIEW_TASK)

    async def probe(self) -> bool:
        """
        Probe the preview address once.

        Returns:
            True if the preview is (or was already) reachable
        """
        if self.found:
            return True

        self.probes += 1
        try:
            async with self.client_factory() as client:
                await client.get(self.url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Preview not reachable yet at {self.url}: {e}")
            return False

        if self.found:
            return True
        self.found = True
        self.stop()
        logger.info(f"Live preview available at {self.url}")
        if self.on_found is not None:
            self.on_found(self.url)
        return True
