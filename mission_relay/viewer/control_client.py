"""HTTP client for the relay's control endpoints."""

import logging
from typing import Any, Callable, Dict, Optional

import httpx

from ..config import DEFAULT_SERVER_URL
from ..models.schemas import LaunchConfig

logger = logging.getLogger(__name__)


class ControlError(Exception):
    """A control endpoint call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ControlClient:
    """Thin async wrapper over /health, /config, /launch, /stop and /undo."""

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        timeout: float = 10.0,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None
    ):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.client_factory = client_factory or (
            lambda: httpx.AsyncClient(base_url=self.server_url, timeout=self.timeout)
        )

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            async with self.client_factory() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ControlError(f"{method} {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            raise ControlError(message or f"{method} {path} returned {response.status_code}", response.status_code)
        return body if isinstance(body, dict) else {}

    async def health(self) -> bool:
        """Liveness probe; False instead of raising when the relay is down."""
        try:
            await self._request("GET", "/health")
        except ControlError:
            return False
        return True

    async def save_config(self, config: LaunchConfig) -> Dict[str, Any]:
        return await self._request("POST", "/config", json=config.model_dump())

    async def get_config(self) -> Dict[str, Any]:
        return await self._request("GET", "/config")

    async def launch(self) -> Dict[str, Any]:
        return await self._request("POST", "/launch")

    async def stop(self) -> Dict[str, Any]:
        return await self._request("POST", "/stop")

    async def undo_documents(self) -> Dict[str, Any]:
        return await self._request("POST", "/undo/documents")

    async def create_sample_docs(self) -> Dict[str, Any]:
        return await self._request("POST", "/create-sample-docs")
