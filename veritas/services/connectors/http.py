"""
HTTP plumbing shared by the REST-backed connectors (httpx.AsyncClient).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from veritas.core.errors import FetchError
from veritas.services.connectors.base import BaseConnector

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Veritas/1.2 (narrative-insights)"


class HttpConnector(BaseConnector):
    """Connector that talks to its source through one pooled ``httpx.AsyncClient``."""

    def __init__(
        self,
        transform_engine,
        poll_interval: Optional[float] = None,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(transform_engine, poll_interval=poll_interval)
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _open_client(self, base_url: str = "", headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
        await self._close_client()
        merged = {"User-Agent": self.user_agent}
        merged.update(headers or {})
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=merged,
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )
        return self._client

    async def _close_client(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _disconnect_from_api(self) -> None:
        await self._close_client()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise FetchError(self.platform, "not connected")
        return self._client

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                self.platform, f"GET {e.request.url.path} returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(self.platform, f"GET {url} failed: {e}") from e
