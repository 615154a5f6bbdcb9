"""Tidewatch — Base Collector."""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

logger = logging.getLogger("tidewatch.collector")

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


class BaseCollector:
    """Base class for Tidewatch data sources.

    Owns the collector's lifecycle (``start`` / ``stop``) and a lazily created
    shared ``httpx.AsyncClient``. A client may be injected, which is how tests
    plug in ``httpx.MockTransport``.
    """

    def __init__(self, name: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.name = name
        self._timeout = timeout
        self._running = False
        self._http_client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None
        self._last_fetch: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_fetch(self) -> Optional[datetime]:
        return self._last_fetch

    async def start(self):
        self._running = True
        logger.info("[%s] Collector started", self.name)

    async def stop(self):
        self._running = False
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("[%s] Collector stopped", self.name)

    def _client(self) -> httpx.AsyncClient:
        if not self._http_client:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
            self._owns_client = True
        return self._http_client

    async def fetch_json(self, url: str, params: dict = None) -> dict:
        """Helper to fetch JSON from a URL."""
        resp = await self._client().get(url, params=params, headers={"Cache-Control": "no-store"})
        resp.raise_for_status()
        self._last_fetch = datetime.now(timezone.utc)
        return resp.json()

    async def fetch_text(self, url: str, headers: dict = None) -> str:
        """Helper to fetch a page body as text."""
        resp = await self._client().get(url, headers=headers)
        resp.raise_for_status()
        self._last_fetch = datetime.now(timezone.utc)
        return resp.text
