"""Tidewatch — Vessel Particulars Collector (VesselFinder detail page).

Best-effort scrape of a public vessel-details page by IMO number. Results are
cached per IMO for a day, and concurrent requests for the same IMO share one
in-flight fetch.
"""

import asyncio
import html
import logging
import re
import time as _time
from collections.abc import Callable
from typing import Optional

import httpx

from backend.models import VesselParticulars
from collectors.base_collector import BROWSER_USER_AGENT, BaseCollector
from tracking.decoder import valid_imo
from tracking.exceptions import VesselInfoError

logger = logging.getLogger("tidewatch.collector")

DETAILS_URL = "https://www.vesselfinder.com/vessels/details/{imo}"
CACHE_TTL_SECONDS = 24 * 60 * 60

_TAG_RE = re.compile(r"<[^>]+>")

# Table row label → VesselParticulars field
PARTICULAR_LABELS = {
    "length_m": "Length overall",
    "width_m": "Breadth",
    "vessel_type": "Vessel type",
    "year_built": "Year of build",
    "gross_tonnage": "Gross tonnage",
    "flag": "Flag",
}


def extract_cell(page: str, label: str) -> Optional[str]:
    """Text of the table cell following the one labelled ``label``."""
    pattern = re.compile(
        re.escape(label) + r"\s*</td>\s*<td[^>]*>(.*?)</td>",
        re.IGNORECASE | re.DOTALL,
    )
    m = pattern.search(page)
    if not m:
        return None
    text = html.unescape(_TAG_RE.sub("", m.group(1))).strip()
    if not text or text == "-":
        return None
    return text


def parse_particulars(imo: str, page: str, source: str = "") -> VesselParticulars:
    fields = {name: extract_cell(page, label) for name, label in PARTICULAR_LABELS.items()}
    return VesselParticulars(imo=imo, source=source, **fields)


class VesselInfoCollector(BaseCollector):
    """IMO → particulars, with a TTL cache and in-flight request coalescing."""

    def __init__(
        self,
        url_template: str = DETAILS_URL,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = _time.monotonic,
    ):
        super().__init__(name="vessel-info", client=client)
        self.url_template = url_template
        self._ttl = ttl_seconds
        self._clock = clock
        # imo -> (expires_at, particulars)
        self._cache: dict[str, tuple[float, VesselParticulars]] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    async def collect(self, imo: str) -> VesselParticulars:
        """Particulars for ``imo``. Raises ValueError for a malformed IMO."""
        imo = valid_imo(imo)
        if imo is None:
            raise ValueError("IMO must be 7 digits")

        cached = self._cache.get(imo)
        if cached and cached[0] > self._clock():
            return cached[1]

        task = self._inflight.get(imo)
        if task is None:
            task = asyncio.create_task(self._fetch(imo))
            self._inflight[imo] = task
            task.add_done_callback(lambda _t, key=imo: self._inflight.pop(key, None))
        # Shared between callers: a cancelled caller must not cancel the fetch
        return await asyncio.shield(task)

    async def _fetch(self, imo: str) -> VesselParticulars:
        url = self.url_template.format(imo=imo)
        try:
            page = await self.fetch_text(url, headers={"User-Agent": BROWSER_USER_AGENT})
        except httpx.HTTPError as e:
            logger.warning("[%s] Fetch failed for IMO %s: %s", self.name, imo, e)
            raise VesselInfoError(f"VesselFinder request failed: {e}", imo=imo) from e

        result = parse_particulars(imo, page, source=url)
        now = self._clock()
        self._evict_expired(now)
        self._cache[imo] = (now + self._ttl, result)
        logger.info("[%s] Cached particulars for IMO %s", self.name, imo)
        return result

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._cache.items() if expires_at <= now]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug("[%s] Evicted %d expired entries", self.name, len(expired))

    def cache_size(self) -> int:
        return len(self._cache)

    def cached(self, imo: str) -> Optional[VesselParticulars]:
        entry = self._cache.get(imo)
        return entry[1] if entry and entry[0] > self._clock() else None
