"""Tidewatch — Scheduled Moves Collector (port authority vessel schedule).

The feed is a JSON document with a ``data`` array of berth rows. Each row may
carry estimated (ETA/ETD) and actual (ATA/ATD) times as separate
``MM/DD/YY`` + ``HH:MM`` strings in port-local time. An actual time, when it
parses, always beats the estimate.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import httpx

from backend.models import MoveType, ScheduleWindow, TimeType, VesselEvent
from collectors.base_collector import BaseCollector
from tracking.decoder import valid_imo
from tracking.exceptions import FeedError

logger = logging.getLogger("tidewatch.collector")

SOURCE_URL = "https://gaports.com/wp-content/uploads/ftp-files/vessel_gct_data.json"
PORT_TIMEZONE = "America/New_York"

WINDOWS = {
    "1h": timedelta(hours=1),
    "2h": timedelta(hours=2),
    "3h": timedelta(hours=3),
    "24h": timedelta(hours=24),
}
DEFAULT_WINDOW = "1h"

DIRECTIONS = ("next", "past")

# (move type, actual date/time keys, estimated date/time keys)
MOVES = (
    (MoveType.ARRIVAL, ("ata_date", "ata_time"), ("eta_date", "eta_time")),
    (MoveType.DEPARTURE, ("atd_date", "atd_time"), ("etd_date", "etd_time")),
)


def parse_local(date_str: Optional[str], time_str: Optional[str], tz: ZoneInfo) -> Optional[datetime]:
    d = (date_str or "").strip()
    t = (time_str or "").strip()
    if not d or not t:
        return None
    try:
        return datetime.strptime(f"{d} {t}", "%m/%d/%y %H:%M").replace(tzinfo=tz)
    except ValueError:
        return None


def best_time(row: dict, actual: tuple[str, str], estimated: tuple[str, str], tz: ZoneInfo):
    """Return ``(datetime, TimeType)`` preferring the actual time, or ``(None, None)``."""
    dt = parse_local(row.get(actual[0]), row.get(actual[1]), tz)
    if dt is not None:
        return dt, TimeType.ACTUAL
    dt = parse_local(row.get(estimated[0]), row.get(estimated[1]), tz)
    if dt is not None:
        return dt, TimeType.ESTIMATED
    return None, None


def time_label(dt: datetime) -> str:
    """``M/D/YY h:mm AM`` without zero padding on month, day or hour."""
    hour = dt.hour % 12 or 12
    return f"{dt.month}/{dt.day}/{dt:%y} {hour}:{dt:%M} {'AM' if dt.hour < 12 else 'PM'}"


def _text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_schedule(
    rows: list[dict],
    now: datetime,
    window: str = DEFAULT_WINDOW,
    direction: str = "next",
    tz: ZoneInfo = ZoneInfo(PORT_TIMEZONE),
) -> ScheduleWindow:
    """Select the arrivals/departures falling inside the requested window."""
    window = (window or "").lower()
    if window not in WINDOWS:
        window = DEFAULT_WINDOW
    direction = (direction or "").lower()
    if direction not in DIRECTIONS:
        direction = "next"

    now = now.astimezone(tz)
    if direction == "next":
        start, end = now, now + WINDOWS[window]
    else:
        start, end = now - WINDOWS[window], now

    events: list[VesselEvent] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        for move_type, actual, estimated in MOVES:
            dt, time_type = best_time(row, actual, estimated, tz)
            if dt is None or not (start <= dt <= end):
                continue
            events.append(VesselEvent(
                type=move_type,
                time=dt,
                time_label=time_label(dt),
                time_type=time_type,
                vessel_name=_text(row.get("name")) or "Unknown",
                imo=valid_imo(row.get("imo")),
                service=_text(row.get("service")),
                operator=_text(row.get("vsl_operator")),
                berth=_text(row.get("berth")),
                status=_text(row.get("status")),
            ))

    events.sort(key=lambda e: e.time, reverse=(direction == "past"))
    return ScheduleWindow(
        window=window,
        direction=direction,
        now=now,
        window_start=start,
        window_end=end,
        events=events,
        total_in_window=len(events),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleCollector(BaseCollector):
    """Fetches the port schedule feed on demand and windows it."""

    def __init__(
        self,
        source_url: str = SOURCE_URL,
        timezone_name: str = PORT_TIMEZONE,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        super().__init__(name="schedule", client=client)
        self.source_url = source_url
        self._tz = ZoneInfo(timezone_name)
        self._clock = clock

    async def collect(self, window: str = DEFAULT_WINDOW, direction: str = "next") -> ScheduleWindow:
        try:
            payload = await self.fetch_json(self.source_url)
        except httpx.HTTPStatusError as e:
            raise FeedError(
                f"Failed to fetch source JSON: {e.response.status_code}",
                status_code=e.response.status_code,
                url=self.source_url,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise FeedError(f"Failed to fetch source JSON: {e}", url=self.source_url) from e

        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            logger.warning("[%s] Feed has no 'data' array", self.name)
            rows = []

        result = build_schedule(rows, self._clock(), window, direction, self._tz)
        logger.info("[%s] %d moves in %s %s window (of %d rows)", self.name, result.total_in_window,
                    result.direction, result.window, len(rows))
        return result
