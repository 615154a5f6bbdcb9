from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import pytest

from backend.models import MoveType, TimeType
from collectors.schedule_collector import ScheduleCollector, build_schedule, parse_local, time_label
from tracking.exceptions import FeedError

PORT_TZ = ZoneInfo("America/New_York")
NOW = datetime(2026, 1, 15, 14, 0, tzinfo=PORT_TZ)

ROWS = [
    {"name": "ESTIMATED ONE", "imo": 9123456, "eta_date": "01/15/26", "eta_time": "14:30",
     "service": "AEX", "vsl_operator": "MSC", "berth": "CB5", "status": "Expected"},
    {"name": "ALREADY HERE", "imo": "9234567", "ata_date": "01/15/26", "ata_time": "14:10",
     "eta_date": "01/15/26", "eta_time": "16:00"},
    {"name": "LATE LEAVER", "etd_date": "01/15/26", "etd_time": "16:30"},
    {"name": "JUST LEFT", "atd_date": "01/15/26", "atd_time": "13:20"},
    {"name": "  ", "imo": "12", "eta_date": "01/15/26", "eta_time": "14:45"},
    {"eta_date": "garbage", "eta_time": "14:00"},
    "not a row",
]


def test_next_hour_prefers_actual_over_estimate() -> None:
    result = build_schedule(ROWS, NOW, "1h", "next", PORT_TZ)

    assert result.window == "1h"
    assert result.direction == "next"
    assert [e.vessel_name for e in result.events] == ["ALREADY HERE", "ESTIMATED ONE", "Unknown"]
    assert result.total_in_window == 3

    here, estimated, unknown = result.events
    assert here.type is MoveType.ARRIVAL
    assert here.time_type is TimeType.ACTUAL
    assert here.imo == "9234567"
    assert estimated.time_type is TimeType.ESTIMATED
    assert (estimated.imo, estimated.service, estimated.operator, estimated.berth, estimated.status) == (
        "9123456", "AEX", "MSC", "CB5", "Expected"
    )
    assert unknown.imo is None


def test_wider_window_includes_departures() -> None:
    result = build_schedule(ROWS, NOW, "3h", "next", PORT_TZ)

    departures = [e for e in result.events if e.type is MoveType.DEPARTURE]
    assert [e.vessel_name for e in departures] == ["LATE LEAVER"]
    # ETA of a vessel that already arrived is never reported
    assert [e.vessel_name for e in result.events].count("ALREADY HERE") == 1


def test_past_window_is_newest_first() -> None:
    result = build_schedule(ROWS, NOW, "1h", "past", PORT_TZ)

    assert result.direction == "past"
    assert [e.vessel_name for e in result.events] == ["JUST LEFT"]
    assert result.events[0].type is MoveType.DEPARTURE
    assert result.events[0].time_type is TimeType.ACTUAL
    assert result.window_end == NOW

    wide = build_schedule(
        [{"name": "A", "ata_date": "01/15/26", "ata_time": "09:00"},
         {"name": "B", "ata_date": "01/15/26", "ata_time": "12:00"}],
        NOW, "24h", "past", PORT_TZ,
    )
    assert [e.vessel_name for e in wide.events] == ["B", "A"]


def test_unknown_window_and_direction_fall_back() -> None:
    result = build_schedule(ROWS, NOW, "5h", "sideways", PORT_TZ)

    assert result.window == "1h"
    assert result.direction == "next"
    assert result.window_end - result.window_start == NOW - datetime(2026, 1, 15, 13, 0, tzinfo=PORT_TZ)


def test_window_bounds_are_inclusive() -> None:
    rows = [{"name": "EDGE", "eta_date": "01/15/26", "eta_time": "15:00"}]
    assert build_schedule(rows, NOW, "1h", "next", PORT_TZ).total_in_window == 1


def test_parse_local() -> None:
    assert parse_local("01/15/26", "14:30", PORT_TZ) == datetime(2026, 1, 15, 14, 30, tzinfo=PORT_TZ)
    assert parse_local("", "14:30", PORT_TZ) is None
    assert parse_local("01/15/26", None, PORT_TZ) is None
    assert parse_local("13/45/26", "14:30", PORT_TZ) is None


@pytest.mark.parametrize(
    ("dt", "label"),
    [
        (datetime(2026, 1, 5, 14, 30), "1/5/26 2:30 PM"),
        (datetime(2026, 11, 15, 0, 5), "11/15/26 12:05 AM"),
        (datetime(2026, 7, 4, 12, 0), "7/4/26 12:00 PM"),
        (datetime(2026, 7, 4, 9, 45), "7/4/26 9:45 AM"),
    ],
)
def test_time_label(dt: datetime, label: str) -> None:
    assert time_label(dt) == label


def _collector(handler) -> ScheduleCollector:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ScheduleCollector("https://feed.test/vessels.json", client=client, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_collect_fetches_feed_without_cache() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": ROWS})

    collector = _collector(handler)
    result = await collector.collect("1h", "next")

    assert result.total_in_window == 3
    assert seen[0].headers["Cache-Control"] == "no-store"
    assert collector.last_fetch is not None


@pytest.mark.asyncio
async def test_collect_without_data_array_is_empty() -> None:
    collector = _collector(lambda request: httpx.Response(200, json={"rows": []}))
    result = await collector.collect()
    assert result.events == []
    assert result.total_in_window == 0


@pytest.mark.asyncio
async def test_collect_http_error_raises_feed_error() -> None:
    collector = _collector(lambda request: httpx.Response(503, text="down"))

    with pytest.raises(FeedError) as excinfo:
        await collector.collect()

    assert excinfo.value.status_code == 503
    assert "503" in str(excinfo.value)


@pytest.mark.asyncio
async def test_collect_invalid_json_raises_feed_error() -> None:
    collector = _collector(lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(FeedError):
        await collector.collect()
