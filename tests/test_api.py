from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import pytest
from fastapi.testclient import TestClient

from backend import main
from collectors.ais_collector import AisStreamCollector
from collectors.schedule_collector import ScheduleCollector
from collectors.vessel_info_collector import VesselInfoCollector
from conftest import NEW_YORK, SAVANNAH, FakeConnector
from tracking.snapshot import SnapshotBuilder
from tracking.store import VesselStore

NOW = datetime(2026, 1, 15, 14, 0, tzinfo=ZoneInfo("America/New_York"))


def _provide(value):
    # Overrides must take no parameters or FastAPI reads them as query params
    return lambda: value


def _client_for(builder: SnapshotBuilder, monkeypatch: pytest.MonkeyPatch, **overrides) -> TestClient:
    monkeypatch.setattr(main, "collectors", [builder.connection])
    main.app.dependency_overrides[main.get_snapshot_builder] = _provide(builder)
    for dependency, value in overrides.items():
        main.app.dependency_overrides[getattr(main, dependency)] = _provide(value)
    return TestClient(main.app)


@pytest.fixture
def builder(store: VesselStore, connector: FakeConnector) -> SnapshotBuilder:
    ais = AisStreamCollector(store, api_key="test-key", connect=connector)
    return SnapshotBuilder(ais, {"sav": SAVANNAH, "ny": NEW_YORK})


@pytest.fixture(autouse=True)
def _reset_overrides() -> Iterator[None]:
    yield
    main.app.dependency_overrides.clear()


def test_root_reports_status(builder: SnapshotBuilder, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client_for(builder, monkeypatch) as client:
        body = client.get("/").json()
    assert body["status"] == "operational"
    assert "ais_state" in body


def test_ais_live_returns_ranked_snapshot(builder: SnapshotBuilder, store: VesselStore,
                                          monkeypatch: pytest.MonkeyPatch) -> None:
    with _client_for(builder, monkeypatch) as client:
        first = client.get("/api/ais-live", params={"preset": "sav"})
        assert first.status_code == 200
        assert first.json()["count"] == 0

        store.apply_position("366123456", SAVANNAH.reference.lat, SAVANNAH.reference.lon, sog=5.2, cog=180)
        resp = client.get("/api/ais-live", params={"preset": "SAV", "limit": 10})

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["preset"] == "sav"
    assert body["count"] == 1
    assert body["referencePoint"] == {"lat": 32.0809, "lon": -81.0912}
    assert body["boundingBox"] == [[31.968366, -81.169962], [32.190078, -80.623403]]
    assert body["connectionDiagnostics"]["state"] == "OPEN"
    assert body["connectionDiagnostics"]["live"] is True

    vessel = body["vessels"][0]
    assert vessel["mmsi"] == "366123456"
    assert vessel["sog"] == 5.2
    assert vessel["cog"] == 180
    assert vessel["distanceMi"] == pytest.approx(0.0, abs=1e-6)
    assert {"imo", "name", "shipType", "lastSeenISO", "bearingDeg"} <= vessel.keys()


def test_ais_live_missing_key_is_structured_error(store: VesselStore, connector: FakeConnector,
                                                  monkeypatch: pytest.MonkeyPatch) -> None:
    ais = AisStreamCollector(store, api_key="", connect=connector)
    builder = SnapshotBuilder(ais, {"sav": SAVANNAH})

    with _client_for(builder, monkeypatch) as client:
        resp = client.get("/api/ais-live")

    assert resp.status_code == 500
    body = resp.json()
    assert body["ok"] is False
    assert body["preset"] == "sav"
    assert body["error"] == "Missing AISSTREAM_API_KEY"
    assert body["connectionDiagnostics"]["state"] == "DISCONNECTED"
    assert connector.calls == []


def test_vessel_lookup(builder: SnapshotBuilder, store: VesselStore, monkeypatch: pytest.MonkeyPatch) -> None:
    store.apply_position("366123456", 32.0, -81.0)
    store.apply_static("366123456", imo="9123456", name="EVER TEST")

    with _client_for(builder, monkeypatch) as client:
        by_imo = client.get("/api/vessels/IMO:9123456")
        by_mmsi = client.get("/api/vessels/MMSI:366123456")
        missing = client.get("/api/vessels/MMSI:999999999")
        bad = client.get("/api/vessels/callsign:WDC1234")

    assert by_imo.status_code == 200
    assert by_imo.json()["vessel"] == by_mmsi.json()["vessel"]
    assert by_imo.json()["vessel"]["name"] == "EVER TEST"
    assert missing.status_code == 404
    assert bad.status_code == 400
    assert bad.json()["ok"] is False


def test_presets_listing(builder: SnapshotBuilder, monkeypatch: pytest.MonkeyPatch) -> None:
    with _client_for(builder, monkeypatch) as client:
        body = client.get("/api/presets").json()

    assert body["count"] == 2
    assert [p["name"] for p in body["presets"]] == ["sav", "ny"]
    assert body["presets"][1]["boundingBox"] == [[40.45, -74.35], [40.95, -73.6]]


def _schedule(handler) -> ScheduleCollector:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ScheduleCollector("https://feed.test/vessels.json", client=client, clock=lambda: NOW)


def test_next_events(builder: SnapshotBuilder, monkeypatch: pytest.MonkeyPatch) -> None:
    rows = [{"name": "EVER TEST", "imo": "9123456", "eta_date": "01/15/26", "eta_time": "14:30"}]
    schedule = _schedule(lambda request: httpx.Response(200, json={"data": rows}))

    with _client_for(builder, monkeypatch, get_schedule_collector=schedule) as client:
        resp = client.get("/api/next-events", params={"window": "2h", "dir": "next"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["window"] == "2h"
    assert body["dir"] == "next"
    assert body["totalInWindow"] == 1
    event = body["events"][0]
    assert event["vesselName"] == "EVER TEST"
    assert event["type"] == "ARRIVAL"
    assert event["timeType"] == "ESTIMATED"
    assert event["timeLabel"] == "1/15/26 2:30 PM"


def test_next_events_feed_failure_is_502(builder: SnapshotBuilder, monkeypatch: pytest.MonkeyPatch) -> None:
    schedule = _schedule(lambda request: httpx.Response(500, text="boom"))

    with _client_for(builder, monkeypatch, get_schedule_collector=schedule) as client:
        resp = client.get("/api/next-events")

    assert resp.status_code == 502
    assert resp.json()["ok"] is False


def _vessel_info(handler) -> VesselInfoCollector:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VesselInfoCollector("https://example.test/details/{imo}", client=client)


def test_vessel_info(builder: SnapshotBuilder, monkeypatch: pytest.MonkeyPatch) -> None:
    page = '<td>Flag</td><td class="v3">Panama</td><td>Length overall</td><td>366 m</td>'
    info = _vessel_info(lambda request: httpx.Response(200, text=page))

    with _client_for(builder, monkeypatch, get_vessel_info_collector=info) as client:
        ok = client.get("/api/vessel-info", params={"imo": "9123456"})
        bad = client.get("/api/vessel-info", params={"imo": "12"})

    assert ok.status_code == 200
    assert ok.json()["flag"] == "Panama"
    assert ok.json()["lengthM"] == "366 m"
    assert bad.status_code == 400


def test_vessel_info_upstream_failure_is_502(builder: SnapshotBuilder, monkeypatch: pytest.MonkeyPatch) -> None:
    info = _vessel_info(lambda request: httpx.Response(403, text="denied"))

    with _client_for(builder, monkeypatch, get_vessel_info_collector=info) as client:
        resp = client.get("/api/vessel-info", params={"imo": "9123456"})

    assert resp.status_code == 502
    assert resp.json() == {"ok": False}
