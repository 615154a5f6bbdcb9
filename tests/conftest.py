from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from backend.models import BoundingBox, Preset
from tracking.store import VesselStore

_CLOSED = object()

SAVANNAH = Preset(
    name="sav",
    reference={"lat": 32.0809, "lon": -81.0912},
    bbox=[[31.968366, -81.169962], [32.190078, -80.623403]],
)
NEW_YORK = Preset(
    name="ny",
    reference={"lat": 40.7128, "lon": -74.006},
    bbox=[[40.45, -74.35], [40.95, -73.6]],
)


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(_CLOSED)

    def feed(self, frame: Any) -> None:
        self._frames.put_nowait(frame)

    def hang_up(self) -> None:
        self._frames.put_nowait(_CLOSED)

    def fail(self, error: Exception) -> None:
        self._frames.put_nowait(error)

    def __aiter__(self) -> "FakeSocket":
        return self

    async def __anext__(self) -> Any:
        frame = await self._frames.get()
        if frame is _CLOSED:
            raise StopAsyncIteration
        if isinstance(frame, Exception):
            raise frame
        return frame


class FakeConnector:
    """Callable replacing ``websockets.connect``; records every socket it opens."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.calls: list[dict] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str, **kwargs: Any) -> FakeSocket:
        self.calls.append({"url": url, **kwargs})
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        sock = FakeSocket()
        self.sockets.append(sock)
        return sock

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


def position_frame(mmsi: str, lat: float, lon: float, **extra: Any) -> str:
    report = {"UserID": int(mmsi), "Latitude": lat, "Longitude": lon, **extra}
    return json.dumps({
        "MessageType": "PositionReport",
        "MetaData": {"MMSI": int(mmsi)},
        "Message": {"PositionReport": report},
    })


def static_frame(mmsi: str, imo: str, name: str = "") -> str:
    return json.dumps({
        "MessageType": "ShipStaticData",
        "MetaData": {"MMSI": int(mmsi)},
        "Message": {"ShipStaticData": {"UserID": int(mmsi), "ImoNumber": int(imo), "Name": name}},
    })


async def drain() -> None:
    """Let the reader task consume whatever is queued."""
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.fixture
def store() -> VesselStore:
    return VesselStore()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def sav_bbox() -> BoundingBox:
    return SAVANNAH.bbox


@pytest.fixture
def ny_bbox() -> BoundingBox:
    return NEW_YORK.bbox
