"""Tidewatch — AISStream.io Live Connection Manager.

Keeps at most one AISStream websocket open per subscribed bounding box and
feeds every frame through the decoder into the vessel store.

The HTTP layer is stateless per request, so the connection is opened lazily:
the first query for a bbox connects, later queries reuse the open socket, and
after a transport error or remote close the next query reconnects. There is no
background retry loop, so reconnect frequency is bounded by query frequency
and an idle service stays disconnected until someone asks.

State machine::

    DISCONNECTED ──query──▶ CONNECTING ──subscribed──▶ OPEN
         ▲                      │                        │
         └──── error / close / bbox change ◀─────────────┘
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

import websockets

from backend.models import BoundingBox, ConnectionDiagnostics, ConnectionState
from collectors.base_collector import BaseCollector
from tracking.decoder import (
    POSITION_MESSAGE_TYPES,
    STATIC_MESSAGE_TYPES,
    PositionUpdate,
    StaticUpdate,
    decode_message,
    frame_text,
)
from tracking.exceptions import ConfigurationError
from tracking.store import VesselStore

logger = logging.getLogger("tidewatch.ais")

AISSTREAM_URL = "wss://stream.aisstream.io/v0/stream"

SUBSCRIBED_MESSAGE_TYPES = [*POSITION_MESSAGE_TYPES, *STATIC_MESSAGE_TYPES]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AisStreamCollector(BaseCollector):
    """Owns the single AISStream websocket and its observability state.

    ``connect`` is the websocket factory (``websockets.connect`` by default);
    it is called as ``await connect(url, open_timeout=...)`` and must return an
    object with ``send``, ``close`` and async iteration over incoming frames.
    """

    def __init__(
        self,
        store: VesselStore,
        *,
        api_key: str,
        url: str = AISSTREAM_URL,
        connect_timeout: float = 10.0,
        connect: Callable[..., Any] = websockets.connect,
        clock: Callable[[], datetime] = _utcnow,
    ):
        super().__init__(name="ais")
        self._store = store
        self._api_key = api_key
        self._url = url
        self._connect_timeout = connect_timeout
        self._connect = connect
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._bbox: Optional[BoundingBox] = None
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._opened: Optional[asyncio.Future] = None

        # Diagnostics
        self._last_connect: Optional[datetime] = None
        self._last_message: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_message_type: Optional[str] = None
        self._frames_received = 0
        self._frames_discarded = 0

    # ── Public API ─────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def bbox(self) -> Optional[BoundingBox]:
        return self._bbox

    @property
    def store(self) -> VesselStore:
        return self._store

    def diagnostics(self) -> ConnectionDiagnostics:
        return ConnectionDiagnostics(
            state=self._state,
            live=self._state is ConnectionState.OPEN,
            last_connect=self._last_connect,
            last_message=self._last_message,
            last_error=self._last_error,
            last_message_type=self._last_message_type,
            frames_received=self._frames_received,
            frames_discarded=self._frames_discarded,
            bounding_box=self._bbox.corners() if self._bbox else None,
        )

    def subscription(self, bbox: BoundingBox) -> dict:
        return {
            "APIKey": self._api_key,
            "BoundingBoxes": [bbox.corners()],
            "FilterMessageTypes": SUBSCRIBED_MESSAGE_TYPES,
        }

    async def ensure_connected(self, bbox: BoundingBox) -> None:
        """Make sure a socket subscribed to ``bbox`` is open or being opened.

        Only the missing API key is raised to the caller. Transport failures
        are recorded in the diagnostics and retried on the next call. Waits at
        most ``connect_timeout`` for the handshake; never waits for frames.
        """
        if not self._api_key:
            raise ConfigurationError("Missing AISSTREAM_API_KEY")

        if self._bbox != bbox:
            if self._bbox is not None:
                logger.info("[ais] Bounding box changed — dropping connection and %d vessels", len(self._store))
            self._invalidate()
            self._store.clear()
            self._bbox = bbox

        if self._task is None or self._task.done():
            self._start_connection(bbox)

        opened = self._opened
        if opened is None or opened.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(opened), timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            logger.warning("[ais] Still connecting after %.1fs — answering from cache", self._connect_timeout)

    async def stop(self):
        """Close the socket, wait for the reader to finish and forget all vessels."""
        task = self._task
        self._invalidate()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._store.clear()
        self._bbox = None
        await super().stop()

    # ── Connection lifecycle ───────────────────────────────────────

    def _start_connection(self, bbox: BoundingBox) -> None:
        self._state = ConnectionState.CONNECTING
        self._last_connect = self._clock()
        self._opened = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(bbox, self._opened))
        logger.info("[ais] Connecting to %s", self._url)

    def _invalidate(self) -> None:
        """Forget the current socket; its reader task is cancelled and closes it."""
        task, self._task = self._task, None
        opened, self._opened = self._opened, None
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        if opened is not None and not opened.done():
            opened.set_result(False)
        if task is not None and not task.done():
            task.cancel()

    def _is_current(self) -> bool:
        return self._task is asyncio.current_task()

    async def _run(self, bbox: BoundingBox, opened: asyncio.Future) -> None:
        ws = None
        try:
            ws = await self._connect(self._url, open_timeout=self._connect_timeout)
            await ws.send(json.dumps(self.subscription(bbox)))
            if not self._is_current():
                return
            self._ws = ws
            self._state = ConnectionState.OPEN
            self._last_error = None
            if not opened.done():
                opened.set_result(True)
            logger.info("[ais] Connected to AISStream.io — subscribed to %s", bbox.corners())

            async for payload in ws:
                await self._on_frame(ws, payload)

            if self._is_current():
                self._last_error = "Connection closed by remote"
                logger.warning("[ais] AISStream.io closed the connection — will reconnect on next query")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._is_current():
                self._last_error = f"{type(e).__name__}: {e}"
            logger.warning("[ais] AISStream.io disconnected: %s — will reconnect on next query", e)
        finally:
            if ws is not None:
                with contextlib.suppress(Exception):
                    await ws.close()
            if not opened.done():
                opened.set_result(False)
            if self._is_current():
                self._task = None
                self._opened = None
                self._ws = None
                self._state = ConnectionState.DISCONNECTED

    async def _on_frame(self, ws: Any, payload: Any) -> None:
        if ws is not self._ws:
            return
        text = await frame_text(payload)
        # The socket may have been replaced while the body was being read
        if ws is not self._ws:
            return

        self._last_message = self._clock()
        self._frames_received += 1
        update = decode_message(text)

        if isinstance(update, PositionUpdate):
            self._store.apply_position(
                update.mmsi,
                update.lat,
                update.lon,
                sog=update.sog,
                cog=update.cog,
                seen_at=self._last_message,
            )
        elif isinstance(update, StaticUpdate):
            self._store.apply_static(
                update.mmsi,
                imo=update.imo,
                name=update.name,
                callsign=update.callsign,
                ship_type=update.ship_type,
            )
        else:
            self._frames_discarded += 1
            return
        self._last_message_type = update.message_type
