"""Tidewatch — AIS Message Decoder.

Turns one raw AISStream frame into a ``PositionUpdate``, a ``StaticUpdate`` or
``None``. Vendors disagree on field names and on whether the report body sits
directly under ``Message`` or one level deeper under the message kind, so
every logical field is read through a prioritized tuple of named extractors;
the first one yielding a usable value wins.

Decoding never raises: a frame that cannot be understood is dropped.
"""

import inspect
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger("tidewatch.ais")

POSITION_MESSAGE_TYPES = (
    "PositionReport",
    "StandardClassBPositionReport",
    "ExtendedClassBPositionReport",
)
STATIC_MESSAGE_TYPES = (
    "ShipStaticData",
    "StaticDataReport",
)

MMSI_PATTERN = re.compile(r"\d{9}", re.ASCII)
IMO_PATTERN = re.compile(r"\d{7}", re.ASCII)

COURSE_NOT_AVAILABLE = 511


@dataclass(frozen=True)
class PositionUpdate:
    mmsi: str
    lat: float
    lon: float
    sog: Optional[float] = None
    cog: Optional[float] = None
    message_type: str = ""


@dataclass(frozen=True)
class StaticUpdate:
    mmsi: str
    imo: Optional[str] = None
    name: Optional[str] = None
    callsign: Optional[str] = None
    ship_type: Optional[int] = None
    message_type: str = ""


@dataclass(frozen=True)
class Frame:
    """Parsed envelope with the containers extractors may look into."""
    kind: str
    envelope: dict
    message: dict
    body: dict
    metadata: dict


Extractor = Callable[[Frame], Any]


# ── Payload → text ─────────────────────────────────────────────────


def _bytes_to_text(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return ""


async def frame_text(payload: Any) -> str:
    """Normalize a websocket payload into a UTF-8 string ("" = ignore).

    Accepts text, bytes-like objects, sequences of byte values and blob-like
    objects exposing ``text()`` or ``read()`` (sync or async).
    """
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return _bytes_to_text(bytes(payload))
    if isinstance(payload, (list, tuple)):
        try:
            return _bytes_to_text(bytes(payload))
        except (TypeError, ValueError):
            return ""

    for reader in ("text", "read"):
        method = getattr(payload, reader, None)
        if not callable(method):
            continue
        try:
            result = method()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.debug("[ais] Frame body read failed: %s", e)
            return ""
        if isinstance(result, str):
            return result
        if isinstance(result, (bytes, bytearray, memoryview)):
            return _bytes_to_text(bytes(result))
        return ""

    return ""


# ── Value coercion ─────────────────────────────────────────────────


def finite_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def valid_course(value: Any) -> Optional[float]:
    """Course over ground, or None for the 511 sentinel / out-of-range values."""
    course = finite_float(value)
    if course is None or course == COURSE_NOT_AVAILABLE:
        return None
    if course < 0 or course > 360:
        return None
    return course


def valid_latitude(value: Any) -> Optional[float]:
    """Latitude in [-90, 90]; the AIS "not available" marker 91 is rejected."""
    lat = finite_float(value)
    return lat if lat is not None and -90 <= lat <= 90 else None


def valid_longitude(value: Any) -> Optional[float]:
    lon = finite_float(value)
    return lon if lon is not None and -180 <= lon <= 180 else None


def _identifier(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def valid_mmsi(value: Any) -> Optional[str]:
    text = _identifier(value)
    return text if text and MMSI_PATTERN.fullmatch(text) else None


def valid_imo(value: Any) -> Optional[str]:
    text = _identifier(value)
    return text if text and IMO_PATTERN.fullmatch(text) else None


def clean_text(value: Any) -> Optional[str]:
    """Strip whitespace and AIS '@' padding; empty → None."""
    if value is None:
        return None
    text = str(value).strip().rstrip("@").strip()
    return text or None


# ── Extractors ─────────────────────────────────────────────────────


def field(container: str, *path: str) -> Extractor:
    """Extractor reading ``frame.<container>[path[0]][path[1]]...``."""

    def extract(frame: Frame) -> Any:
        node: Any = getattr(frame, container)
        for key in path:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        return node

    extract.__name__ = ".".join((container,) + path)
    return extract


MMSI_FIELDS: tuple[Extractor, ...] = (
    field("metadata", "MMSI"),
    field("body", "MMSI"),
    field("message", "MMSI"),
    field("body", "UserID"),
    field("envelope", "UserID"),
    field("metadata", "MMSI_String"),
)

IMO_FIELDS: tuple[Extractor, ...] = (
    field("body", "ImoNumber"),
    field("body", "IMO"),
    field("message", "IMO"),
)

LATITUDE_FIELDS: tuple[Extractor, ...] = (
    field("body", "Latitude"),
    field("body", "lat"),
    field("body", "latitude"),
    field("metadata", "latitude"),
    field("metadata", "Latitude"),
)

LONGITUDE_FIELDS: tuple[Extractor, ...] = (
    field("body", "Longitude"),
    field("body", "lon"),
    field("body", "longitude"),
    field("metadata", "longitude"),
    field("metadata", "Longitude"),
)

SPEED_FIELDS: tuple[Extractor, ...] = (
    field("body", "Sog"),
    field("body", "sog"),
    field("body", "SpeedOverGround"),
)

COURSE_FIELDS: tuple[Extractor, ...] = (
    field("body", "Cog"),
    field("body", "cog"),
    field("body", "CourseOverGround"),
)

NAME_FIELDS: tuple[Extractor, ...] = (
    field("body", "Name"),
    field("body", "ShipName"),
    field("body", "ReportA", "Name"),
    field("metadata", "ShipName"),
)

CALLSIGN_FIELDS: tuple[Extractor, ...] = (
    field("body", "CallSign"),
    field("body", "ReportB", "CallSign"),
)

SHIP_TYPE_FIELDS: tuple[Extractor, ...] = (
    field("body", "Type"),
    field("body", "ShipType"),
    field("body", "ReportB", "ShipType"),
)


def first_value(frame: Frame, extractors: tuple[Extractor, ...], parse: Callable[[Any], Any]) -> Any:
    """Run extractors in order; return the first value ``parse`` accepts."""
    for extract in extractors:
        value = parse(extract(frame))
        if value is not None:
            return value
    return None


def first_number(frame: Frame, extractors: tuple[Extractor, ...]) -> Optional[float]:
    return first_value(frame, extractors, finite_float)


# ── Decoding ───────────────────────────────────────────────────────


def parse_frame(text: str) -> Optional[Frame]:
    try:
        envelope = json.loads(text)
    except ValueError:
        return None
    if not isinstance(envelope, dict):
        return None

    kind = envelope.get("MessageType")
    message = envelope.get("Message")
    if not isinstance(kind, str) or not isinstance(message, dict):
        return None

    nested = message.get(kind)
    body = nested if isinstance(nested, dict) else message
    metadata = envelope.get("MetaData")
    if not isinstance(metadata, dict):
        metadata = {}
    return Frame(kind=kind, envelope=envelope, message=message, body=body, metadata=metadata)


def _decode_position(frame: Frame) -> Optional[PositionUpdate]:
    lat = valid_latitude(first_number(frame, LATITUDE_FIELDS))
    lon = valid_longitude(first_number(frame, LONGITUDE_FIELDS))
    if lat is None or lon is None:
        return None
    mmsi = first_value(frame, MMSI_FIELDS, valid_mmsi)
    if mmsi is None:
        return None
    return PositionUpdate(
        mmsi=mmsi,
        lat=lat,
        lon=lon,
        sog=first_number(frame, SPEED_FIELDS),
        # Only the first finite course is considered; an invalid one means "unknown"
        cog=valid_course(first_number(frame, COURSE_FIELDS)),
        message_type=frame.kind,
    )


def _decode_static(frame: Frame) -> Optional[StaticUpdate]:
    mmsi = first_value(frame, MMSI_FIELDS, valid_mmsi)
    if mmsi is None:
        return None
    ship_type = first_number(frame, SHIP_TYPE_FIELDS)
    return StaticUpdate(
        mmsi=mmsi,
        imo=first_value(frame, IMO_FIELDS, valid_imo),
        name=first_value(frame, NAME_FIELDS, clean_text),
        callsign=first_value(frame, CALLSIGN_FIELDS, clean_text),
        ship_type=int(ship_type) if ship_type is not None else None,
        message_type=frame.kind,
    )


def decode_message(text: str):
    """Decode one textual frame. Returns PositionUpdate, StaticUpdate or None."""
    if not text:
        return None
    try:
        frame = parse_frame(text)
        if frame is None:
            return None
        if frame.kind in POSITION_MESSAGE_TYPES:
            return _decode_position(frame)
        if frame.kind in STATIC_MESSAGE_TYPES:
            return _decode_static(frame)
    except Exception as e:
        logger.debug("[ais] Message parse error: %s", e)
    return None


async def decode_frame(payload: Any):
    """Normalize a raw websocket payload and decode it."""
    return decode_message(await frame_text(payload))
