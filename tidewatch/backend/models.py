"""Tidewatch — Data Models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tracking.geo import bbox_around


class GeoPoint(BaseModel):
    """A WGS84 position in decimal degrees."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class BoundingBox(BaseModel):
    """Geographic rectangle used to scope a live-feed subscription."""
    model_config = ConfigDict(frozen=True)

    south_west: GeoPoint
    north_east: GeoPoint

    @classmethod
    def from_corners(cls, corners: Any) -> "BoundingBox":
        """Build from ``[[lat, lon], [lat, lon]]`` in any corner order."""
        (lat1, lon1), (lat2, lon2) = corners
        return cls(
            south_west=GeoPoint(lat=min(lat1, lat2), lon=min(lon1, lon2)),
            north_east=GeoPoint(lat=max(lat1, lat2), lon=max(lon1, lon2)),
        )

    def corners(self) -> list[list[float]]:
        return [
            [self.south_west.lat, self.south_west.lon],
            [self.north_east.lat, self.north_east.lon],
        ]


class Preset(BaseModel):
    """Named reference point + subscription box.

    Either ``bbox`` or ``radius_mi`` must be given; a radius is expanded into a
    box around the reference point.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    label: str = ""
    reference: GeoPoint
    bbox: Optional[BoundingBox] = None
    radius_mi: Optional[float] = Field(default=None, gt=0)

    @field_validator("bbox", mode="before")
    @classmethod
    def _accept_corner_list(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return BoundingBox.from_corners(value)
        return value

    @model_validator(mode="after")
    def _resolve_bbox(self) -> "Preset":
        if self.bbox is None:
            if self.radius_mi is None:
                raise ValueError(f"preset {self.name!r} needs either bbox or radius_mi")
            corners = bbox_around(self.reference.lat, self.reference.lon, self.radius_mi)
            object.__setattr__(self, "bbox", BoundingBox.from_corners(corners))
        return self


# ─── Live tracking ─────────────────────────────────


class TrackedVessel(BaseModel):
    """Latest known state of one vessel, keyed by MMSI.

    Instances are immutable; the store swaps whole records on update so a
    reader never sees a half-applied merge.
    """
    model_config = ConfigDict(frozen=True)

    mmsi: str
    imo: Optional[str] = None
    name: Optional[str] = None
    callsign: Optional[str] = None
    ship_type: Optional[int] = Field(default=None, serialization_alias="shipType")
    lat: float
    lon: float
    sog: Optional[float] = None
    cog: Optional[float] = None
    last_seen: datetime = Field(serialization_alias="lastSeenISO")


class VesselRow(TrackedVessel):
    """A tracked vessel ranked against a reference point."""
    distance_mi: float = Field(serialization_alias="distanceMi")
    bearing_deg: float = Field(serialization_alias="bearingDeg")


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"


class ConnectionDiagnostics(BaseModel):
    state: ConnectionState
    live: bool
    last_connect: Optional[datetime] = Field(default=None, serialization_alias="lastConnectISO")
    last_message: Optional[datetime] = Field(default=None, serialization_alias="lastMessageISO")
    last_error: Optional[str] = Field(default=None, serialization_alias="lastError")
    last_message_type: Optional[str] = Field(default=None, serialization_alias="lastMessageType")
    frames_received: int = Field(default=0, serialization_alias="framesReceived")
    frames_discarded: int = Field(default=0, serialization_alias="framesDiscarded")
    bounding_box: Optional[list[list[float]]] = Field(default=None, serialization_alias="boundingBox")


class LiveSnapshot(BaseModel):
    """Answer to a live-tracking query."""
    ok: bool = True
    preset: str
    reference_point: GeoPoint = Field(serialization_alias="referencePoint")
    bounding_box: list[list[float]] = Field(serialization_alias="boundingBox")
    connection_diagnostics: ConnectionDiagnostics = Field(serialization_alias="connectionDiagnostics")
    count: int
    vessels: list[VesselRow] = Field(default_factory=list)


class SnapshotFailure(BaseModel):
    """Structured error for a live-tracking query that could not be answered."""
    ok: bool = False
    preset: Optional[str] = None
    error: str
    connection_diagnostics: Optional[ConnectionDiagnostics] = Field(
        default=None, serialization_alias="connectionDiagnostics"
    )


# ─── Scheduled moves ───────────────────────────────


class MoveType(str, Enum):
    ARRIVAL = "ARRIVAL"
    DEPARTURE = "DEPARTURE"


class TimeType(str, Enum):
    ACTUAL = "ACTUAL"
    ESTIMATED = "ESTIMATED"


class VesselEvent(BaseModel):
    """One arrival or departure from the port authority schedule."""
    type: MoveType
    time: datetime = Field(serialization_alias="timeISO")
    time_label: str = Field(serialization_alias="timeLabel")
    time_type: TimeType = Field(serialization_alias="timeType")
    vessel_name: str = Field(serialization_alias="vesselName")
    imo: Optional[str] = None
    service: Optional[str] = None
    operator: Optional[str] = None
    berth: Optional[str] = None
    status: Optional[str] = None


class ScheduleWindow(BaseModel):
    window: str
    direction: str = Field(serialization_alias="dir")
    now: datetime
    window_start: datetime = Field(serialization_alias="windowStart")
    window_end: datetime = Field(serialization_alias="windowEnd")
    events: list[VesselEvent] = Field(default_factory=list)
    total_in_window: int = Field(serialization_alias="totalInWindow")


# ─── Vessel particulars ────────────────────────────


class VesselParticulars(BaseModel):
    ok: bool = True
    imo: str
    length_m: Optional[str] = Field(default=None, serialization_alias="lengthM")
    width_m: Optional[str] = Field(default=None, serialization_alias="widthM")
    vessel_type: Optional[str] = Field(default=None, serialization_alias="vesselType")
    year_built: Optional[str] = Field(default=None, serialization_alias="yearBuilt")
    gross_tonnage: Optional[str] = Field(default=None, serialization_alias="grossTonnage")
    flag: Optional[str] = None
    source: str = ""
