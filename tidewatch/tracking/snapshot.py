"""Tidewatch — Live Snapshot Builder.

Answers "which vessels are tracked right now, nearest first" for a named
preset. Distances are computed at query time because the reference point
depends on the preset, not on the frame that produced the position.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from backend.models import LiveSnapshot, Preset, SnapshotFailure, TrackedVessel, VesselRow
from collectors.ais_collector import AisStreamCollector
from tracking.geo import bearing_degrees, distance_miles

logger = logging.getLogger("tidewatch.tracking")

DEFAULT_LIMIT = 200
MAX_LIMIT = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def rank_vessels(vessels: list[TrackedVessel], reference, limit: Optional[int] = None) -> list[VesselRow]:
    """Attach distance/bearing from ``reference`` and sort nearest first."""
    rows = [
        VesselRow(
            **vessel.model_dump(),
            distance_mi=distance_miles(reference, vessel),
            bearing_deg=bearing_degrees(reference, vessel),
        )
        for vessel in vessels
    ]
    rows.sort(key=lambda row: row.distance_mi)
    return rows if limit is None else rows[:limit]


class SnapshotBuilder:
    """Resolves presets, keeps the AIS connection alive and ranks the store."""

    def __init__(
        self,
        connection: AisStreamCollector,
        presets: dict[str, Preset],
        *,
        default_preset: str = "sav",
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
        stale_minutes: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not presets:
            raise ValueError("at least one preset is required")
        self._connection = connection
        self._presets = presets
        self._default_preset = default_preset if default_preset in presets else next(iter(presets))
        self._default_limit = default_limit
        self._max_limit = max_limit
        self._stale_minutes = stale_minutes
        self._clock = clock

    @property
    def connection(self) -> AisStreamCollector:
        return self._connection

    @property
    def presets(self) -> dict[str, Preset]:
        return self._presets

    def resolve_preset(self, name: Optional[str]) -> Preset:
        """Case-insensitive preset lookup; unknown or empty names use the default."""
        key = (name or "").strip().lower()
        return self._presets.get(key) or self._presets[self._default_preset]

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self._default_limit
        return max(1, min(self._max_limit, int(limit)))

    async def build(self, preset_name: Optional[str] = None, limit: Optional[int] = None) -> LiveSnapshot:
        preset = self.resolve_preset(preset_name)
        await self._connection.ensure_connected(preset.bbox)

        store = self._connection.store
        if self._stale_minutes > 0:
            store.prune_older_than(self._clock() - timedelta(minutes=self._stale_minutes))

        vessels = store.snapshot()
        rows = rank_vessels(vessels, preset.reference, self.clamp_limit(limit))
        logger.debug("[tracking] %s snapshot: %d tracked, %d returned", preset.name, len(vessels), len(rows))

        return LiveSnapshot(
            preset=preset.name,
            reference_point=preset.reference,
            bounding_box=preset.bbox.corners(),
            connection_diagnostics=self._connection.diagnostics(),
            count=len(vessels),
            vessels=rows,
        )

    def failure(self, preset_name: Optional[str], error: Exception) -> SnapshotFailure:
        """Structured error carrying the last known connection diagnostics."""
        return SnapshotFailure(
            preset=self.resolve_preset(preset_name).name,
            error=str(error) or type(error).__name__,
            connection_diagnostics=self._connection.diagnostics(),
        )
