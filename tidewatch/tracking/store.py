"""Tidewatch — Identity Reconciliation Store.

In-memory, process-lifetime map of tracked vessels. Each vessel lives exactly
once in a canonical table keyed by an internal surrogate id; MMSI and IMO are
secondary indexes onto that id, so an IMO lookup can never drift from the
MMSI record it was learned for.

Writes come from a single producer (the AIS reader task). Records are
immutable pydantic models replaced wholesale on every merge, so concurrent
readers observe either the previous or the next version of a vessel.
"""

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from backend.models import TrackedVessel
from tracking.decoder import valid_course, valid_imo, valid_mmsi

logger = logging.getLogger("tidewatch.tracking")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StaticAttributes:
    """Identity data learned from static reports, possibly before any position."""
    imo: Optional[str] = None
    name: Optional[str] = None
    callsign: Optional[str] = None
    ship_type: Optional[int] = None


class VesselStore:
    """Canonical vessel table with MMSI → id and IMO → id indexes."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._ids = itertools.count(1)
        self._records: dict[int, TrackedVessel] = {}
        self._id_by_mmsi: dict[str, int] = {}
        self._id_by_imo: dict[str, int] = {}
        self._static_by_mmsi: dict[str, StaticAttributes] = {}

    def __len__(self) -> int:
        return len(self._records)

    # ── Writes ─────────────────────────────────────────────────────

    def apply_position(
        self,
        mmsi: str,
        lat: float,
        lon: float,
        *,
        sog: Optional[float] = None,
        cog: Optional[float] = None,
        seen_at: Optional[datetime] = None,
    ) -> TrackedVessel:
        """Insert or partially merge a position report for ``mmsi``.

        Motion fields that are absent from this report keep their previous
        values; an invalid course (511 or outside [0, 360]) counts as absent.
        """
        seen_at = seen_at or self._clock()
        cog = valid_course(cog)
        static = self._static_by_mmsi.get(mmsi, StaticAttributes())

        vessel_id = self._id_by_mmsi.get(mmsi)
        current = self._records.get(vessel_id) if vessel_id is not None else None

        if current is None:
            vessel_id = next(self._ids)
            self._id_by_mmsi[mmsi] = vessel_id
            record = TrackedVessel(
                mmsi=mmsi,
                imo=static.imo,
                name=static.name,
                callsign=static.callsign,
                ship_type=static.ship_type,
                lat=lat,
                lon=lon,
                sog=sog,
                cog=cog,
                last_seen=seen_at,
            )
        else:
            update = {"lat": lat, "lon": lon, "last_seen": seen_at}
            if sog is not None:
                update["sog"] = sog
            if cog is not None:
                update["cog"] = cog
            if current.imo is None and static.imo is not None:
                update["imo"] = static.imo
            record = current.model_copy(update=update)

        self._records[vessel_id] = record
        if record.imo is not None:
            self._id_by_imo[record.imo] = vessel_id
        return record

    def apply_static(
        self,
        mmsi: str,
        *,
        imo: Optional[str] = None,
        name: Optional[str] = None,
        callsign: Optional[str] = None,
        ship_type: Optional[int] = None,
    ) -> Optional[TrackedVessel]:
        """Record static attributes for ``mmsi``.

        An IMO is only ever learned once per MMSI; later reports without one
        (or with a conflicting one) never replace it. Returns the merged
        position record, or None if no position has been seen yet.
        """
        if valid_mmsi(mmsi) is None:
            return None
        imo = valid_imo(imo)

        known = self._static_by_mmsi.get(mmsi, StaticAttributes())
        if known.imo is not None and imo is not None and imo != known.imo:
            logger.debug("[tracking] MMSI %s reported IMO %s, keeping %s", mmsi, imo, known.imo)
        merged = replace(
            known,
            imo=known.imo or imo,
            name=name or known.name,
            callsign=callsign or known.callsign,
            ship_type=ship_type if ship_type is not None else known.ship_type,
        )
        self._static_by_mmsi[mmsi] = merged

        vessel_id = self._id_by_mmsi.get(mmsi)
        current = self._records.get(vessel_id) if vessel_id is not None else None
        if current is None:
            return None

        record = current.model_copy(update={
            "imo": current.imo or merged.imo,
            "name": merged.name,
            "callsign": merged.callsign,
            "ship_type": merged.ship_type,
        })
        self._records[vessel_id] = record
        if record.imo is not None:
            self._id_by_imo[record.imo] = vessel_id
        return record

    def prune_older_than(self, cutoff: datetime) -> int:
        """Drop vessels whose last position predates ``cutoff``. Returns count removed."""
        stale = [vid for vid, rec in self._records.items() if rec.last_seen < cutoff]
        for vid in stale:
            record = self._records.pop(vid)
            if self._id_by_mmsi.get(record.mmsi) == vid:
                del self._id_by_mmsi[record.mmsi]
            if record.imo is not None and self._id_by_imo.get(record.imo) == vid:
                del self._id_by_imo[record.imo]
        if stale:
            logger.debug("[tracking] Pruned %d stale vessels", len(stale))
        return len(stale)

    def clear(self) -> None:
        """Forget everything (subscription region changed or shutdown)."""
        self._records.clear()
        self._id_by_mmsi.clear()
        self._id_by_imo.clear()
        self._static_by_mmsi.clear()

    # ── Reads ──────────────────────────────────────────────────────

    def get_by_mmsi(self, mmsi: str) -> Optional[TrackedVessel]:
        vessel_id = self._id_by_mmsi.get(mmsi)
        return self._records.get(vessel_id) if vessel_id is not None else None

    def get_by_imo(self, imo: str) -> Optional[TrackedVessel]:
        vessel_id = self._id_by_imo.get(imo)
        return self._records.get(vessel_id) if vessel_id is not None else None

    def lookup(self, key: str) -> Optional[TrackedVessel]:
        """Resolve ``MMSI:<9 digits>``, ``IMO:<7 digits>`` or a bare identifier.

        Raises ValueError for keys that fit neither identity space.
        """
        prefix, _, ident = key.strip().upper().rpartition(":")
        if prefix in ("", "MMSI") and valid_mmsi(ident):
            return self.get_by_mmsi(ident)
        if prefix in ("", "IMO") and valid_imo(ident):
            return self.get_by_imo(ident)
        raise ValueError(f"not an MMSI or IMO key: {key!r}")

    def static_for(self, mmsi: str) -> Optional[StaticAttributes]:
        return self._static_by_mmsi.get(mmsi)

    def snapshot(self) -> list[TrackedVessel]:
        """All tracked vessels, one per MMSI."""
        return list(self._records.values())
