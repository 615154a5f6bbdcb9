"""Tidewatch — Application Configuration."""

import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError
from pydantic_settings import BaseSettings

from backend.models import Preset

_cfg_logger = logging.getLogger("tidewatch.config")

PRESETS_FILE = Path(__file__).resolve().parent / "presets.json"

DEFAULT_PRESETS: dict[str, Preset] = {
    "sav": Preset(
        name="sav",
        label="Savannah City Hall",
        reference={"lat": 32.0809, "lon": -81.0912},
        bbox=[[31.968366, -81.169962], [32.190078, -80.623403]],
    ),
    "ny": Preset(
        name="ny",
        label="New York City Hall",
        reference={"lat": 40.7128, "lon": -74.006},
        bbox=[[40.45, -74.35], [40.95, -73.6]],
    ),
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    app_name: str = "Tidewatch"
    app_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # AISStream live tracking
    aisstream_api_key: str = ""
    aisstream_url: str = "wss://stream.aisstream.io/v0/stream"
    ais_connect_timeout: float = 10.0
    default_preset: str = "sav"
    snapshot_limit: int = 200
    snapshot_max_limit: int = 500
    stale_minutes: int = 0  # 0 = keep vessels until the region changes

    # Scheduled moves
    schedule_source_url: str = "https://gaports.com/wp-content/uploads/ftp-files/vessel_gct_data.json"
    schedule_timezone: str = "America/New_York"

    # Vessel particulars
    vessel_info_url: str = "https://www.vesselfinder.com/vessels/details/{imo}"
    vessel_info_ttl_hours: float = 24.0

    presets: dict[str, Preset] = DEFAULT_PRESETS

    model_config = {"env_file": ".env", "env_prefix": "TIDEWATCH_"}


def load_presets_file(path: Path) -> dict[str, Preset]:
    """Read ``{"name": {"reference": {...}, "bbox" | "radius_mi": ...}}`` from JSON."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    presets: dict[str, Preset] = {}
    for name, body in raw.items():
        key = name.strip().lower()
        presets[key] = Preset(name=key, **body)
    return presets


def _load_settings(presets_file: Path = PRESETS_FILE) -> Settings:
    """Load settings, supplementing with the bare AISSTREAM_API_KEY and presets.json."""
    s = Settings()

    if not s.aisstream_api_key:
        s.aisstream_api_key = os.environ.get("AISSTREAM_API_KEY", "").strip()
    if s.aisstream_api_key:
        _cfg_logger.info("AISStream API key loaded")
    else:
        _cfg_logger.warning("No AISStream API key — live tracking queries will fail")

    if presets_file.exists():
        try:
            extra = load_presets_file(presets_file)
            s.presets = {**s.presets, **extra}
            _cfg_logger.info("Loaded %d presets from %s", len(extra), presets_file.name)
        except (OSError, ValueError, TypeError, ValidationError) as e:
            _cfg_logger.warning("Failed to read %s: %s", presets_file.name, e)

    return s


settings = _load_settings()
