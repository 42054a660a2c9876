import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from .models import Resort, ResortRegistry

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent.parent
RESORTS_PATH = PACKAGE_DIR / "config" / "resorts.yaml"

# Weather provider (OpenWeatherMap current weather)
OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"
OPENWEATHER_API_KEY = os.environ.get("OPENWEATHER_API_KEY")

# Snow report provider, one JSON document per resort at {SNOW_REPORT_URL}/{snow_report_id}
SNOW_REPORT_URL = os.environ.get("SNOW_REPORT_URL", "https://api.snow-report.example/v1/resorts")
SNOW_REPORT_TIMEOUT = 30

# Refresh schedule, seconds. Fetch timeouts must stay below the period.
WEATHER_REFRESH_PERIOD = 60
WEATHER_FETCH_TIMEOUT = 20
SNOW_REFRESH_PERIOD = 3600
SNOW_FETCH_TIMEOUT = 30

# Circuit breaker for the live weather feed: open after 3 total failures, retry after 5 minutes
BREAKER_FAIL_MAX = 3
BREAKER_RESET_SECONDS = 300

FORECAST_HORIZONS = (24, 48, 72)

DEFAULT_WEIGHTS = {
    "warmth": 0.5,
    "fresh_snow": 0.5,
    "base_depth": 0.5,
    "open_runs": 0.5,
}


def load_config(path: Optional[Path] = None) -> dict:
    path = Path(path) if path else RESORTS_PATH
    try:
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}
    except Exception as e:
        logger.error(f"Failed to load config from {path}: {e}")
        return {}


def load_registry(path: Optional[Path] = None) -> ResortRegistry:
    """Builds the fixed, ordered resort universe from the YAML registry."""
    config = load_config(path)
    resorts = [Resort(**entry) for entry in config.get("resorts", [])]
    if not resorts:
        raise ValueError(f"No resorts configured in {path or RESORTS_PATH}")
    return ResortRegistry(resorts=resorts)
