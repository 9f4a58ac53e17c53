"""Application configuration loaded from the environment (and an optional .env file)."""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

SOURCES = ("geo", "city", "forecast")
DEFAULT_SOURCE = "geo"

INTERVAL_CHOICES = (60, 300, 600, 900, 1800, 3600, 10800, 21600, 43200, 86400)
DEFAULT_INTERVAL_SECONDS = 3600

# Fixes closer than this to the previous accepted fix are GPS jitter.
MIN_MOVEMENT_METERS = 100.0

DEFAULT_WAQI_BASE_URL = "https://api.waqi.info"
DEFAULT_FORECAST_BASE_URL = "https://air-quality-api.open-meteo.com"

APP_DIR = os.path.join(os.path.expanduser("~"), ".airqualitybar")
DEFAULT_SETTINGS_FILE = os.path.join(APP_DIR, "settings.json")
DEFAULT_LOG_FILE = os.path.join(APP_DIR, "airqualitybar.log")


class ConfigError(Exception):
    """Raised when the environment holds a malformed configuration value."""
    pass


@dataclass
class AppConfig:
    """Startup configuration. Token/city/coordinates only seed the settings store."""
    source: str = DEFAULT_SOURCE
    settings_file: str = DEFAULT_SETTINGS_FILE
    waqi_base_url: str = DEFAULT_WAQI_BASE_URL
    forecast_base_url: str = DEFAULT_FORECAST_BASE_URL
    token: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


def interval_label(seconds: int) -> str:
    """Human label for a refresh interval, e.g. 300 -> '5 minutes'."""
    for unit_seconds, unit in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= unit_seconds and seconds % unit_seconds == 0:
            count = seconds // unit_seconds
            return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
    return f"{seconds} seconds"


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {name}: {raw!r}") from exc


def _optional_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_config(source: Optional[str] = None) -> AppConfig:
    """
    Read configuration from the environment.

    Args:
        source: Upstream variant overriding AQI_SOURCE ("geo", "city" or "forecast")

    Returns:
        AppConfig: Parsed configuration

    Raises:
        ConfigError: If a value is malformed
    """
    load_dotenv()

    source = source or os.getenv("AQI_SOURCE", DEFAULT_SOURCE).strip().lower()
    if source not in SOURCES:
        raise ConfigError(f"Unknown AQI_SOURCE {source!r} (expected one of {', '.join(SOURCES)})")

    config = AppConfig(
        source=source,
        settings_file=os.path.expanduser(os.getenv("AQI_SETTINGS_FILE", DEFAULT_SETTINGS_FILE)),
        waqi_base_url=os.getenv("AQI_WAQI_BASE_URL", DEFAULT_WAQI_BASE_URL).rstrip("/"),
        forecast_base_url=os.getenv("AQI_FORECAST_BASE_URL", DEFAULT_FORECAST_BASE_URL).rstrip("/"),
        token=_optional_str("AQI_TOKEN"),
        city=_optional_str("AQI_CITY"),
        latitude=_optional_float("AQI_LAT"),
        longitude=_optional_float("AQI_LON"),
    )
    logging.info(f"Configuration loaded: source={config.source} settings={config.settings_file}")
    return config
