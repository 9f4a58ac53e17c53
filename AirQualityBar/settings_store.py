"""Persisted user settings: a small key/value store backed by a JSON file."""
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from config import DEFAULT_INTERVAL_SECONDS, INTERVAL_CHOICES

LATITUDE = "latitude"
LONGITUDE = "longitude"
CITY = "city"
TOKEN = "token"
INTERVAL = "interval"
LOCATION_ENABLED = "location_enabled"


class _NotSet:
    """Marker returned for keys that were never stored."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "NOT_SET"


NOT_SET = _NotSet()


class SettingsStore:
    """In-memory key/value store. Values round-trip unchanged; absent keys return NOT_SET."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = NOT_SET) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``; ``None`` removes the key."""
        with self._lock:
            if value is None:
                self._values.pop(key, None)
            else:
                self._values[key] = value
            snapshot = dict(self._values)
        self._persist(snapshot)

    def unset(self, key: str) -> None:
        self.set(key, None)

    def is_set(self, key: str) -> bool:
        return self.get(key) is not NOT_SET

    def seed(self, defaults: Dict[str, Any]) -> None:
        """Store each non-None default whose key is not already set."""
        for key, value in defaults.items():
            if value is not None and not self.is_set(key):
                logging.info(f"Seeding setting {key} from environment")
                self.set(key, value)

    def _persist(self, values: Dict[str, Any]) -> None:
        pass


class JSONSettingsStore(SettingsStore):
    """SettingsStore persisted to a JSON file with owner-only permissions."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(self._load())

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logging.error(f"Could not read settings file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logging.error(f"Settings file {self.path} does not hold a JSON object, ignoring it")
            return {}
        return data

    def _persist(self, values: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".settings-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(values, f, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logging.debug(f"Settings written to {self.path}")


@dataclass
class Settings:
    """Typed snapshot of the store. ``None`` means not set; 0.0 is a real coordinate."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None
    token: Optional[str] = None
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def _float_or_none(store: SettingsStore, key: str) -> Optional[float]:
    value = store.get(key)
    if value is NOT_SET:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    logging.warning(f"Ignoring non-numeric {key} setting: {value!r}")
    return None


def _str_or_none(store: SettingsStore, key: str) -> Optional[str]:
    value = store.get(key)
    if not isinstance(value, str):
        return None
    return value.strip() or None


COORDINATE_LIMITS = {LATITUDE: 90.0, LONGITUDE: 180.0}


def parse_coordinate(key: str, text: str) -> Optional[float]:
    """
    Parse a manually entered latitude or longitude.

    Args:
        key: LATITUDE or LONGITUDE
        text: User input; blank means unset

    Returns:
        The coordinate, or None when ``text`` is blank

    Raises:
        ValueError: If ``text`` is not a number or is out of range for ``key``
    """
    text = text.strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        raise ValueError(f"{key.capitalize()} must be a number, got {text!r}")
    limit = COORDINATE_LIMITS[key]
    if not -limit <= value <= limit:
        raise ValueError(f"{key.capitalize()} must be between {-limit:g} and {limit:g}")
    return value


def load_settings(store: SettingsStore) -> Settings:
    """Read a typed Settings snapshot from ``store``."""
    interval = store.get(INTERVAL)
    if interval is NOT_SET:
        interval = DEFAULT_INTERVAL_SECONDS
    elif interval not in INTERVAL_CHOICES:
        logging.warning(f"Stored interval {interval!r} is not a supported choice, using {DEFAULT_INTERVAL_SECONDS}s")
        interval = DEFAULT_INTERVAL_SECONDS

    return Settings(
        latitude=_float_or_none(store, LATITUDE),
        longitude=_float_or_none(store, LONGITUDE),
        city=_str_or_none(store, CITY),
        token=_str_or_none(store, TOKEN),
        interval_seconds=int(interval),
    )
