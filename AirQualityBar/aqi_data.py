"""Air-quality domain model - pure data structures independent of any API."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

PENDING_TEXT = "…"
INVALID_CONFIG_TEXT = "Invalid config"
NA_TEXT = "N/A"
PERMISSION_TEXT = "Location permission required"

# Upper bound (inclusive) of each US EPA band.
CATEGORY_BANDS = (
    (50, "Good"),
    (100, "Moderate"),
    (150, "Unhealthy for Sensitive Groups"),
    (200, "Unhealthy"),
    (300, "Very Unhealthy"),
)
TOP_CATEGORY = "Hazardous"


class ErrorKind(Enum):
    """Why a fetch attempt did not produce a reading."""
    MISSING_CONFIG = "missing_config"
    PERMISSION_DENIED = "permission_denied"
    TRANSPORT = "transport"
    DECODE = "decode"
    NO_DATA = "no_data"


def indicator_text(kind: ErrorKind, transport_label: str = NA_TEXT) -> str:
    """
    Map an error kind to the text shown in the status bar.

    Args:
        kind: Error kind of the failed attempt
        transport_label: Text the active upstream uses for transport errors

    Returns:
        str: One of the fixed indicator strings
    """
    if kind is ErrorKind.MISSING_CONFIG:
        return INVALID_CONFIG_TEXT
    if kind is ErrorKind.PERMISSION_DENIED:
        return PERMISSION_TEXT
    if kind is ErrorKind.TRANSPORT:
        return transport_label
    return NA_TEXT


def aqi_category(value: float) -> str:
    for upper, name in CATEGORY_BANDS:
        if value <= upper:
            return name
    return TOP_CATEGORY


@dataclass
class QueryParams:
    """Resolved inputs for one upstream request."""
    token: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class AQIReading:
    """Domain model for one air-quality observation, independent of any specific API."""
    value: float
    observed_at: str  # timestamp label as reported upstream
    station: Optional[str] = None

    @property
    def display_value(self) -> str:
        return str(int(round(self.value)))

    @property
    def category(self) -> str:
        return aqi_category(self.value)

    def tooltip(self) -> str:
        parts = []
        if self.observed_at:
            parts.append(f"Updated {self.observed_at}")
        if self.station:
            parts.append(self.station)
        parts.append(self.category)
        return " · ".join(parts)
