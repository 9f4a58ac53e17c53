"""Location provider abstraction, movement filter, and an IP-geolocation adapter."""
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import requests

from config import MIN_MOVEMENT_METERS
from settings_store import LOCATION_ENABLED, NOT_SET, SettingsStore

EARTH_RADIUS_METERS = 6371000.0


class AuthorizationStatus(Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"  # denied or restricted


@dataclass(frozen=True)
class LocationFix:
    """One reported (latitude, longitude) sample."""
    latitude: float
    longitude: float
    captured_at: float = field(default_factory=time.time)

    def distance_to(self, other: "LocationFix") -> float:
        """Great-circle (haversine) distance in meters."""
        lat1, lat2 = math.radians(self.latitude), math.radians(other.latitude)
        dlat = lat2 - lat1
        dlon = math.radians(other.longitude - self.longitude)
        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


class MovementFilter:
    """Accepts the first fix, then only fixes at least ``threshold_meters`` from the last accepted one."""

    def __init__(self, threshold_meters: float = MIN_MOVEMENT_METERS):
        self.threshold_meters = threshold_meters
        self.last_accepted: Optional[LocationFix] = None

    def accept(self, fix: LocationFix) -> bool:
        if self.last_accepted is not None:
            distance = self.last_accepted.distance_to(fix)
            if distance < self.threshold_meters:
                logging.debug(f"Ignoring fix {distance:.0f}m from previous (threshold {self.threshold_meters:.0f}m)")
                return False
        self.last_accepted = fix
        return True


AuthorizationCallback = Callable[[AuthorizationStatus], None]
FixCallback = Callable[[LocationFix], None]
FailureCallback = Callable[[str], None]


class LocationProviderBase(ABC):
    """
    Source of location fixes.

    Callbacks may be invoked from any thread; receivers are expected to marshal
    them onto their own execution context.
    """

    def __init__(self):
        self._on_authorization: Optional[AuthorizationCallback] = None
        self._on_fix: Optional[FixCallback] = None
        self._on_failure: Optional[FailureCallback] = None

    def attach(self, on_authorization: AuthorizationCallback, on_fix: FixCallback,
               on_failure: FailureCallback) -> None:
        self._on_authorization = on_authorization
        self._on_fix = on_fix
        self._on_failure = on_failure

    def detach(self) -> None:
        self._on_authorization = None
        self._on_fix = None
        self._on_failure = None

    @property
    @abstractmethod
    def authorization_status(self) -> AuthorizationStatus:
        pass

    @abstractmethod
    def request_authorization(self) -> None:
        """Ask for permission; the outcome arrives via the authorization callback."""
        pass

    @abstractmethod
    def request_fix(self) -> None:
        """Deliver at most one fix, or one failure, for this call. Never retries by itself."""
        pass

    def _notify_authorization(self, status: AuthorizationStatus) -> None:
        callback = self._on_authorization
        if callback is not None:
            callback(status)

    def _notify_fix(self, fix: LocationFix) -> None:
        callback = self._on_fix
        if callback is not None:
            callback(fix)

    def _notify_failure(self, reason: str) -> None:
        callback = self._on_failure
        if callback is not None:
            callback(reason)


class LocationLookupError(Exception):
    pass


class IPLocationProvider(LocationProviderBase):
    """
    Coarse geolocation from the public IP address (https://ipapi.co/).

    Consent is kept in the settings store under ``location_enabled``:
    unset means not determined, True authorized, False denied.
    """

    URL = "https://ipapi.co/json/"

    def __init__(self, store: SettingsStore, url: str = URL, timeout: int = 10):
        super().__init__()
        self.store = store
        self.url = url
        self.timeout = timeout

    @property
    def authorization_status(self) -> AuthorizationStatus:
        enabled = self.store.get(LOCATION_ENABLED)
        if enabled is NOT_SET:
            return AuthorizationStatus.NOT_DETERMINED
        return AuthorizationStatus.AUTHORIZED if enabled else AuthorizationStatus.DENIED

    def request_authorization(self) -> None:
        # No OS prompt for IP lookups; launching with location unset counts as opting in.
        if self.authorization_status is AuthorizationStatus.NOT_DETERMINED:
            self.store.set(LOCATION_ENABLED, True)
        self._notify_authorization(self.authorization_status)

    def set_enabled(self, enabled: bool) -> None:
        """User toggle; reports the new status through the authorization callback."""
        self.store.set(LOCATION_ENABLED, bool(enabled))
        self._notify_authorization(self.authorization_status)

    def request_fix(self) -> None:
        threading.Thread(target=self._lookup, name="ip-location", daemon=True).start()

    def _lookup(self) -> None:
        try:
            fix = self.fetch_fix()
        except LocationLookupError as e:
            logging.warning(f"Location lookup failed: {e}")
            self._notify_failure(str(e))
            return
        self._notify_fix(fix)

    def fetch_fix(self) -> LocationFix:
        """
        Resolve the current IP address to coordinates.

        Raises:
            LocationLookupError: On network failure or an unusable response
        """
        try:
            logging.info(f"Requesting IP location: {self.url}")
            response = requests.get(self.url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise LocationLookupError(f"Network error: {e}") from e

        if not response.ok:
            raise LocationLookupError(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise LocationLookupError(f"Failed to parse response: {e}") from e

        if not isinstance(data, dict) or data.get("error"):
            reason = data.get("reason") if isinstance(data, dict) else None
            raise LocationLookupError(f"Lookup rejected: {reason or 'unexpected response'}")

        try:
            latitude = float(data["latitude"])
            longitude = float(data["longitude"])
        except (KeyError, TypeError, ValueError) as e:
            raise LocationLookupError(f"Response missing coordinates: {e}") from e

        logging.info(f"IP location resolved: {latitude:.4f}, {longitude:.4f} ({data.get('city', '?')})")
        return LocationFix(latitude=latitude, longitude=longitude)
