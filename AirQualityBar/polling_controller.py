"""Polling controller: decides when to fetch, keeps at most one fetch in flight, renders the outcome."""
import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Optional

from aqi_data import (
    AQIReading,
    ErrorKind,
    PENDING_TEXT,
    PERMISSION_TEXT,
    QueryParams,
    indicator_text,
)
from aqi_provider import AQIProviderBase, AQIProviderError, MissingConfigError
from aqi_service import AQIService
from config import INTERVAL_CHOICES, MIN_MOVEMENT_METERS
from location_provider import (
    AuthorizationStatus,
    LocationFix,
    LocationProviderBase,
    MovementFilter,
)
from settings_store import INTERVAL, LATITUDE, LONGITUDE, Settings, SettingsStore, load_settings
from status_presenter import StatusPresenterBase

PERMISSION_ALERT_TITLE = "Location access needed"
PERMISSION_ALERT_MESSAGE = (
    "Air quality for your current position needs location access. "
    "Enable location in the menu, or enter a city or coordinates in Settings."
)


class PollingController:
    """
    Single authority for "should a fetch happen now".

    Every public method must run on the loop's thread. Work from other threads
    (timer ticks, location callbacks, HTTP completion) arrives via ``loop.post``,
    so plain attributes are enough to keep state consistent.
    """

    def __init__(
        self,
        service: AQIService,
        store: SettingsStore,
        presenter: StatusPresenterBase,
        loop: Any,
        location_provider: Optional[LocationProviderBase] = None,
        executor: Optional[Executor] = None,
        movement_threshold_meters: float = MIN_MOVEMENT_METERS,
    ):
        """
        Args:
            service: Fetches readings (runs on ``executor``)
            store: Persisted settings
            presenter: Status-bar surface
            loop: Serialized context offering ``post`` and ``call_repeating``
            location_provider: Source of location fixes, if the platform has one
            executor: Runs fetches off the loop thread
            movement_threshold_meters: Minimum distance for a new fix to count
        """
        self.service = service
        self.store = store
        self.presenter = presenter
        self.loop = loop
        self.location_provider = location_provider
        self.executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="aqi-fetch")
        self.movement_filter = MovementFilter(movement_threshold_meters)

        self.is_fetch_in_flight = False
        self.active_timer = None
        self.interval_seconds: Optional[int] = None
        self.alive = True
        self._future: Optional[Future] = None
        self._permission_prompted = False
        self._fix_requested = False

    @property
    def provider(self) -> AQIProviderBase:
        return self.service.provider

    @property
    def _wants_location(self) -> bool:
        return self.location_provider is not None and self.provider.uses_coordinates

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        """Start the refresh timer, hook up location updates and fetch once."""
        settings = load_settings(self.store)
        logging.info(f"Starting AQI polling via {self.provider.name} every {settings.interval_seconds}s")
        self._start_timer(settings.interval_seconds)

        if self._wants_location:
            self.location_provider.attach(
                lambda status: self.loop.post(self.on_location_authorization_changed, status),
                lambda fix: self.loop.post(self.on_location_fix_received, fix),
                lambda reason: self.loop.post(self.on_location_failed, reason),
            )
            self.on_location_authorization_changed(self.location_provider.authorization_status)

        self.trigger()

    def teardown(self) -> None:
        """Stop the timer and abandon any in-flight fetch. Later callbacks are ignored."""
        if not self.alive:
            return
        logging.info("Tearing down AQI polling")
        self.alive = False
        self._stop_timer()
        if self.location_provider is not None:
            self.location_provider.detach()
        self.service.cancel()
        if self._future is not None:
            self._future.cancel()
        self.executor.shutdown(wait=False)

    # -- fetch cycle -----------------------------------------------------

    def trigger(self) -> None:
        """Start a fetch unless one is already in flight."""
        if not self.alive:
            return
        if self.is_fetch_in_flight:
            logging.debug("Fetch already in flight, ignoring trigger")
            return

        self.is_fetch_in_flight = True
        self.presenter.set_text(PENDING_TEXT)

        settings = load_settings(self.store)
        if self.provider.requires_token and not settings.token:
            self.on_fetch_failed(MissingConfigError("API token is not configured"))
            return

        params = self._resolve_params(settings)
        if params is None:
            if self._wants_location:
                # The location callback triggers the fetch once a fix arrives.
                logging.info("No location available yet, requesting a fix")
                self._request_location()
                self.is_fetch_in_flight = False
                return
            self.on_fetch_failed(MissingConfigError("No coordinates or city configured"))
            return

        self._submit(params)

    def on_fetch_succeeded(self, reading: AQIReading) -> None:
        if not self.alive:
            return
        logging.info(f"AQI {reading.display_value} observed at {reading.observed_at or '?'}")
        self.presenter.set_text(reading.display_value)
        self.presenter.set_tooltip(reading.tooltip())
        self.is_fetch_in_flight = False

    def on_fetch_failed(self, error: BaseException) -> None:
        if not self.alive:
            return
        if isinstance(error, AQIProviderError):
            kind = error.kind
            logging.warning(f"AQI fetch failed ({kind.value}): {error} [status={getattr(error, 'status_code', None)}]")
        else:
            kind = ErrorKind.TRANSPORT
            logging.error(f"Unexpected AQI fetch failure: {error}", exc_info=error)
        self.presenter.set_text(indicator_text(kind, self.provider.transport_error_label))
        self.presenter.set_tooltip("")
        self.is_fetch_in_flight = False

    def _resolve_params(self, settings: Settings) -> Optional[QueryParams]:
        if self.provider.uses_coordinates:
            fix = self.movement_filter.last_accepted
            if fix is not None:
                return QueryParams(token=settings.token, latitude=fix.latitude, longitude=fix.longitude)
            if settings.has_coordinates:
                return QueryParams(token=settings.token, latitude=settings.latitude,
                                   longitude=settings.longitude)
        if self.provider.uses_city and settings.city:
            return QueryParams(token=settings.token, city=settings.city)
        return None

    def _submit(self, params: QueryParams) -> None:
        if params.has_coordinates:
            logging.info(f"Fetching AQI for {params.latitude:.4f}, {params.longitude:.4f}")
        else:
            logging.info(f"Fetching AQI for city {params.city!r}")
        future = self.executor.submit(self.service.fetch, params)
        self._future = future
        # Completion runs on a worker thread; hop back onto the loop before touching state.
        future.add_done_callback(lambda done: self.loop.post(self._on_future_done, done))

    def _on_future_done(self, future: Future) -> None:
        if future is self._future:
            self._future = None
        if not self.alive:
            logging.debug("Ignoring fetch completion after teardown")
            return
        if future.cancelled():
            self.is_fetch_in_flight = False
            return
        error = future.exception()
        if error is not None:
            self.on_fetch_failed(error)
        else:
            self.on_fetch_succeeded(future.result())

    # -- interval --------------------------------------------------------

    def set_interval(self, seconds: int) -> None:
        """Switch to a new refresh period, persist it, and fetch right away."""
        if seconds not in INTERVAL_CHOICES:
            raise ValueError(f"Unsupported refresh interval: {seconds}s")
        if not self.alive:
            return
        logging.info(f"Refresh interval set to {seconds}s")
        self._start_timer(seconds)
        self.store.set(INTERVAL, seconds)
        self.trigger()

    def _start_timer(self, seconds: int) -> None:
        self._stop_timer()
        self.active_timer = self.loop.call_repeating(seconds, self.trigger)
        self.interval_seconds = seconds

    def _stop_timer(self) -> None:
        if self.active_timer is not None:
            self.active_timer.stop()
            self.active_timer = None

    # -- location --------------------------------------------------------

    def refresh_location(self) -> None:
        """Manual update: ask for a fresh fix and fetch with what is known now."""
        if not self.alive:
            return
        if self._wants_location:
            self._request_location()
        self.trigger()

    def on_location_authorization_changed(self, status: AuthorizationStatus) -> None:
        if not self.alive or self.location_provider is None:
            return
        logging.info(f"Location authorization: {status.value}")
        if status is AuthorizationStatus.AUTHORIZED:
            self._request_fix()
        elif status is AuthorizationStatus.DENIED:
            self._render_permission_required()
        else:
            self.location_provider.request_authorization()

    def on_location_fix_received(self, fix: LocationFix) -> None:
        if not self.alive:
            return
        self._fix_requested = False
        if not self.movement_filter.accept(fix):
            return
        logging.info(f"Accepted location fix {fix.latitude:.4f}, {fix.longitude:.4f}")
        self.store.set(LATITUDE, fix.latitude)
        self.store.set(LONGITUDE, fix.longitude)
        self.trigger()

    def on_location_failed(self, reason: str) -> None:
        if not self.alive:
            return
        self._fix_requested = False
        logging.warning(f"Location fix failed: {reason}")
        if self.is_fetch_in_flight or self.movement_filter.last_accepted is not None:
            return
        if not load_settings(self.store).has_coordinates:
            self.presenter.set_text(indicator_text(ErrorKind.MISSING_CONFIG))
            self.presenter.set_tooltip("")

    def _request_location(self) -> None:
        status = self.location_provider.authorization_status
        if status is AuthorizationStatus.AUTHORIZED:
            self._request_fix()
        elif status is AuthorizationStatus.DENIED:
            self._render_permission_required()
        else:
            self.location_provider.request_authorization()

    def _request_fix(self) -> None:
        # One lookup at a time; cleared when the fix or the failure arrives.
        if self._fix_requested:
            logging.debug("Location fix already requested")
            return
        self._fix_requested = True
        self.location_provider.request_fix()

    def _render_permission_required(self) -> None:
        self.presenter.set_text(PERMISSION_TEXT)
        self.presenter.set_tooltip("")
        if not self._permission_prompted:
            self._permission_prompted = True
            self.presenter.show_alert(PERMISSION_ALERT_TITLE, PERMISSION_ALERT_MESSAGE)
