"""Tests for the polling controller."""
from concurrent.futures import Future
from types import SimpleNamespace

import pytest
from aqi_data import (
    AQIReading,
    INVALID_CONFIG_TEXT,
    NA_TEXT,
    PENDING_TEXT,
    PERMISSION_TEXT,
)
from aqi_provider import AQIProviderBase, DecodeError, NoDataError, TransportError
from aqi_service import AQIService
from event_loop import SerialEventLoop
from location_provider import AuthorizationStatus, LocationFix, LocationProviderBase
from polling_controller import PollingController
from settings_store import CITY, INTERVAL, LATITUDE, LONGITUDE, TOKEN, SettingsStore
from status_presenter import FakeStatusPresenter

READING = AQIReading(value=42, observed_at="2024-01-01 11:00:00", station="Limassol, Cyprus")


class ManualTimer:
    def __init__(self, loop, interval, callback):
        self.loop = loop
        self.interval = interval
        self.callback = callback
        self.stopped = False

    def fire(self):
        if not self.stopped:
            self.loop.post(self.callback)

    def stop(self):
        self.stopped = True


class ManualLoop(SerialEventLoop):
    """Real post queue; timers fire only when the test says so."""

    def __init__(self):
        super().__init__()
        self.timers = []

    def call_repeating(self, interval, callback):
        timer = ManualTimer(self, interval, callback)
        self.timers.append(timer)
        return timer


class ManualExecutor:
    """Holds submitted fetches until the test completes them."""

    def __init__(self):
        self.jobs = []
        self.shutdown_called = False

    def submit(self, fn, *args):
        future = Future()
        future.set_running_or_notify_cancel()
        self.jobs.append((fn, args, future))
        return future

    def complete(self, index=-1):
        fn, args, future = self.jobs[index]
        try:
            result = fn(*args)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    def shutdown(self, wait=True):
        self.shutdown_called = True


class CountingProvider(AQIProviderBase):
    name = "counting"

    def __init__(self, reading=READING, error=None, requires_token=True,
                 uses_coordinates=True, uses_city=False, transport_error_label=NA_TEXT):
        self.reading = reading
        self.error = error
        self.requires_token = requires_token
        self.uses_coordinates = uses_coordinates
        self.uses_city = uses_city
        self.transport_error_label = transport_error_label
        self.calls = []

    def fetch(self, params):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return self.reading


class FakeLocationProvider(LocationProviderBase):
    def __init__(self, status=AuthorizationStatus.AUTHORIZED):
        super().__init__()
        self.status = status
        self.fix_requests = 0
        self.authorization_requests = 0

    @property
    def authorization_status(self):
        return self.status

    def request_authorization(self):
        self.authorization_requests += 1

    def request_fix(self):
        self.fix_requests += 1

    def deliver_fix(self, fix):
        self._notify_fix(fix)

    def deliver_failure(self, reason):
        self._notify_failure(reason)


def make_controller(provider=None, store=None, location_provider=None):
    loop = ManualLoop()
    executor = ManualExecutor()
    presenter = FakeStatusPresenter()
    if store is None:
        store = SettingsStore({TOKEN: "secret", LATITUDE: 34.68, LONGITUDE: 33.04})
    provider = provider or CountingProvider()
    controller = PollingController(
        service=AQIService(provider, max_retries=1),
        store=store,
        presenter=presenter,
        loop=loop,
        location_provider=location_provider,
        executor=executor,
    )
    return SimpleNamespace(controller=controller, loop=loop, executor=executor,
                           presenter=presenter, store=store, provider=provider)


def finish_fetch(h, index=-1):
    h.executor.complete(index)
    h.loop.run_pending()


def test_trigger_shows_pending_then_reading():
    h = make_controller()

    h.controller.trigger()
    assert h.presenter.text == PENDING_TEXT
    assert h.controller.is_fetch_in_flight is True

    finish_fetch(h)

    assert h.presenter.text == "42"
    assert "Updated 2024-01-01 11:00:00" in h.presenter.tooltip
    assert "Limassol, Cyprus" in h.presenter.tooltip
    assert h.controller.is_fetch_in_flight is False


def test_at_most_one_fetch_in_flight():
    h = make_controller()

    h.controller.trigger()
    h.controller.trigger()
    h.controller.trigger()

    assert len(h.executor.jobs) == 1

    finish_fetch(h)
    assert len(h.provider.calls) == 1

    h.controller.trigger()
    assert len(h.executor.jobs) == 2


def test_completion_is_applied_on_loop_not_worker():
    h = make_controller()
    h.controller.trigger()

    h.executor.complete()
    assert h.presenter.text == PENDING_TEXT
    assert h.controller.is_fetch_in_flight is True

    h.loop.run_pending()
    assert h.presenter.text == "42"


def test_empty_token_is_missing_config_without_network_call():
    h = make_controller(store=SettingsStore({TOKEN: "", LATITUDE: 1.0, LONGITUDE: 2.0}))

    h.controller.trigger()

    assert h.presenter.text == INVALID_CONFIG_TEXT
    assert h.executor.jobs == []
    assert h.provider.calls == []
    assert h.controller.is_fetch_in_flight is False


def test_tokenless_provider_fetches_without_token():
    provider = CountingProvider(requires_token=False)
    h = make_controller(provider=provider, store=SettingsStore({LATITUDE: 1.0, LONGITUDE: 2.0}))

    h.controller.trigger()
    finish_fetch(h)

    assert h.presenter.text == "42"
    assert provider.calls[0].latitude == 1.0


def test_transport_failure_clears_busy_flag():
    h = make_controller(provider=CountingProvider(error=TransportError("HTTP 500", status_code=500)))

    h.controller.trigger()
    finish_fetch(h)

    assert h.controller.is_fetch_in_flight is False
    assert h.presenter.text == NA_TEXT
    assert h.presenter.tooltip == ""


def test_transport_failure_label_is_provider_specific():
    provider = CountingProvider(error=TransportError("WAQI API error: Invalid key"),
                                transport_error_label=INVALID_CONFIG_TEXT)
    h = make_controller(provider=provider)

    h.controller.trigger()
    finish_fetch(h)

    assert h.presenter.text == INVALID_CONFIG_TEXT
    assert h.controller.is_fetch_in_flight is False


@pytest.mark.parametrize("error", [
    DecodeError("Response missing 'data' block"),
    NoDataError("Station reports no current AQI"),
])
def test_payload_failures_render_na(error):
    h = make_controller(provider=CountingProvider(error=error, transport_error_label=INVALID_CONFIG_TEXT))

    h.controller.trigger()
    finish_fetch(h)

    assert h.presenter.text == NA_TEXT
    assert h.controller.is_fetch_in_flight is False


def test_unexpected_failure_is_treated_as_transport_error():
    h = make_controller(provider=CountingProvider(error=RuntimeError("unexpected")))

    h.controller.trigger()
    finish_fetch(h)

    assert h.presenter.text == NA_TEXT
    assert h.controller.is_fetch_in_flight is False


def test_error_detail_is_not_shown():
    h = make_controller(provider=CountingProvider(error=TransportError("HTTP 503: upstream exploded")))

    h.controller.trigger()
    finish_fetch(h)

    assert all("exploded" not in text for text in h.presenter.texts + h.presenter.tooltips)


def test_start_uses_persisted_interval_and_fetches():
    store = SettingsStore({TOKEN: "t", LATITUDE: 1.0, LONGITUDE: 2.0, INTERVAL: 900})
    h = make_controller(store=store)

    h.controller.start()

    assert [t.interval for t in h.loop.timers] == [900]
    assert len(h.executor.jobs) == 1


def test_set_interval_replaces_timer_persists_and_fetches():
    h = make_controller()
    h.controller.start()
    finish_fetch(h)
    old_timer = h.loop.timers[0]
    assert old_timer.interval == 3600

    h.controller.set_interval(600)

    assert old_timer.stopped is True
    assert h.loop.timers[-1].interval == 600
    assert h.controller.active_timer is h.loop.timers[-1]
    assert h.store.get(INTERVAL) == 600
    assert len(h.executor.jobs) == 2

    finish_fetch(h)
    old_timer.fire()
    h.loop.run_pending()
    assert len(h.executor.jobs) == 2

    h.loop.timers[-1].fire()
    h.loop.run_pending()
    assert len(h.executor.jobs) == 3


def test_set_interval_rejects_unsupported_value():
    h = make_controller()
    h.controller.start()

    with pytest.raises(ValueError):
        h.controller.set_interval(42)

    assert len(h.loop.timers) == 1
    assert h.controller.interval_seconds == 3600


def test_timer_tick_triggers_fetch():
    h = make_controller()
    h.controller.start()
    finish_fetch(h)

    h.loop.timers[0].fire()
    h.loop.run_pending()

    assert len(h.executor.jobs) == 2


def test_city_provider_uses_city():
    provider = CountingProvider(uses_coordinates=False, uses_city=True)
    h = make_controller(provider=provider, store=SettingsStore({TOKEN: "t", CITY: "Limassol"}))

    h.controller.trigger()
    finish_fetch(h)

    assert provider.calls[0].city == "Limassol"
    assert provider.calls[0].latitude is None


def test_no_location_and_no_provider_is_missing_config():
    h = make_controller(store=SettingsStore({TOKEN: "t"}))

    h.controller.trigger()

    assert h.presenter.text == INVALID_CONFIG_TEXT
    assert h.executor.jobs == []
    assert h.controller.is_fetch_in_flight is False


def test_zero_coordinates_are_a_location():
    h = make_controller(store=SettingsStore({TOKEN: "t", LATITUDE: 0.0, LONGITUDE: 0.0}))

    h.controller.trigger()
    finish_fetch(h)

    assert h.provider.calls[0].latitude == 0.0
    assert h.presenter.text == "42"


def test_missing_coordinates_request_a_fix_then_fetch():
    location = FakeLocationProvider()
    h = make_controller(store=SettingsStore({TOKEN: "t"}), location_provider=location)

    h.controller.start()

    assert location.fix_requests == 1
    assert h.executor.jobs == []
    assert h.presenter.text == PENDING_TEXT
    assert h.controller.is_fetch_in_flight is False

    location.deliver_fix(LocationFix(34.68, 33.04))
    assert h.executor.jobs == []  # marshalled onto the loop
    h.loop.run_pending()

    assert len(h.executor.jobs) == 1
    assert h.store.get(LATITUDE) == 34.68
    assert h.store.get(LONGITUDE) == 33.04
    finish_fetch(h)
    assert h.provider.calls[0].latitude == 34.68


def test_movement_below_threshold_does_not_fetch():
    location = FakeLocationProvider()
    h = make_controller(location_provider=location)
    h.controller.on_location_fix_received(LocationFix(34.68, 33.04))
    finish_fetch(h)

    h.controller.on_location_fix_received(LocationFix(34.6805, 33.04))  # ~55 m

    assert len(h.executor.jobs) == 1


def test_movement_above_threshold_fetches_new_position():
    location = FakeLocationProvider()
    h = make_controller(location_provider=location)
    h.controller.on_location_fix_received(LocationFix(34.68, 33.04))
    finish_fetch(h)

    h.controller.on_location_fix_received(LocationFix(34.682, 33.04))  # ~222 m
    finish_fetch(h)

    assert len(h.executor.jobs) == 2
    assert h.provider.calls[-1].latitude == 34.682


def test_last_fix_preferred_over_persisted_coordinates():
    location = FakeLocationProvider()
    h = make_controller(location_provider=location)
    h.controller.on_location_fix_received(LocationFix(51.5, -0.12))
    finish_fetch(h)
    h.store.set(LATITUDE, 10.0)
    h.store.set(LONGITUDE, 10.0)

    h.controller.trigger()
    finish_fetch(h)

    assert (h.provider.calls[-1].latitude, h.provider.calls[-1].longitude) == (51.5, -0.12)


def test_permission_denied_renders_and_prompts_once():
    location = FakeLocationProvider(status=AuthorizationStatus.DENIED)
    h = make_controller(store=SettingsStore({TOKEN: "t"}), location_provider=location)

    h.controller.start()
    h.controller.trigger()
    h.controller.on_location_authorization_changed(AuthorizationStatus.DENIED)

    assert h.presenter.text == PERMISSION_TEXT
    assert len(h.presenter.alerts) == 1
    assert location.fix_requests == 0
    assert h.executor.jobs == []
    assert h.controller.is_fetch_in_flight is False


def test_undetermined_authorization_is_requested():
    location = FakeLocationProvider(status=AuthorizationStatus.NOT_DETERMINED)
    h = make_controller(store=SettingsStore({TOKEN: "t"}), location_provider=location)

    h.controller.start()

    assert location.authorization_requests >= 1
    assert location.fix_requests == 0


def test_authorization_granted_requests_one_fix():
    location = FakeLocationProvider(status=AuthorizationStatus.NOT_DETERMINED)
    h = make_controller(location_provider=location)

    h.controller.on_location_authorization_changed(AuthorizationStatus.AUTHORIZED)

    assert location.fix_requests == 1


class OptInLocationProvider(FakeLocationProvider):
    """Grants authorization as soon as it is asked, like the IP lookup."""

    def request_authorization(self):
        super().request_authorization()
        self.status = AuthorizationStatus.AUTHORIZED
        self._notify_authorization(self.status)


def test_opt_in_at_startup_requests_one_fix():
    location = OptInLocationProvider(status=AuthorizationStatus.NOT_DETERMINED)
    h = make_controller(store=SettingsStore({TOKEN: "t"}), location_provider=location)

    h.controller.start()
    h.loop.run_pending()

    assert location.authorization_requests == 1
    assert location.fix_requests == 1


def test_refresh_location_waits_for_outstanding_fix():
    location = FakeLocationProvider()
    h = make_controller(location_provider=location)
    h.controller.start()
    finish_fetch(h)
    assert location.fix_requests == 1

    h.controller.refresh_location()
    assert location.fix_requests == 1

    location.deliver_failure("Network error: offline")
    h.loop.run_pending()
    h.controller.refresh_location()

    assert location.fix_requests == 2


def test_received_fix_allows_next_request():
    location = FakeLocationProvider()
    h = make_controller(location_provider=location)
    h.controller.start()
    finish_fetch(h)

    location.deliver_fix(LocationFix(34.68, 33.04))
    h.loop.run_pending()
    finish_fetch(h)
    h.controller.refresh_location()

    assert location.fix_requests == 2


def test_location_failure_without_coordinates_is_invalid_config():
    location = FakeLocationProvider()
    h = make_controller(store=SettingsStore({TOKEN: "t"}), location_provider=location)
    h.controller.start()

    location.deliver_failure("Network error: offline")
    h.loop.run_pending()

    assert h.presenter.text == INVALID_CONFIG_TEXT


def test_location_failure_with_coordinates_keeps_display():
    location = FakeLocationProvider()
    h = make_controller(location_provider=location)
    h.controller.start()
    finish_fetch(h)

    location.deliver_failure("Network error: offline")
    h.loop.run_pending()

    assert h.presenter.text == "42"


def test_refresh_location_requests_fix_and_fetches():
    location = FakeLocationProvider()
    h = make_controller(location_provider=location)

    h.controller.refresh_location()

    assert location.fix_requests == 1
    assert len(h.executor.jobs) == 1


def test_teardown_stops_timer_and_ignores_late_completion():
    h = make_controller()
    h.controller.start()
    timer = h.loop.timers[0]

    h.controller.teardown()
    finish_fetch(h)

    assert timer.stopped is True
    assert h.controller.active_timer is None
    assert h.executor.shutdown_called is True
    assert h.presenter.texts == [PENDING_TEXT]

    h.controller.trigger()
    h.controller.on_location_fix_received(LocationFix(1.0, 2.0))
    assert len(h.executor.jobs) == 1


def test_teardown_detaches_location_callbacks():
    location = FakeLocationProvider()
    h = make_controller(location_provider=location)
    h.controller.start()

    h.controller.teardown()
    location.deliver_fix(LocationFix(1.0, 2.0))

    assert h.loop.run_pending() == 0
