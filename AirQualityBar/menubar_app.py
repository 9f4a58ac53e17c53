"""macOS menu bar front end (rumps)."""
import logging
from typing import Dict, Optional

import rumps

from aqi_data import PENDING_TEXT
from config import INTERVAL_CHOICES, interval_label
from event_loop import SerialEventLoop
from location_provider import AuthorizationStatus, IPLocationProvider
from polling_controller import PollingController
from settings_store import CITY, LATITUDE, LONGITUDE, NOT_SET, TOKEN, SettingsStore, parse_coordinate
from status_presenter import StatusPresenterBase

APP_NAME = "AirQualityBar"
NO_DETAILS_TEXT = "No reading yet"
PUMP_INTERVAL_SECONDS = 0.2


class MenuBarPresenter(StatusPresenterBase):
    """Renders onto the status item title; the tooltip goes into the first menu row."""

    def __init__(self, app: "AirQualityBarApp"):
        self.app = app

    def set_text(self, text: str) -> None:
        self.app.title = text

    def set_tooltip(self, text: str) -> None:
        self.app.details_item.title = text or NO_DETAILS_TEXT

    def show_alert(self, title: str, message: str) -> None:
        rumps.alert(title=title, message=message)


class AirQualityBarApp(rumps.App):
    def __init__(self, loop: SerialEventLoop, store: SettingsStore):
        super().__init__(APP_NAME, title=PENDING_TEXT, quit_button=None)
        self.loop = loop
        self.store = store
        self.controller: Optional[PollingController] = None
        self.location_provider: Optional[IPLocationProvider] = None

        self.details_item = rumps.MenuItem(NO_DETAILS_TEXT)
        self.details_item.set_callback(None)

        self.interval_items: Dict[int, rumps.MenuItem] = {}
        interval_menu = rumps.MenuItem("Refresh Interval")
        for seconds in INTERVAL_CHOICES:
            item = rumps.MenuItem(interval_label(seconds), callback=self.on_interval)
            self.interval_items[seconds] = item
            interval_menu.add(item)

        self.location_item = rumps.MenuItem("Use Location", callback=self.on_toggle_location)

        self.menu = [
            self.details_item,
            None,  # separator
            rumps.MenuItem("Refresh Now", callback=self.on_refresh),
            rumps.MenuItem("Update Location", callback=self.on_update_location),
            interval_menu,
            self.location_item,
            None,  # separator
            rumps.MenuItem("Settings…", callback=self.on_settings),
            rumps.MenuItem("Quit", callback=self.on_quit),
        ]

        # Drains work posted by timers, HTTP completions and location lookups.
        self._pump_timer = rumps.Timer(self._pump, PUMP_INTERVAL_SECONDS)

    def attach(self, controller: PollingController, location_provider: Optional[IPLocationProvider]) -> None:
        self.controller = controller
        self.location_provider = location_provider
        if location_provider is None:
            self.location_item.set_callback(None)
        self._sync_menu_state()

    def start(self) -> None:
        self._pump_timer.start()
        self.loop.post(self.controller.start)
        self.run()

    def _pump(self, _):
        self.loop.run_pending()
        self._sync_menu_state()

    def _sync_menu_state(self) -> None:
        current = self.controller.interval_seconds if self.controller else None
        for seconds, item in self.interval_items.items():
            item.state = int(seconds == current)
        if self.location_provider is not None:
            status = self.location_provider.authorization_status
            self.location_item.state = int(status is AuthorizationStatus.AUTHORIZED)

    def on_refresh(self, _):
        self.loop.post(self.controller.trigger)

    def on_update_location(self, _):
        self.loop.post(self.controller.refresh_location)

    def on_interval(self, sender):
        for seconds, item in self.interval_items.items():
            if item is sender:
                self.loop.post(self.controller.set_interval, seconds)
                break

    def on_toggle_location(self, sender):
        enabled = not bool(sender.state)
        logging.info(f"Location {'enabled' if enabled else 'disabled'} by user")
        self.location_provider.set_enabled(enabled)
        sender.state = int(enabled)

    def on_settings(self, _):
        updates = {}
        if self.controller.provider.requires_token:
            token = self._prompt("API token", "WAQI API token (leave empty to clear):", TOKEN)
            if token is None:
                return
            updates[TOKEN] = token or None

        city = self._prompt("City", "City name for city-based lookups (leave empty to clear):", CITY)
        if city is None:
            return
        updates[CITY] = city or None

        for key in (LATITUDE, LONGITUDE):
            text = self._prompt(key.capitalize(), f"{key.capitalize()} in decimal degrees (leave empty to clear):", key)
            if text is None:
                return
            try:
                updates[key] = parse_coordinate(key, text)
            except ValueError as e:
                logging.warning(f"Rejected settings input: {e}")
                rumps.alert(title="Invalid setting", message=str(e))
                return

        for key, value in updates.items():
            self.store.set(key, value)
        logging.info("Settings saved from dialog")
        self.loop.post(self.controller.trigger)

    def _prompt(self, title: str, message: str, key: str) -> Optional[str]:
        current = self.store.get(key)
        window = rumps.Window(
            message=message,
            title=f"{APP_NAME} – {title}",
            default_text="" if current is NOT_SET else str(current),
            ok="Save",
            cancel="Cancel",
            dimensions=(320, 24),
        )
        response = window.run()
        if not response.clicked:
            return None
        return response.text.strip()

    def on_quit(self, _):
        logging.info("Quit requested")
        self._pump_timer.stop()
        self.controller.teardown()
        self.loop.stop()
        rumps.quit_application()


def run_menubar(loop: SerialEventLoop, store: SettingsStore, build_controller) -> None:
    """
    Build the menu bar app, wire a controller to it and run until Quit.

    Args:
        loop: Serialized context shared with the controller
        store: Settings store edited by the Settings dialog
        build_controller: Callable taking a presenter, returning (controller, location_provider)
    """
    app = AirQualityBarApp(loop, store)
    controller, location_provider = build_controller(MenuBarPresenter(app))
    app.attach(controller, location_provider)
    app.start()
