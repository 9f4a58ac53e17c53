"""Air quality index in the menu bar (or the log, with --headless)."""
import argparse
import logging
import os
import signal
import sys
from typing import Optional, Tuple

from aqi_provider import AQIProviderBase
from aqi_service import AQIService
from config import (
    DEFAULT_LOG_FILE,
    INTERVAL_CHOICES,
    SOURCES,
    AppConfig,
    ConfigError,
    load_config,
)
from event_loop import SerialEventLoop
from location_provider import IPLocationProvider
from openmeteo_provider import OpenMeteoProvider
from polling_controller import PollingController
from settings_store import (
    CITY,
    INTERVAL,
    LATITUDE,
    LONGITUDE,
    TOKEN,
    JSONSettingsStore,
    SettingsStore,
)
from status_presenter import LogStatusPresenter, StatusPresenterBase
from waqi_provider import WAQICityProvider, WAQIGeoProvider


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser("Air quality index in the menu bar")
    parser.add_argument("--source", choices=SOURCES, default=None,
                        help="Upstream API (default: AQI_SOURCE or geo)")
    parser.add_argument("--interval", type=int, choices=INTERVAL_CHOICES, default=None,
                        help="Refresh interval in seconds (persisted)")
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE)
    parser.add_argument("--timeout", type=int, default=10, help="HTTP timeout in seconds")
    parser.add_argument("--max-retries", type=int, default=3)
    parser.add_argument("--retry-delay", type=float, default=2.0)
    parser.add_argument("--no-location", action="store_true", help="Never look up the current location")
    parser.add_argument("--headless", action="store_true", help="Log readings instead of showing a menu bar item")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def setup_logging(log_file: str, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def build_provider(config: AppConfig, timeout: int) -> AQIProviderBase:
    if config.source == "city":
        return WAQICityProvider(base_url=config.waqi_base_url, timeout=timeout)
    if config.source == "forecast":
        return OpenMeteoProvider(base_url=config.forecast_base_url, timeout=timeout)
    return WAQIGeoProvider(base_url=config.waqi_base_url, timeout=timeout)


def build_store(config: AppConfig) -> SettingsStore:
    store = JSONSettingsStore(config.settings_file)
    store.seed({
        TOKEN: config.token,
        CITY: config.city,
        LATITUDE: config.latitude,
        LONGITUDE: config.longitude,
    })
    return store


def build_controller(
    presenter: StatusPresenterBase,
    config: AppConfig,
    store: SettingsStore,
    loop: SerialEventLoop,
    args: argparse.Namespace,
) -> Tuple[PollingController, Optional[IPLocationProvider]]:
    provider = build_provider(config, args.timeout)
    service = AQIService(
        provider=provider,
        max_retries=args.max_retries,
        retry_delay_seconds=args.retry_delay,
    )
    location_provider = None
    if provider.uses_coordinates and not args.no_location:
        location_provider = IPLocationProvider(store, timeout=args.timeout)
    controller = PollingController(
        service=service,
        store=store,
        presenter=presenter,
        loop=loop,
        location_provider=location_provider,
    )
    logging.info(f"AQI service ready (source={provider.name}, location={'ip' if location_provider else 'off'})")
    return controller, location_provider


def signal_handler(signum, frame):
    logging.info(f"Received signal {signum}, shutting down")
    raise KeyboardInterrupt()


def run_headless(controller: PollingController, loop: SerialEventLoop) -> None:
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    controller.start()
    try:
        loop.run_forever()
    except KeyboardInterrupt:
        logging.info("Stopping")
    finally:
        controller.teardown()
        loop.stop()


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_file, args.verbose)
    try:
        config = load_config(args.source)
    except ConfigError as exc:
        raise SystemExit(str(exc)) from exc

    store = build_store(config)
    if args.interval is not None:
        store.set(INTERVAL, args.interval)
    loop = SerialEventLoop()

    if args.headless:
        controller, _ = build_controller(LogStatusPresenter(), config, store, loop, args)
        run_headless(controller, loop)
        return

    # rumps only exists on macOS; headless mode must not require it.
    from menubar_app import run_menubar
    run_menubar(loop, store, lambda presenter: build_controller(presenter, config, store, loop, args))


if __name__ == "__main__":
    main()
