"""Open-Meteo air-quality forecast provider (hourly series, no token required)."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import requests

from aqi_data import AQIReading, QueryParams
from aqi_provider import AQIProviderBase, DecodeError, NoDataError, TransportError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(text: Any) -> Optional[datetime]:
    if not isinstance(text, str):
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _align(moment: datetime, now: datetime) -> datetime:
    """Make ``moment`` comparable with ``now`` (naive timestamps are in now's zone)."""
    if now.tzinfo is None:
        if moment.tzinfo is None:
            return moment
        return moment.astimezone().replace(tzinfo=None)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=now.tzinfo)
    return moment


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def select_current_sample(
    times: Sequence[Any],
    values: Sequence[Any],
    now: datetime,
) -> Optional[Tuple[float, str]]:
    """
    Pick the "current" sample from parallel hourly arrays.

    Indices whose value is null or non-numeric are skipped. Among the rest, the
    latest timestamp not after ``now`` wins; if every parseable timestamp is in
    the future the earliest parseable sample is used; if no timestamp parses at
    all, the last.

    Args:
        times: ISO-8601 timestamps
        values: Samples, possibly containing None
        now: Reference time; naive timestamps are taken to be in its zone

    Returns:
        (value, timestamp label), or None if there is no usable sample
    """
    candidates = [
        (index, values[index])
        for index in range(min(len(times), len(values)))
        if _is_number(values[index])
    ]
    if not candidates:
        return None

    parsed = []
    for index, value in candidates:
        moment = _parse_timestamp(times[index])
        if moment is not None:
            parsed.append((_align(moment, now), index, value))

    if not parsed:
        index, value = candidates[-1]
        return float(value), str(times[index])

    past = [entry for entry in parsed if entry[0] <= now]
    if past:
        _, index, value = max(past, key=lambda entry: (entry[0], entry[1]))
    else:
        _, index, value = min(parsed, key=lambda entry: (entry[0], entry[1]))
    return float(value), str(times[index])


class OpenMeteoProvider(AQIProviderBase):
    """
    Provider using the Open-Meteo Air Quality API: https://open-meteo.com/en/docs/air-quality-api

    Requests a short window of hourly ``us_aqi`` samples around the current hour
    and selects the most recent past-or-present one.
    """

    BASE_URL = "https://air-quality-api.open-meteo.com"
    PATH = "/v1/air-quality"
    name = "open-meteo"
    requires_token = False
    uses_coordinates = True
    uses_city = False

    def __init__(
        self,
        base_url: str = BASE_URL,
        hourly_field: str = "us_aqi",
        past_hours: int = 2,
        forecast_hours: int = 2,
        timeout: int = 10,
        now_func: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize Open-Meteo provider.

        Args:
            base_url: API root, without trailing slash
            hourly_field: Hourly variable to read
            past_hours: Hours of history to request
            forecast_hours: Hours of forecast to request
            timeout: HTTP request timeout in seconds
            now_func: Returns the current time (timezone-aware)
        """
        self.base_url = base_url.rstrip("/")
        self.hourly_field = hourly_field
        self.past_hours = past_hours
        self.forecast_hours = forecast_hours
        self.timeout = timeout
        self.now_func = now_func

    def build_request(self, params: QueryParams) -> Tuple[str, Dict[str, Any]]:
        """Return the request URL and query parameters for ``params``."""
        self.check_params(params)
        return f"{self.base_url}{self.PATH}", {
            "latitude": params.latitude,
            "longitude": params.longitude,
            "hourly": self.hourly_field,
            "timezone": "auto",
            "past_hours": self.past_hours,
            "forecast_hours": self.forecast_hours,
        }

    def fetch(self, params: QueryParams) -> AQIReading:
        url, query = self.build_request(params)

        try:
            logging.info(f"Making Open-Meteo API request: {url}")
            logging.debug(f"Request parameters: {query}")
            response = requests.get(url, params=query, timeout=self.timeout)
            logging.info(f"API response status: {response.status_code}")
        except requests.exceptions.RequestException as e:
            logging.error(f"Network error during API request: {e}")
            retryable = isinstance(e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout))
            raise TransportError(f"Network error: {e}", retryable=retryable) from e

        if not response.ok:
            logging.error(f"API request failed with status {response.status_code}")
            self._handle_error_response(response)

        try:
            payload = response.json()
        except ValueError as e:
            logging.error(f"Failed to parse API response: {e}")
            raise DecodeError(f"Failed to parse response: {e}") from e

        return self.parse_payload(payload)

    def parse_payload(self, payload: Any) -> AQIReading:
        """Normalize a decoded forecast payload into an AQIReading."""
        if not isinstance(payload, dict):
            raise DecodeError("Response is not a JSON object")
        logging.debug(f"API response data keys: {list(payload.keys())}")

        hourly = payload.get("hourly")
        if not isinstance(hourly, dict):
            raise DecodeError("Response missing 'hourly' block")
        times = hourly.get("time")
        values = hourly.get(self.hourly_field)
        if not isinstance(times, list) or not isinstance(values, list):
            raise DecodeError(f"Response missing 'time' or '{self.hourly_field}' series")
        if len(times) != len(values):
            raise DecodeError(f"Series length mismatch: {len(times)} times, {len(values)} values")

        sample = select_current_sample(times, values, self._location_now(payload))
        if sample is None:
            raise NoDataError(f"No {self.hourly_field} samples in response")

        value, label = sample
        reading = AQIReading(value=value, observed_at=label.replace("T", " "))
        logging.info(f"Successfully parsed AQI reading: {reading.display_value} ({label})")
        return reading

    def _location_now(self, payload: Dict[str, Any]) -> datetime:
        # timezone=auto returns local timestamps plus the location's UTC offset.
        now = self.now_func()
        offset = payload.get("utc_offset_seconds")
        if _is_number(offset):
            return now.astimezone(timezone(timedelta(seconds=int(offset))))
        return now

    def _handle_error_response(self, response: requests.Response) -> None:
        """Raise TransportError from an Open-Meteo error response."""
        try:
            error_data = response.json()
            reason = error_data.get("reason", "Unknown error")
            logging.error(f"Open-Meteo API error response: {error_data}")
            message = f"Open-Meteo API error {response.status_code}: {reason}"
        except (ValueError, AttributeError):
            logging.error(f"Non-JSON error response: HTTP {response.status_code}")
            message = f"HTTP {response.status_code}"
        raise TransportError(message, status_code=response.status_code)
