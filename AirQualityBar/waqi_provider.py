"""World Air Quality Index (WAQI) feed providers: by coordinates or by city name."""
import logging
from typing import Any, Dict, Tuple
from urllib.parse import quote

import requests

from aqi_data import AQIReading, INVALID_CONFIG_TEXT, QueryParams
from aqi_provider import AQIProviderBase, DecodeError, NoDataError, TransportError


class WAQIFeedProvider(AQIProviderBase):
    """
    Provider for the WAQI feed API: https://aqicn.org/json-api/doc/

    Responses look like ``{"status": "ok", "data": {"aqi": 42, ...}}``. Bad tokens
    and unknown cities come back as HTTP 200 with ``{"status": "error"}``, which is
    why transport errors render as "Invalid config" for this upstream.
    """

    BASE_URL = "https://api.waqi.info"
    name = "waqi"
    transport_error_label = INVALID_CONFIG_TEXT

    def __init__(self, base_url: str = BASE_URL, timeout: int = 10):
        """
        Initialize WAQI provider.

        Args:
            base_url: API root, without trailing slash
            timeout: HTTP request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def feed_path(self, params: QueryParams) -> str:
        raise NotImplementedError

    def build_request(self, params: QueryParams) -> Tuple[str, Dict[str, Any]]:
        """Return the request URL and query parameters for ``params``."""
        self.check_params(params)
        return f"{self.base_url}/feed/{self.feed_path(params)}/", {"token": params.token}

    def fetch(self, params: QueryParams) -> AQIReading:
        url, query = self.build_request(params)

        try:
            logging.info(f"Making WAQI API request: {url}")
            response = requests.get(url, params=query, timeout=self.timeout)
            logging.info(f"API response status: {response.status_code}")
        except requests.exceptions.RequestException as e:
            logging.error(f"Network error during API request: {e}")
            retryable = isinstance(e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout))
            raise TransportError(f"Network error: {e}", retryable=retryable) from e

        if not response.ok:
            logging.error(f"API request failed with status {response.status_code}")
            raise TransportError(f"HTTP {response.status_code}: {response.text[:200]}",
                                 status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            logging.error(f"Failed to parse API response: {e}")
            raise DecodeError(f"Failed to parse response: {e}") from e

        return self.parse_payload(payload, status_code=response.status_code)

    def parse_payload(self, payload: Any, status_code: int = 200) -> AQIReading:
        """Normalize a decoded feed payload into an AQIReading."""
        if not isinstance(payload, dict):
            raise DecodeError("Response is not a JSON object")
        logging.debug(f"API response data keys: {list(payload.keys())}")

        status = payload.get("status")
        if status != "ok":
            # On errors "data" holds a message such as "Invalid key" or "Unknown station".
            message = payload.get("data")
            logging.error(f"WAQI API error response: status={status} data={message}")
            raise TransportError(f"WAQI API error: {message}", status_code=status_code)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise DecodeError("Response missing 'data' block")

        aqi = data.get("aqi")
        if aqi == "-":
            raise NoDataError("Station reports no current AQI")
        if isinstance(aqi, bool) or aqi is None:
            raise DecodeError(f"Invalid 'aqi' value: {aqi!r}")
        try:
            value = float(aqi)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Invalid 'aqi' value: {aqi!r}") from e

        time_block = data.get("time")
        observed_at = time_block.get("s", "") if isinstance(time_block, dict) else ""
        city_block = data.get("city")
        station = city_block.get("name") if isinstance(city_block, dict) else None

        reading = AQIReading(value=value, observed_at=observed_at or "", station=station)
        logging.info(f"Successfully parsed AQI reading: {reading.display_value} ({observed_at})")
        return reading


class WAQIGeoProvider(WAQIFeedProvider):
    """WAQI feed for the station nearest to a coordinate pair."""

    name = "waqi-geo"
    uses_coordinates = True
    uses_city = False

    def feed_path(self, params: QueryParams) -> str:
        return f"geo:{params.latitude};{params.longitude}"


class WAQICityProvider(WAQIFeedProvider):
    """WAQI feed looked up by city name."""

    name = "waqi-city"
    uses_coordinates = False
    uses_city = True

    def feed_path(self, params: QueryParams) -> str:
        return quote(params.city.strip(), safe="")
