"""AQI provider abstraction - allows swapping different air-quality APIs."""
from abc import ABC, abstractmethod
from typing import Optional

from aqi_data import AQIReading, ErrorKind, NA_TEXT, QueryParams


class AQIProviderError(Exception):
    """Exception raised when a provider fails to produce a reading."""
    kind = ErrorKind.TRANSPORT


class MissingConfigError(AQIProviderError):
    """No token, or no coordinates/city the provider can use."""
    kind = ErrorKind.MISSING_CONFIG


class TransportError(AQIProviderError):
    """Non-2xx status, upstream rejection, or a transport-level failure."""
    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class DecodeError(AQIProviderError):
    """Payload does not match the expected schema."""
    kind = ErrorKind.DECODE


class NoDataError(AQIProviderError):
    """Well-formed payload without a usable current value."""
    kind = ErrorKind.NO_DATA


class AQIProviderBase(ABC):
    """Abstract base class for air-quality providers."""

    name = "provider"
    requires_token = True
    uses_coordinates = True
    uses_city = False
    # Indicator text for TransportError; upstreams differ in what it usually means.
    transport_error_label = NA_TEXT

    @abstractmethod
    def fetch(self, params: QueryParams) -> AQIReading:
        """
        Perform exactly one upstream request and normalize the result.

        Args:
            params: Resolved token/location for this request

        Returns:
            AQIReading: Current reading

        Raises:
            AQIProviderError: If the provider fails to produce a reading
        """
        pass

    def check_params(self, params: QueryParams) -> None:
        """Raise MissingConfigError unless params carry what this provider needs."""
        if self.requires_token and not params.token:
            raise MissingConfigError(f"{self.name}: API token is not configured")
        if self.uses_coordinates and params.has_coordinates:
            return
        if self.uses_city and params.city:
            return
        raise MissingConfigError(f"{self.name}: no usable location in request parameters")
