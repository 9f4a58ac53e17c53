"""AQI service that waits out transient network absence."""
import logging
import threading

from aqi_data import AQIReading, QueryParams
from aqi_provider import AQIProviderBase, TransportError


class AQIService:
    """
    Service that wraps an AQI provider with connectivity retries.

    Connection-level failures (refused, DNS, timeout) are retried with a growing
    delay. HTTP status errors, decode errors and empty payloads are returned to
    the caller on the first attempt.
    """

    def __init__(
        self,
        provider: AQIProviderBase,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0
    ):
        """
        Initialize AQI service.

        Args:
            provider: AQI provider to use
            max_retries: Maximum number of attempts on connection failures
            retry_delay_seconds: Base delay between attempts
        """
        self.provider = provider
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Abandon any pending retry wait; later fetches fail immediately."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def fetch(self, params: QueryParams) -> AQIReading:
        """
        Fetch the current reading.

        Returns:
            AQIReading: Current reading

        Raises:
            AQIProviderError: If the provider fails and retries are exhausted
        """
        logging.info(f"Fetching AQI from {self.provider.name}...")
        last_error = None
        for attempt in range(self.max_retries):
            if self.cancelled:
                raise TransportError("Fetch cancelled")
            try:
                logging.debug(f"AQI fetch attempt {attempt + 1}/{self.max_retries}")
                reading = self.provider.fetch(params)
                logging.info(f"AQI fetch successful: {reading.display_value}")
                return reading
            except TransportError as e:
                last_error = e
                logging.warning(f"AQI fetch attempt {attempt + 1} failed: {e}")
                if not e.retryable:
                    raise
                if attempt < self.max_retries - 1:
                    retry_delay = self.retry_delay_seconds * (attempt + 1)
                    logging.info(f"Waiting {retry_delay}s for connectivity...")
                    if self._cancelled.wait(retry_delay):
                        raise TransportError("Fetch cancelled") from e

        logging.error(f"Failed to fetch AQI after {self.max_retries} attempts")
        raise TransportError(
            f"Failed to fetch AQI after {self.max_retries} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
        )
