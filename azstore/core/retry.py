"""
Retry filters for the azstore HTTP pipeline.

RetryPolicyFilter decides from the status code (or local error) of each
attempt whether to try again and against which location. Subclasses supply
the retry count and interval policy.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from azstore.core.constants import LocationMode, RequestLocationMode, StorageLocation
from azstore.core.exceptions import HTTPError, InvalidOptionsError

if TYPE_CHECKING:
    from azstore.core.http_client import HttpRequest, HttpResponse, NextCall

logger = logging.getLogger(__name__)


def get_location(location_mode: LocationMode, request_location_mode: RequestLocationMode) -> StorageLocation:
    """
    Resolve which replica a request goes to.

    Args:
        location_mode: Client location preference
        request_location_mode: Replicas the operation supports

    Returns:
        StorageLocation to send the request to

    Raises:
        InvalidOptionsError: If the two modes contradict each other
    """
    if request_location_mode == RequestLocationMode.PRIMARY_ONLY and location_mode == LocationMode.SECONDARY_ONLY:
        raise InvalidOptionsError("This operation can only be executed against the primary storage location.")

    if request_location_mode == RequestLocationMode.SECONDARY_ONLY and location_mode == LocationMode.PRIMARY_ONLY:
        raise InvalidOptionsError("This operation can only be executed against the secondary storage location.")

    if request_location_mode == RequestLocationMode.PRIMARY_ONLY:
        return StorageLocation.PRIMARY
    if request_location_mode == RequestLocationMode.SECONDARY_ONLY:
        return StorageLocation.SECONDARY

    if location_mode in (LocationMode.PRIMARY_ONLY, LocationMode.PRIMARY_THEN_SECONDARY):
        return StorageLocation.PRIMARY
    return StorageLocation.SECONDARY


class RetryPolicyFilter:
    """
    Base retry filter.

    The ``retry_data`` dict lives for the whole request and carries the
    attempt count, the interval chosen by the policy, the current location
    and the time of the last attempt against each location.
    """

    def __init__(self, retry_count: Optional[int] = None, retry_interval: Optional[float] = None):
        self.retry_count = retry_count if retry_count is not None else 0
        self.retry_interval = retry_interval
        self._wait_interval: float = 0
        self._request_options: Dict[str, Any] = {}

    def __call__(self, request: "HttpRequest", next_call: "NextCall") -> "HttpResponse":
        retry_data: Dict[str, Any] = {"request_options": request.options}
        while True:
            response = None
            retry_data.pop("error", None)
            try:
                response = next_call()
            except (HTTPError, httpx.TransportError, OSError) as exc:
                retry_data["error"] = exc

            if not self.should_retry(response, retry_data):
                break

            request.uri = retry_data.get("uri") or request.original_uri
            logger.warning(
                f"Retrying {request.method} request (attempt {retry_data.get('count')}) "
                f"against {retry_data['current_location'].value} location"
            )

        if retry_data.get("error") is not None:
            raise retry_data["error"]
        return response

    def should_retry(self, response: Optional["HttpResponse"], retry_data: Dict[str, Any]) -> bool:
        """
        Decide whether the request should be sent again.

        Args:
            response: Response of the last attempt, if one was received
            retry_data: Stateful retry data for the request

        Returns:
            True to retry
        """
        self.init_retry_data(retry_data)
        self.apply_retry_policy(retry_data)

        if retry_data.get("retryable") is None:
            retry_data["retryable"] = True
        else:
            retry_data["retryable"] = retry_data["retryable"] and retry_data.get("count", 0) <= self.retry_count
        if not retry_data["retryable"]:
            return False

        self.should_retry_on_local_error(retry_data)
        if not self.should_retry_on_error(response, retry_data):
            return False

        self.adjust_retry_request(retry_data)
        self.wait_for_retry()

        return retry_data["retryable"]

    def apply_retry_policy(self, retry_data: Dict[str, Any]) -> None:
        """Update the attempt count and interval. Overridden by subclasses."""
        retry_data["count"] = retry_data.get("count", 0) + 1
        retry_data["interval"] = self.retry_interval or 0

    def should_retry_on_local_error(self, retry_data: Dict[str, Any]) -> bool:
        """Classify connection level failures."""
        error = retry_data.get("error")
        if error is None or isinstance(error, HTTPError):
            retry_data["retryable"] = True
            return True

        if isinstance(error, (httpx.TimeoutException, TimeoutError)):
            retry_data["retryable"] = True
        elif isinstance(error, (httpx.ConnectError, ConnectionResetError)):
            # DNS failures and refused/reset connections
            retry_data["retryable"] = True
        elif isinstance(error, (PermissionError, httpx.UnsupportedProtocol)):
            retry_data["retryable"] = False
        elif "timeout" in str(error).lower():
            retry_data["retryable"] = True

        return retry_data["retryable"]

    def should_retry_on_error(self, response: Optional["HttpResponse"], retry_data: Dict[str, Any]) -> bool:
        """Classify the response status of the last attempt."""
        error = retry_data.get("error")
        if response is None and isinstance(error, HTTPError):
            response = error.http_response

        if response is None:
            if error is None:
                retry_data["retryable"] = False
            return retry_data["retryable"]

        self.check_location(response, retry_data)
        self.check_status_code(retry_data)

        return retry_data["retryable"]

    def wait_for_retry(self) -> None:
        if self._wait_interval > 0:
            time.sleep(self._wait_interval)

    def adjust_retry_request(self, retry_data: Dict[str, Any]) -> None:
        """Choose the next location and how long to wait before using it."""
        target = self._request_options.get("target_location")
        next_location = target if target is not None else self.get_next_location(retry_data)
        retry_data["current_location"] = next_location

        if next_location == StorageLocation.PRIMARY:
            retry_data["uri"] = self._request_options.get("primary_uri")
            last_attempt = retry_data.get("last_primary_attempt")
        else:
            retry_data["uri"] = self._request_options.get("secondary_uri")
            last_attempt = retry_data.get("last_secondary_attempt")

        if last_attempt is None:
            self._wait_interval = 0
        else:
            since_last_attempt = time.monotonic() - last_attempt
            self._wait_interval = retry_data["interval"] - since_last_attempt

    def init_retry_data(self, retry_data: Dict[str, Any]) -> None:
        if retry_data.get("request_options") is not None:
            self._request_options = retry_data["request_options"]

        if retry_data.get("current_location") is None:
            retry_data["current_location"] = get_location(
                self._request_options.get("location_mode") or LocationMode.PRIMARY_ONLY,
                self._request_options.get("request_location_mode") or RequestLocationMode.PRIMARY_ONLY,
            )

        if retry_data["current_location"] == StorageLocation.PRIMARY:
            retry_data["last_primary_attempt"] = time.monotonic()
        else:
            retry_data["last_secondary_attempt"] = time.monotonic()

    def check_location(self, response: "HttpResponse", retry_data: Dict[str, Any]) -> None:
        # Replication to the secondary may lag, so a 404 there is retried as a server error
        retry_data["secondary_not_found"] = (
            retry_data["current_location"] == StorageLocation.SECONDARY and response.status_code == 404
        )
        if retry_data["secondary_not_found"]:
            retry_data["status_code"] = 500
        else:
            retry_data["status_code"] = response.status_code

    def check_status_code(self, retry_data: Dict[str, Any]) -> None:
        status_code = retry_data["status_code"]

        if status_code < 400:
            retry_data["retryable"] = False
        elif status_code != 408:
            if status_code in (501, 505):
                retry_data["retryable"] = False

            if status_code == 404:
                retry_data["retryable"] = True
                return

            if self._request_options.get("absorb_conditional_errors_on_retry"):
                if status_code == 412:
                    # An append after a server error may already have been applied
                    if retry_data.get("last_server_error"):
                        retry_data["error"] = None
                        retry_data["retryable"] = True
                    else:
                        retry_data["retryable"] = False
                elif retry_data["retryable"] and 500 <= status_code < 600:
                    retry_data["retryable"] = True
                    retry_data["last_server_error"] = True
            elif status_code < 500:
                retry_data["retryable"] = False

    def get_next_location(self, retry_data: Dict[str, Any]) -> StorageLocation:
        location_mode = self._request_options.get("location_mode") or LocationMode.PRIMARY_ONLY

        if retry_data.get("secondary_not_found") and location_mode != LocationMode.SECONDARY_ONLY:
            self._request_options["location_mode"] = LocationMode.PRIMARY_ONLY
            return StorageLocation.PRIMARY

        if location_mode == LocationMode.PRIMARY_ONLY:
            return StorageLocation.PRIMARY
        if location_mode == LocationMode.SECONDARY_ONLY:
            return StorageLocation.SECONDARY

        request_location_mode = self._request_options.get("request_location_mode")
        if request_location_mode == RequestLocationMode.PRIMARY_ONLY:
            return StorageLocation.PRIMARY
        if request_location_mode == RequestLocationMode.SECONDARY_ONLY:
            return StorageLocation.SECONDARY
        if retry_data["current_location"] == StorageLocation.PRIMARY:
            return StorageLocation.SECONDARY
        return StorageLocation.PRIMARY


class LinearRetryPolicyFilter(RetryPolicyFilter):
    """Retries a fixed number of times with a constant interval."""

    DEFAULT_RETRY_COUNT = 3
    DEFAULT_RETRY_INTERVAL = 30

    def __init__(self, retry_count: Optional[int] = None, retry_interval: Optional[float] = None):
        super().__init__(
            retry_count if retry_count is not None else self.DEFAULT_RETRY_COUNT,
            retry_interval if retry_interval is not None else self.DEFAULT_RETRY_INTERVAL,
        )

    def apply_retry_policy(self, retry_data: Dict[str, Any]) -> None:
        retry_data["count"] = retry_data.get("count", 0) + 1
        retry_data["interval"] = self.retry_interval


class ExponentialRetryPolicyFilter(RetryPolicyFilter):
    """
    Retries with an interval growing exponentially between a minimum and a
    maximum.

    The first retry waits ``min_retry_interval``; later ones wait
    ``min + (max - min) / 2**(retry_count - 1) * 2**(count - 1)`` capped at
    ``max_retry_interval``.
    """

    DEFAULT_RETRY_COUNT = 3
    DEFAULT_MIN_RETRY_INTERVAL = 10
    DEFAULT_MAX_RETRY_INTERVAL = 90

    def __init__(
        self,
        retry_count: Optional[int] = None,
        min_retry_interval: Optional[float] = None,
        max_retry_interval: Optional[float] = None,
    ):
        self.min_retry_interval = (
            min_retry_interval if min_retry_interval is not None else self.DEFAULT_MIN_RETRY_INTERVAL
        )
        self.max_retry_interval = (
            max_retry_interval if max_retry_interval is not None else self.DEFAULT_MAX_RETRY_INTERVAL
        )
        super().__init__(
            retry_count if retry_count is not None else self.DEFAULT_RETRY_COUNT,
            self.min_retry_interval,
        )

    def apply_retry_policy(self, retry_data: Dict[str, Any]) -> None:
        retry_data["count"] = retry_data.get("count", 0) + 1

        increment_delta = (
            (self.max_retry_interval - self.min_retry_interval)
            / (2 ** (self.retry_count - 1))
            * (2 ** (retry_data["count"] - 1))
        )
        if retry_data.get("interval") is None:
            retry_data["interval"] = self.min_retry_interval
        else:
            retry_data["interval"] = min(self.min_retry_interval + increment_delta, self.max_retry_interval)
