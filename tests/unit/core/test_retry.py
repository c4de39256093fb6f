"""
Tests for the retry filters.
"""

import httpx
import pytest

from azstore.core.client import StorageClient
from azstore.core.config_manager import HttpConfig
from azstore.core.constants import LocationMode, RequestLocationMode, StorageLocation
from azstore.core.exceptions import HTTPError, InvalidOptionsError
from azstore.core.retry import (
    ExponentialRetryPolicyFilter,
    LinearRetryPolicyFilter,
    RetryPolicyFilter,
    get_location,
)


class TestGetLocation:
    """Test suite for location resolution."""

    def test_primary_only_request(self):
        """Test primary only operations go to the primary."""
        assert get_location(LocationMode.PRIMARY_THEN_SECONDARY, RequestLocationMode.PRIMARY_ONLY) == StorageLocation.PRIMARY

    def test_secondary_preference(self):
        """Test readable operations follow the client preference."""
        location = get_location(LocationMode.SECONDARY_THEN_PRIMARY, RequestLocationMode.PRIMARY_OR_SECONDARY)

        assert location == StorageLocation.SECONDARY

    def test_primary_only_conflict(self):
        """Test a primary only operation with a secondary only client."""
        with pytest.raises(InvalidOptionsError, match="primary storage location"):
            get_location(LocationMode.SECONDARY_ONLY, RequestLocationMode.PRIMARY_ONLY)

    def test_secondary_only_conflict(self):
        """Test a secondary only operation with a primary only client."""
        with pytest.raises(InvalidOptionsError, match="secondary storage location"):
            get_location(LocationMode.PRIMARY_ONLY, RequestLocationMode.SECONDARY_ONLY)


class TestLinearRetry:
    """Test suite for the linear retry filter."""

    def test_retries_server_error(self, blob_service, transport):
        """Test a 500 is retried and the next success returned."""
        transport.queue(500).queue(200, headers={"x-ms-request-id": "ok"})
        blob_service.with_filter(LinearRetryPolicyFilter(retry_count=2, retry_interval=0))

        response = blob_service.call("GET", blob_service.generate_uri("", {}, {}))

        assert response.status_code == 200
        assert len(transport.requests) == 2

    def test_retries_exhausted(self, blob_service, transport):
        """Test the last error is raised after the final retry."""
        transport.queue(503).queue(503).queue(503)
        blob_service.with_filter(LinearRetryPolicyFilter(retry_count=1, retry_interval=0))

        with pytest.raises(HTTPError) as exc_info:
            blob_service.call("GET", blob_service.generate_uri("", {}, {}))

        assert exc_info.value.status_code == 503
        assert len(transport.requests) == 2

    def test_client_error_not_retried(self, blob_service, transport):
        """Test 4xx responses are not retried."""
        transport.queue(400)
        blob_service.with_filter(LinearRetryPolicyFilter(retry_count=3, retry_interval=0))

        with pytest.raises(HTTPError):
            blob_service.call("GET", blob_service.generate_uri("", {}, {}))

        assert len(transport.requests) == 1

    def test_not_implemented_not_retried(self, blob_service, transport):
        """Test 501 is never retried."""
        transport.queue(501)
        blob_service.with_filter(LinearRetryPolicyFilter(retry_count=3, retry_interval=0))

        with pytest.raises(HTTPError):
            blob_service.call("GET", blob_service.generate_uri("", {}, {}))

        assert len(transport.requests) == 1

    def test_request_is_signed_per_attempt(self, blob_service, transport):
        """Test each attempt carries its own signature and date."""
        transport.queue(500)
        blob_service.with_filter(LinearRetryPolicyFilter(retry_count=1, retry_interval=0))

        blob_service.call("GET", blob_service.generate_uri("", {"comp": "list"}, {}))

        assert all(r.headers["Authorization"].startswith("SharedKey account:") for r in transport.requests)
        assert str(transport.requests[0].url) == str(transport.requests[1].url)

    def test_switches_to_secondary(self, blob_service, transport):
        """Test readable operations alternate between locations."""
        transport.queue(500)
        blob_service.with_filter(LinearRetryPolicyFilter(retry_count=1, retry_interval=0))
        options = {
            "location_mode": LocationMode.PRIMARY_THEN_SECONDARY,
            "request_location_mode": RequestLocationMode.PRIMARY_OR_SECONDARY,
        }

        blob_service.call("GET", blob_service.generate_uri("c", {}, options), options=options)

        assert transport.requests[0].url.host == "account.blob.core.windows.net"
        assert transport.requests[1].url.host == "account-secondary.blob.core.windows.net"

    def test_transport_error_retried(self, blob_service):
        """Test connection failures are retried."""
        attempts = []

        def flaky(request, next_call):
            attempts.append(request.uri)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused")
            return next_call()

        retry = LinearRetryPolicyFilter(retry_count=1, retry_interval=0)
        blob_service.with_filter(retry).with_filter(flaky)

        response = blob_service.call("GET", blob_service.generate_uri("", {}, {}))

        assert response.status_code == 200
        assert len(attempts) == 2


class TestExponentialRetry:
    """Test suite for the exponential retry filter."""

    def test_interval_grows(self):
        """Test the interval grows from the minimum up to the maximum."""
        retry = ExponentialRetryPolicyFilter(retry_count=3, min_retry_interval=10, max_retry_interval=90)
        retry_data = {}

        retry.apply_retry_policy(retry_data)
        assert retry_data["interval"] == 10

        retry.apply_retry_policy(retry_data)
        assert retry_data["interval"] == 50

        retry.apply_retry_policy(retry_data)
        assert retry_data["interval"] == 90

    def test_defaults(self):
        """Test default retry settings."""
        retry = ExponentialRetryPolicyFilter()

        assert retry.retry_count == 3
        assert retry.min_retry_interval == 10
        assert retry.max_retry_interval == 90


class TestRetryFromConfig:
    """Test suite for building retry filters from configuration."""

    def test_linear_from_config(self, http_client):
        """Test the configured policy is installed on new services."""
        from azstore.core.client import build_retry_filter

        retry = build_retry_filter(HttpConfig(retry_policy="linear", retry_count=4, retry_interval=1))

        assert isinstance(retry, LinearRetryPolicyFilter)
        assert retry.retry_count == 4
        client = StorageClient(
            {"storage_account_name": "account", "storage_access_key": "YWNjZXNzLWtleQ=="},
            http_client=http_client,
            filters=[retry],
        )
        assert client.blob_client().filters == [retry]

    def test_no_policy(self):
        """Test no filter is built when retries are disabled."""
        from azstore.core.client import build_retry_filter

        assert build_retry_filter(HttpConfig(retry_policy="none")) is None

    def test_base_filter_does_not_retry_success(self):
        """Test a successful response ends the loop."""
        retry = RetryPolicyFilter(retry_count=3)

        assert retry.should_retry(None, {"request_options": {}}) is False
