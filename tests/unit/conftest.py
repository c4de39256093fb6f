"""
Shared fixtures for azstore unit tests.

Requests are served by an httpx.MockTransport that records every request
and replays queued responses.
"""

from typing import Dict, List, Optional

import httpx
import pytest

from azstore.core.client import StorageClient

ACCOUNT_NAME = "account"
ACCOUNT_KEY = "YWNjZXNzLWtleQ=="


class RecordingTransport:
    """Records requests and answers them with queued responses."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responses: List[httpx.Response] = []

    def queue(
        self,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        content: bytes = b"",
    ) -> "RecordingTransport":
        self.responses.append(httpx.Response(status_code, headers=headers or {}, content=content))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def http_client(transport):
    client = httpx.Client(transport=httpx.MockTransport(transport.handler))
    yield client
    client.close()


@pytest.fixture
def storage_client(http_client):
    return StorageClient(
        {"storage_account_name": ACCOUNT_NAME, "storage_access_key": ACCOUNT_KEY},
        http_client=http_client,
    )


@pytest.fixture
def blob_service(storage_client):
    return storage_client.blob_client()


@pytest.fixture
def file_service(storage_client):
    return storage_client.file_client()


@pytest.fixture
def table_service(storage_client):
    return storage_client.table_client()
