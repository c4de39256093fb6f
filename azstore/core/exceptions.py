"""
Exceptions raised by azstore.

HTTPError wraps a failed service response and extracts the storage error
code and message from XML or OData JSON bodies.
"""

import json
import logging
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from azstore.core.http_client import HttpResponse

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for azstore errors."""

    def __init__(self, message: str, error_code: str = "StorageError"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class InvalidOptionsError(StorageError):
    """Raised when client or request options cannot be satisfied."""

    def __init__(self, message: str = "The provided options are invalid"):
        super().__init__(message, "InvalidOptions")


class InvalidConnectionStringError(StorageError):
    """Raised when a connection string cannot be parsed."""

    def __init__(self, message: str = "The connection string is invalid"):
        super().__init__(message, "InvalidConnectionString")


class SigningError(StorageError):
    """Raised when a request lacks the headers a signer needs."""

    def __init__(self, message: str = "The request cannot be signed"):
        super().__init__(message, "SigningError")


class HTTPError(StorageError):
    """
    A storage service responded with a non-success status.

    Attributes:
        uri: Request URI
        status_code: HTTP status code
        type: Storage error code (or "Unknown")
        description: Error message returned by the service
        detail: Optional extended detail
        header: Offending header name for InvalidHeaderValue errors
        header_value: Offending header value for InvalidHeaderValue errors
    """

    def __init__(self, http_response: "HttpResponse"):
        self.http_response = http_response
        self.uri = http_response.uri
        self.status_code = http_response.status_code
        self.type: Optional[str] = None
        self.description: Optional[str] = None
        self.detail: Optional[str] = None
        self.header: Optional[str] = None
        self.header_value: Optional[str] = None
        self._parse_response()
        super().__init__(
            f"{self.type} ({self.status_code}): {self.description}",
            self.type or "Unknown",
        )

    def _parse_response(self) -> None:
        body = self.http_response.text

        if body and "<" in body:
            self._parse_xml(body)
        elif body and body.lstrip().startswith("{"):
            self._parse_json(body)
        else:
            self.type = "Unknown"
            self.description = body.strip() if body else ""

        if not self.description:
            self.description = self.http_response.reason_phrase

    def _parse_xml(self, body: str) -> None:
        try:
            root = ET.fromstring(body)
        except ET.ParseError:
            logger.debug("Error body is not well-formed XML")
            self.type = "Unknown"
            self.description = body.strip()
            return

        values = {}
        for element in root.iter():
            tag = element.tag.split("}")[-1]
            values.setdefault(tag, (element.text or "").strip())

        self.type = values.get("Code", values.get("code", "Unknown"))
        self.description = values.get("Message", values.get("message"))
        self.detail = values.get("Detail", values.get("detail"))
        self.header = values.get("HeaderName")
        self.header_value = values.get("HeaderValue")

    def _parse_json(self, body: str) -> None:
        try:
            data: Any = json.loads(body)
        except ValueError:
            self.type = "Unknown"
            self.description = body.strip()
            return

        error = data.get("odata.error") if isinstance(data, dict) else None
        if not isinstance(error, dict):
            self.type = "Unknown"
            self.description = body.strip()
            return

        self.type = error.get("code", "Unknown")
        message = error.get("message")
        if isinstance(message, dict):
            self.description = message.get("value")
        else:
            self.description = message
