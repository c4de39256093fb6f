"""
Tests for HTTPError parsing.
"""

from azstore.core.exceptions import HTTPError, StorageError
from azstore.core.http_client import HttpResponse


def _error(body, status_code=400, reason_phrase="Bad Request"):
    return HTTPError(
        HttpResponse(status_code, {}, body, uri="http://dummy.uri", reason_phrase=reason_phrase)
    )


class TestHTTPError:
    """Test suite for service error responses."""

    def test_xml_error(self):
        """Test code and message are read from an XML body."""
        error = _error(
            b'<?xml version="1.0" encoding="utf-8"?><Error><Code>InvalidHeaderValue</Code>'
            b"<Message>The value for one of the HTTP headers is not in the correct format.</Message>"
            b"<HeaderName>Range</HeaderName><HeaderValue>bytes=0-x</HeaderValue></Error>"
        )

        assert error.type == "InvalidHeaderValue"
        assert error.description == "The value for one of the HTTP headers is not in the correct format."
        assert error.header == "Range"
        assert error.header_value == "bytes=0-x"
        assert error.uri == "http://dummy.uri"

    def test_message(self):
        """Test the exception message combines code, status and description."""
        error = _error(
            b"<Error><Code>ContainerAlreadyExists</Code><Message>The specified container already exists."
            b"</Message></Error>",
            status_code=409,
        )

        assert str(error) == "ContainerAlreadyExists (409): The specified container already exists."
        assert error.error_code == "ContainerAlreadyExists"
        assert isinstance(error, StorageError)

    def test_odata_json_error(self):
        """Test Table service JSON errors."""
        error = _error(
            b'{"odata.error":{"code":"TableAlreadyExists","message":'
            b'{"lang":"en-US","value":"The table specified already exists."}}}',
            status_code=409,
        )

        assert error.type == "TableAlreadyExists"
        assert error.description == "The table specified already exists."

    def test_empty_body_uses_reason_phrase(self):
        """Test the reason phrase is used when there is no body."""
        error = _error(b"", status_code=404, reason_phrase="dummy reason")

        assert error.status_code == 404
        assert error.type == "Unknown"
        assert str(error) == "Unknown (404): dummy reason"

    def test_malformed_xml(self):
        """Test broken XML falls back to the raw body."""
        error = _error(b"<Error><Code>Oops")

        assert error.type == "Unknown"
        assert error.description == "<Error><Code>Oops"

    def test_plain_text_body(self):
        """Test plain text bodies become the description."""
        error = _error(b"Server busy\n", status_code=503)

        assert error.type == "Unknown"
        assert error.description == "Server busy"
