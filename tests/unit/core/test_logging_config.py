"""
Tests for logging infrastructure.
"""

import json
import logging

import pytest

from azstore.core.logging_config import (
    JSONFormatter,
    SensitiveDataFilter,
    _parse_size,
    clear_request_id,
    log_with_context,
    redact,
    set_request_id,
    setup_logging,
)


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    package_logger = logging.getLogger("azstore")
    for handler in list(package_logger.handlers):
        handler.close()
    package_logger.handlers.clear()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True
    clear_request_id()


class TestLoggingSetup:
    """Test suite for logging setup."""

    def test_setup_logging_defaults(self):
        """Test setting up logging with defaults."""
        setup_logging()

        package_logger = logging.getLogger("azstore")
        assert package_logger.level == logging.INFO
        assert len(package_logger.handlers) == 1
        assert package_logger.propagate is False

    def test_root_logger_untouched(self):
        """Test the root logger keeps its handlers."""
        root_handlers = list(logging.getLogger().handlers)
        setup_logging(level="DEBUG")

        assert logging.getLogger().handlers == root_handlers

    def test_setup_logging_with_file(self, tmp_path):
        """Test setting up logging with file output."""
        log_file = tmp_path / "logs" / "azstore.log"
        setup_logging(log_file=str(log_file))

        logging.getLogger("azstore.core.service").info("Test message")

        assert log_file.exists()
        assert "Test message" in log_file.read_text()

    def test_setup_logging_with_module_levels(self):
        """Test setting up logging with per-module log levels."""
        setup_logging(level="INFO", module_levels={"azstore.core.retry": "DEBUG"})

        assert logging.getLogger("azstore").level == logging.INFO
        assert logging.getLogger("azstore.core.retry").level == logging.DEBUG
        logging.getLogger("azstore.core.retry").setLevel(logging.NOTSET)

    def test_setup_logging_json_file(self, tmp_path):
        """Test JSON records written to the log file."""
        log_file = tmp_path / "azstore.json"
        setup_logging(format_type="json", log_file=str(log_file))

        logging.getLogger("azstore.test").warning("Request failed")

        record = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert record["level"] == "WARNING"
        assert record["message"] == "Request failed"


class TestRedaction:
    """Test suite for credential redaction."""

    def test_redact_account_key(self):
        """Test account keys in connection strings are hidden."""
        text = redact("AccountName=acct;AccountKey=c2VjcmV0;EndpointSuffix=core.windows.net")

        assert "c2VjcmV0" not in text
        assert "AccountKey=***REDACTED***;EndpointSuffix" in text

    def test_redact_sas_signature(self):
        """Test SAS signatures in URLs are hidden."""
        text = redact("GET https://acct.blob.core.windows.net/c?sv=2018-11-09&sig=abc%2Fdef&se=2030")

        assert "abc%2Fdef" not in text
        assert "sig=***REDACTED***&se=2030" in text

    def test_redact_authorization(self):
        """Test Authorization headers are hidden."""
        text = redact("Authorization: SharedKey acct:c2lnbmF0dXJl")

        assert "c2lnbmF0dXJl" not in text

    def test_filter_redacts_args(self):
        """Test the filter redacts message arguments."""
        record = logging.LogRecord(
            "azstore", logging.INFO, __file__, 1, "Connecting with %s", ("AccountKey=secret",), None
        )

        assert SensitiveDataFilter().filter(record) is True
        assert record.getMessage() == "Connecting with AccountKey=***REDACTED***"


class TestJSONFormatter:
    """Test suite for JSON formatting."""

    def _record(self, message="Test message"):
        return logging.LogRecord("azstore.test", logging.INFO, __file__, 10, message, (), None)

    def test_basic_fields(self):
        """Test the standard fields are present."""
        data = json.loads(JSONFormatter().format(self._record()))

        assert data["level"] == "INFO"
        assert data["module"] == "azstore.test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "request_id" not in data

    def test_request_id(self):
        """Test the current request id is included."""
        set_request_id("req-42")
        data = json.loads(JSONFormatter().format(self._record()))

        assert data["request_id"] == "req-42"

        clear_request_id()
        data = json.loads(JSONFormatter().format(self._record()))
        assert "request_id" not in data

    def test_context(self):
        """Test context passed through log_with_context."""
        records = []

        class ListHandler(logging.Handler):
            def emit(self, record):
                records.append(record)

        test_logger = logging.getLogger("azstore.test.context")
        test_logger.setLevel(logging.DEBUG)
        handler = ListHandler()
        test_logger.addHandler(handler)
        try:
            log_with_context(test_logger, logging.INFO, "GET done", status_code=200)
        finally:
            test_logger.removeHandler(handler)

        data = json.loads(JSONFormatter().format(records[0]))
        assert data["context"] == {"status_code": 200}


class TestParseSize:
    """Test suite for rotation size parsing."""

    @pytest.mark.parametrize(
        "size, expected",
        [("10MB", 10 * 1024 ** 2), ("1GB", 1024 ** 3), ("512KB", 512 * 1024), ("100B", 100), ("2048", 2048)],
    )
    def test_parse_size(self, size, expected):
        """Test size strings are converted to bytes."""
        assert _parse_size(size) == expected
