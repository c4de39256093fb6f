"""
Tests for the azstore command-line interface.
"""

import json

import pytest
from click.testing import CliRunner

from azstore.cli import cli

CONTAINERS_PAGE_1 = (
    b"<EnumerationResults><Containers><Container><Name>logs</Name></Container></Containers>"
    b"<NextMarker>m1</NextMarker></EnumerationResults>"
)
CONTAINERS_PAGE_2 = (
    b"<EnumerationResults><Containers><Container><Name>photos</Name></Container></Containers>"
    b"<NextMarker /></EnumerationResults>"
)
BLOBS = (
    b"<EnumerationResults><Blobs><Blob><Name>cat.jpg</Name><Properties>"
    b"<Content-Length>1024</Content-Length></Properties></Blob></Blobs><NextMarker /></EnumerationResults>"
)


@pytest.fixture
def runner():
    return CliRunner()


def invoke(runner, storage_client, *args):
    return runner.invoke(cli, list(args), obj={"client": storage_client})


class TestBlobCommands:
    """Test suite for blob commands."""

    def test_containers_pages(self, runner, storage_client, transport):
        """Test all pages of containers are listed."""
        transport.queue(content=CONTAINERS_PAGE_1).queue(content=CONTAINERS_PAGE_2)

        result = invoke(runner, storage_client, "containers", "--prefix", "l")

        assert result.exit_code == 0
        assert result.output.splitlines() == ["logs", "photos"]
        assert transport.requests[1].url.params["marker"] == "m1"

    def test_containers_error(self, runner, storage_client, transport):
        """Test service errors exit with status 1."""
        transport.queue(
            403,
            content=b"<Error><Code>AuthenticationFailed</Code><Message>Bad signature</Message></Error>",
        )

        result = invoke(runner, storage_client, "containers")

        assert result.exit_code == 1
        assert "[ERROR] Failed to list containers" in result.output
        assert "AuthenticationFailed" in result.output

    def test_blobs(self, runner, storage_client, transport):
        """Test blobs are printed with their size."""
        transport.queue(content=BLOBS)

        result = invoke(runner, storage_client, "blobs", "photos")

        assert result.exit_code == 0
        assert result.output == "cat.jpg\t1024\n"

    def test_upload(self, runner, storage_client, transport, tmp_path):
        """Test a local file is uploaded as a block blob."""
        source = tmp_path / "notes.txt"
        source.write_bytes(b"hello")
        transport.queue(201, headers={"ETag": '"0x1"'})

        result = invoke(runner, storage_client, "upload", "docs", str(source), "--content-type", "text/plain")

        assert result.exit_code == 0
        request = transport.requests[0]
        assert request.method == "PUT"
        assert request.url.path == "/docs/notes.txt"
        assert request.headers["x-ms-blob-type"] == "BlockBlob"
        assert request.content == b"hello"
        assert "[OK] Uploaded" in result.output

    def test_download(self, runner, storage_client, transport, tmp_path):
        """Test a blob is written to the output file."""
        transport.queue(content=b"payload")
        output = tmp_path / "out.bin"

        result = invoke(runner, storage_client, "download", "docs", "notes.txt", "-o", str(output))

        assert result.exit_code == 0
        assert output.read_bytes() == b"payload"
        assert "Downloaded 7 bytes" in result.output


class TestFileAndTableCommands:
    """Test suite for share and table commands."""

    def test_shares(self, runner, storage_client, transport):
        """Test shares are listed."""
        transport.queue(
            content=b"<EnumerationResults><Shares><Share><Name>reports</Name></Share></Shares>"
            b"<NextMarker /></EnumerationResults>"
        )

        result = invoke(runner, storage_client, "shares")

        assert result.exit_code == 0
        assert result.output == "reports\n"

    def test_tables(self, runner, storage_client, transport):
        """Test tables are listed across continuation tokens."""
        transport.queue(
            headers={"x-ms-continuation-nexttablename": "places"},
            content=b'{"value": [{"TableName": "people"}]}',
        ).queue(content=b'{"value": [{"TableName": "places"}]}')

        result = invoke(runner, storage_client, "tables")

        assert result.exit_code == 0
        assert result.output.splitlines() == ["people", "places"]
        assert transport.requests[1].url.params["NextTableName"] == "places"

    def test_query(self, runner, storage_client, transport):
        """Test entities are printed as JSON lines."""
        transport.queue(content=b'{"value": [{"PartitionKey": "smith", "RowKey": "john", "Age": 42}]}')

        result = invoke(
            runner, storage_client, "query", "people", "--filter", "Age gt 30", "--select", "Age", "--top", "5"
        )

        assert result.exit_code == 0
        params = transport.last.url.params
        assert params["$filter"] == "Age gt 30"
        assert params["$select"] == "Age"
        assert params["$top"] == "5"
        assert json.loads(result.output) == {"PartitionKey": "smith", "RowKey": "john", "Age": 42}


class TestSasCommand:
    """Test suite for SAS generation."""

    def test_service_sas(self, runner, storage_client):
        """Test a blob service SAS."""
        result = invoke(runner, storage_client, "sas", "photos/cat.jpg", "-s", "b", "-e", "2030-01-01T00:00:00Z")

        assert result.exit_code == 0
        token = result.output.strip()
        assert "sr=b" in token
        assert "se=2030-01-01T00%3A00%3A00Z" in token

    def test_account_sas(self, runner, storage_client):
        """Test an account SAS covers all services."""
        result = invoke(runner, storage_client, "sas", "-p", "rl", "-e", "2030-01-01T00:00:00Z")

        assert result.exit_code == 0
        assert "ss=bft" in result.output
        assert "srt=sco" in result.output


class TestConfiguration:
    """Test suite for client configuration errors."""

    def test_invalid_connection_string(self, runner, monkeypatch):
        """Test an unusable connection string is reported."""
        monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)

        result = runner.invoke(cli, ["--connection-string", "garbage", "containers"], obj={})

        assert result.exit_code == 1
        assert "[ERROR]" in result.output
