"""
Tests for Blob service XML and header serialization.
"""

import httpx
import pytest

from azstore.core.serialization import metadata_from_headers, property_name
from azstore.services.blob.serialization import (
    blob_from_headers,
    block_list_to_xml,
    container_enumeration_results_from_xml,
    key_info_to_xml,
    page_list_from_xml,
)


class TestBlobFromHeaders:
    """Test suite for building blobs from response headers."""

    def test_blob_content_md5_wins(self):
        """Test the whole blob MD5 replaces the range MD5."""
        blob = blob_from_headers(httpx.Headers({
            "Content-MD5": "range-md5",
            "x-ms-blob-content-md5": "blob-md5",
            "Content-Range": "bytes 0-99/5000",
        }))

        assert blob.properties["content_md5"] == "blob-md5"
        assert blob.properties["content_length"] == 5000

    def test_copy_properties(self):
        """Test copy state headers."""
        blob = blob_from_headers(httpx.Headers({
            "x-ms-copy-id": "c1",
            "x-ms-copy-status": "success",
            "x-ms-copy-progress": "10/10",
            "x-ms-server-encrypted": "true",
        }))

        assert blob.properties["copy_id"] == "c1"
        assert blob.properties["copy_progress"] == "10/10"
        assert blob.properties["server_encrypted"] is True

    def test_repeated_metadata(self):
        """Test repeated metadata headers collect into a list."""
        headers = httpx.Headers([("x-ms-meta-tag", "a"), ("x-ms-meta-tag", "b"), ("x-ms-meta-Single", "c")])

        assert metadata_from_headers(headers) == {"tag": ["a", "b"], "single": "c"}


class TestPropertyName:
    """Test suite for XML property names."""

    @pytest.mark.parametrize(
        "tag, name",
        [
            ("Last-Modified", "last_modified"),
            ("Content-Length", "content_length"),
            ("LeaseStatus", "lease_status"),
            ("x-ms-blob-sequence-number", "sequence_number"),
            ("PublicAccess", "public_access_level"),
            ("AccessTierInferred", "access_tier_inferred"),
        ],
    )
    def test_property_name(self, tag, name):
        """Test element names become snake_case keys."""
        assert property_name(tag) == name


class TestBlockList:
    """Test suite for block list bodies."""

    def test_invalid_block_type(self):
        """Test unknown block list types are rejected."""
        with pytest.raises(ValueError):
            block_list_to_xml([("a", "pending")])

    def test_document(self):
        """Test the document root and declaration."""
        body = block_list_to_xml(["a"])

        assert body.startswith('<?xml version="1.0" encoding="utf-8"?>')
        assert "<BlockList><Latest>YQ==</Latest></BlockList>" in body


class TestMisc:
    """Test suite for the remaining documents."""

    def test_empty_page_list(self):
        """Test a page list without ranges."""
        assert page_list_from_xml(b"<PageList />") == []

    def test_wrong_root(self):
        """Test unexpected documents are rejected."""
        with pytest.raises(ValueError, match="EnumerationResults"):
            container_enumeration_results_from_xml(b"<Error><Code>x</Code></Error>")

    def test_bom_is_ignored(self):
        """Test a UTF-8 byte order mark before the document."""
        results = container_enumeration_results_from_xml(
            b"\xef\xbb\xbf<?xml version='1.0' encoding='utf-8'?><EnumerationResults><Containers>"
            b"<Container><Name>a</Name></Container></Containers><NextMarker/></EnumerationResults>"
        )

        assert [c.name for c in results] == ["a"]

    def test_key_info_naive_times(self):
        """Test naive datetimes are treated as UTC."""
        from datetime import datetime

        body = key_info_to_xml(datetime(2030, 1, 1), datetime(2030, 1, 2, 6, 30))

        assert "<Start>2030-01-01T00:00:00Z</Start>" in body
        assert "<Expiry>2030-01-02T06:30:00Z</Expiry>" in body
