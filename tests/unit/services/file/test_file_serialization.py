"""
Tests for File service XML and header parsing.
"""

import httpx
import pytest

from azstore.services.file.serialization import (
    directories_and_files_enumeration_results_from_xml,
    file_from_headers,
    range_list_from_xml,
    share_from_headers,
    share_stats_from_xml,
)


class TestFileHeaders:
    """Test suite for header parsing."""

    def test_content_range_size(self):
        """Test the total size is taken from Content-Range."""
        result = file_from_headers(httpx.Headers({"Content-Length": "4", "Content-Range": "bytes 0-3/100"}))

        assert result.properties["content_length"] == 100

    def test_content_length_header_wins(self):
        """Test x-ms-content-length overrides the other sizes."""
        result = file_from_headers(httpx.Headers({
            "Content-Length": "4",
            "Content-Range": "bytes 0-3/100",
            "x-ms-content-length": "200",
        }))

        assert result.properties["content_length"] == 200

    def test_share_without_quota(self):
        """Test a missing quota header."""
        share = share_from_headers(httpx.Headers({"ETag": '"0x1"'}))

        assert share.quota is None
        assert share.properties == {"etag": '"0x1"'}


class TestFileDocuments:
    """Test suite for XML documents."""

    def test_empty_listing(self):
        """Test a listing without entries."""
        results = directories_and_files_enumeration_results_from_xml(
            b"<EnumerationResults><Entries /><NextMarker>m</NextMarker></EnumerationResults>"
        )

        assert list(results) == []
        assert results.continuation_token == "m"

    def test_empty_ranges(self):
        """Test a file with no written ranges."""
        assert range_list_from_xml(b"<Ranges />") == []

    def test_stats_wrong_root(self):
        """Test unexpected documents are rejected."""
        with pytest.raises(ValueError, match="ShareStats"):
            share_stats_from_xml(b"<Stats><ShareUsage>1</ShareUsage></Stats>")
