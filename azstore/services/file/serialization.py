"""
XML and header serialization for the File service.
"""

import xml.etree.ElementTree as ET
from typing import List, Mapping, Optional, Tuple

from azstore.core.constants import HeaderConstants
from azstore.core.models import EnumerationResults
from azstore.core.serialization import (
    XmlInput,
    child_text,
    enumeration_results_from_xml,
    expect_node,
    metadata_from_headers,
    metadata_from_xml,
    parse_xml,
    properties_from_headers,
    properties_from_xml,
)
from azstore.services.file.models import Directory, File, Share

SHARE_HEADER_PROPERTIES = {
    "last_modified": HeaderConstants.LAST_MODIFIED,
    "etag": HeaderConstants.ETAG,
}

DIRECTORY_HEADER_PROPERTIES = {
    "last_modified": HeaderConstants.LAST_MODIFIED,
    "etag": HeaderConstants.ETAG,
    "server_encrypted": "x-ms-server-encrypted",
}

FILE_HEADER_PROPERTIES = {
    "last_modified": HeaderConstants.LAST_MODIFIED,
    "etag": HeaderConstants.ETAG,
    "type": "x-ms-type",
    "content_length": HeaderConstants.CONTENT_LENGTH,
    "content_type": HeaderConstants.CONTENT_TYPE,
    "content_encoding": "Content-Encoding",
    "content_language": "Content-Language",
    "content_disposition": "Content-Disposition",
    "content_md5": HeaderConstants.CONTENT_MD5,
    "cache_control": "Cache-Control",
    "copy_id": "x-ms-copy-id",
    "copy_status": "x-ms-copy-status",
    "copy_source": "x-ms-copy-source",
    "copy_progress": "x-ms-copy-progress",
    "copy_completion_time": "x-ms-copy-completion-time",
    "copy_status_description": "x-ms-copy-status-description",
    "accept_ranges": "Accept-Ranges",
    "server_encrypted": "x-ms-server-encrypted",
}


def _quota(headers: Mapping[str, str]) -> Optional[int]:
    value = headers.get("x-ms-share-quota")
    return int(value) if value else None


def share_from_headers(headers: Mapping[str, str]) -> Share:
    return Share(
        properties=properties_from_headers(headers, SHARE_HEADER_PROPERTIES),
        quota=_quota(headers),
        metadata=metadata_from_headers(headers),
    )


def directory_from_headers(headers: Mapping[str, str]) -> Directory:
    return Directory(
        properties=properties_from_headers(headers, DIRECTORY_HEADER_PROPERTIES),
        metadata=metadata_from_headers(headers),
    )


def file_from_headers(headers: Mapping[str, str]) -> File:
    """
    Build a File from response headers.

    ``x-ms-content-length`` (the full file size) wins over ``Content-Length``;
    for ranged reads the size comes from ``Content-Range``.
    """
    properties = properties_from_headers(headers, FILE_HEADER_PROPERTIES)

    content_range = headers.get("Content-Range")
    if content_range and "/" in content_range:
        total = content_range.rsplit("/", 1)[1]
        if total.isdigit():
            properties["content_length"] = int(total)
    if headers.get("x-ms-content-length"):
        properties["content_length"] = int(headers["x-ms-content-length"])

    return File(properties=properties, metadata=metadata_from_headers(headers))


def share_enumeration_results_from_xml(xml: XmlInput) -> EnumerationResults:
    """Parse a List Shares response."""
    root = parse_xml(xml)
    expect_node("EnumerationResults", root)

    results = EnumerationResults()
    shares = root.find("Shares")
    if shares is not None:
        for node in shares.findall("Share"):
            results.append(share_from_xml(node))

    return enumeration_results_from_xml(root, results)


def share_from_xml(element: ET.Element) -> Share:
    expect_node("Share", element)
    properties = properties_from_xml(element.find("Properties"))
    metadata = element.find("Metadata")
    return Share(
        name=child_text(element, "Name"),
        properties=properties,
        metadata=metadata_from_xml(metadata) if metadata is not None else {},
        quota=properties.get("quota"),
    )


def share_stats_from_xml(xml: XmlInput) -> int:
    """Return the share usage in GiB from a Get Share Stats response."""
    root = parse_xml(xml)
    expect_node("ShareStats", root)
    return int(child_text(root, "ShareUsage") or 0)


def directories_and_files_enumeration_results_from_xml(xml: XmlInput) -> EnumerationResults:
    """
    Parse a List Directories and Files response.

    Files come first, then directories, as File and Directory objects.
    """
    root = parse_xml(xml)
    expect_node("EnumerationResults", root)

    results = EnumerationResults()
    entries = root.find("Entries")
    if entries is not None:
        for node in entries.findall("File"):
            results.append(file_from_xml(node))
        for node in entries.findall("Directory"):
            results.append(directory_from_xml(node))

    return enumeration_results_from_xml(root, results)


def file_from_xml(element: ET.Element) -> File:
    expect_node("File", element)
    return File(
        name=child_text(element, "Name"),
        properties=properties_from_xml(element.find("Properties")),
    )


def directory_from_xml(element: ET.Element) -> Directory:
    expect_node("Directory", element)
    return Directory(name=child_text(element, "Name"))


def range_list_from_xml(xml: XmlInput) -> List[Tuple[int, int]]:
    """Parse a List Ranges response into ``(start, end)`` pairs."""
    root = parse_xml(xml)
    expect_node("Ranges", root)
    return [
        (int(child_text(node, "Start") or 0), int(child_text(node, "End") or 0))
        for node in root.findall("Range")
    ]
