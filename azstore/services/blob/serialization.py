"""
XML and header serialization for the Blob service.
"""

import base64
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple, Union

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
    sub_element,
    to_xml,
)
from azstore.services.blob.models import Blob, Block, BlockListType, Container

CONTAINER_HEADER_PROPERTIES = {
    "last_modified": HeaderConstants.LAST_MODIFIED,
    "etag": HeaderConstants.ETAG,
    "lease_status": "x-ms-lease-status",
    "lease_state": "x-ms-lease-state",
    "lease_duration": "x-ms-lease-duration",
    "has_immutability_policy": "x-ms-has-immutability-policy",
    "has_legal_hold": "x-ms-has-legal-hold",
}

BLOB_HEADER_PROPERTIES = {
    "last_modified": HeaderConstants.LAST_MODIFIED,
    "etag": HeaderConstants.ETAG,
    "lease_status": "x-ms-lease-status",
    "lease_state": "x-ms-lease-state",
    "lease_duration": "x-ms-lease-duration",
    "content_length": HeaderConstants.CONTENT_LENGTH,
    "content_type": HeaderConstants.CONTENT_TYPE,
    "content_encoding": "Content-Encoding",
    "content_language": "Content-Language",
    "content_disposition": "Content-Disposition",
    "content_md5": HeaderConstants.CONTENT_MD5,
    "cache_control": "Cache-Control",
    "blob_type": "x-ms-blob-type",
    "sequence_number": "x-ms-blob-sequence-number",
    "committed_block_count": "x-ms-blob-committed-block-count",
    "append_offset": "x-ms-blob-append-offset",
    "accept_ranges": "Accept-Ranges",
    "server_encrypted": "x-ms-server-encrypted",
    "incremental_copy": "x-ms-incremental-copy",
    "copy_id": "x-ms-copy-id",
    "copy_status": "x-ms-copy-status",
    "copy_source": "x-ms-copy-source",
    "copy_progress": "x-ms-copy-progress",
    "copy_completion_time": "x-ms-copy-completion-time",
    "copy_status_description": "x-ms-copy-status-description",
    "copy_destination_snapshot": "x-ms-copy-destination-snapshot",
}

BlockListEntry = Union[str, Sequence[Any]]


def container_from_headers(headers: Mapping[str, str]) -> Container:
    return Container(
        properties=properties_from_headers(headers, CONTAINER_HEADER_PROPERTIES),
        metadata=metadata_from_headers(headers),
        public_access_level=headers.get(HeaderConstants.PUBLIC_ACCESS),
    )


def blob_from_headers(headers: Mapping[str, str]) -> Blob:
    """
    Build a Blob from response headers.

    For ranged reads the ``content_length`` is the full blob size taken from
    ``Content-Range``; ``x-ms-blob-content-md5`` wins over the range MD5.
    """
    properties = properties_from_headers(headers, BLOB_HEADER_PROPERTIES)

    content_range = headers.get("Content-Range")
    if content_range and "/" in content_range:
        total = content_range.rsplit("/", 1)[1]
        if total.isdigit():
            properties["content_length"] = int(total)
    if headers.get("x-ms-blob-content-md5"):
        properties["content_md5"] = headers["x-ms-blob-content-md5"]

    return Blob(
        snapshot=headers.get("x-ms-snapshot"),
        properties=properties,
        metadata=metadata_from_headers(headers),
    )


def container_enumeration_results_from_xml(xml: XmlInput) -> EnumerationResults:
    """Parse a List Containers response."""
    root = parse_xml(xml)
    expect_node("EnumerationResults", root)

    results = EnumerationResults()
    containers = root.find("Containers")
    for node in containers if containers is not None else []:
        results.append(container_from_xml(node))

    return enumeration_results_from_xml(root, results)


def container_from_xml(element: ET.Element) -> Container:
    expect_node("Container", element)
    properties = properties_from_xml(element.find("Properties"))
    metadata = element.find("Metadata")
    return Container(
        name=child_text(element, "Name"),
        properties=properties,
        metadata=metadata_from_xml(metadata) if metadata is not None else {},
        public_access_level=properties.get("public_access_level"),
    )


def blob_enumeration_results_from_xml(xml: XmlInput) -> EnumerationResults:
    """
    Parse a List Blobs response.

    Virtual directories returned for a delimiter listing are skipped.
    """
    root = parse_xml(xml)
    expect_node("EnumerationResults", root)

    results = EnumerationResults()
    blobs = root.find("Blobs")
    if blobs is not None:
        for node in blobs.findall("Blob"):
            results.append(blob_from_xml(node))

    return enumeration_results_from_xml(root, results)


def blob_from_xml(element: ET.Element) -> Blob:
    expect_node("Blob", element)
    metadata = element.find("Metadata")
    return Blob(
        name=child_text(element, "Name"),
        snapshot=child_text(element, "Snapshot"),
        properties=properties_from_xml(element.find("Properties")),
        metadata=metadata_from_xml(metadata) if metadata is not None else {},
    )


def block_list_to_xml(block_list: Iterable[BlockListEntry]) -> str:
    """
    Build a Put Block List body.

    Entries are a block id or an ``(id, type)`` pair where type is
    ``committed``, ``uncommitted`` or ``latest`` (the default). Ids are
    base64 encoded.
    """
    root = ET.Element("BlockList")
    for entry in block_list:
        if isinstance(entry, str):
            block_id, block_type = entry, BlockListType.LATEST
        else:
            block_id = entry[0]
            block_type = BlockListType(str(entry[1]).lower()) if len(entry) > 1 else BlockListType.LATEST
        encoded = base64.b64encode(block_id.encode("utf-8")).decode("utf-8")
        sub_element(root, block_type.value.capitalize(), encoded)
    return to_xml(root)


def block_list_from_xml(xml: XmlInput) -> Dict[str, List[Block]]:
    """
    Parse a Get Block List response.

    Returns:
        Dict with ``committed`` and ``uncommitted`` lists of Blocks
    """
    root = parse_xml(xml)
    expect_node("BlockList", root)

    block_list: Dict[str, List[Block]] = {"committed": [], "uncommitted": []}
    for section, block_type in (
        ("CommittedBlocks", BlockListType.COMMITTED),
        ("UncommittedBlocks", BlockListType.UNCOMMITTED),
    ):
        node = root.find(section)
        if node is None:
            continue
        for block in node.findall("Block"):
            name = base64.b64decode(child_text(block, "Name") or "").decode("utf-8")
            size = int(child_text(block, "Size") or 0)
            block_list[block_type.value].append(Block(name=name, size=size, type=block_type))
    return block_list


def page_list_from_xml(xml: XmlInput) -> List[Tuple[int, int]]:
    """Parse a Get Page Ranges response into ``(start, end)`` pairs."""
    root = parse_xml(xml)
    expect_node("PageList", root)
    return [
        (int(child_text(node, "Start") or 0), int(child_text(node, "End") or 0))
        for node in root.findall("PageRange")
    ]


def _key_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def key_info_to_xml(start: datetime, expiry: datetime) -> str:
    root = ET.Element("KeyInfo")
    sub_element(root, "Start", _key_time(start))
    sub_element(root, "Expiry", _key_time(expiry))
    return to_xml(root)
