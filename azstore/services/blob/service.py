"""
Azure Blob Storage service client.

Container, blob, lease, block blob, page blob and append blob operations
over the Blob REST API.
"""

import base64
import io
import logging
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Any, BinaryIO, Dict, Iterable, List, Optional, Tuple, Union

from azstore.core.constants import (
    BLOB_STG_VERSION,
    BlobConstants,
    HeaderConstants,
    RequestLocationMode,
    ServiceType,
)
from azstore.core.exceptions import StorageError
from azstore.core.http_client import Body, HttpResponse
from azstore.core.models import EnumerationResults, SignedIdentifier, UserDelegationKey
from azstore.core.serialization import (
    signed_identifiers_from_xml,
    signed_identifiers_to_xml,
    user_delegation_key_from_xml,
)
from azstore.core.service import StorageService, add_metadata_to_headers, with_header, with_query
from azstore.services.blob.models import Blob, Block, Container, ContainerNameValidator
from azstore.services.blob.serialization import (
    BlockListEntry,
    blob_enumeration_results_from_xml,
    blob_from_headers,
    block_list_from_xml,
    block_list_to_xml,
    container_enumeration_results_from_xml,
    container_from_headers,
    key_info_to_xml,
    page_list_from_xml,
)

logger = logging.getLogger(__name__)

BLOB_CONTENT_TYPE = "x-ms-blob-content-type"
MAX_USER_DELEGATION_KEY_DURATION = timedelta(days=7)

Content = Union[bytes, str, BinaryIO]

CONTENT_SETTINGS = {
    "content_type": BLOB_CONTENT_TYPE,
    "content_encoding": "x-ms-blob-content-encoding",
    "content_language": "x-ms-blob-content-language",
    "content_md5": "x-ms-blob-content-md5",
    "cache_control": "x-ms-blob-cache-control",
    "content_disposition": "x-ms-blob-content-disposition",
}


def _header_date(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return format_datetime(value.astimezone(timezone.utc), usegmt=True)
    return value


def add_blob_conditional_headers(options: Dict[str, Any], headers: Dict[str, str]) -> None:
    """Translate conditional request options into headers."""
    with_header(headers, HeaderConstants.IF_MODIFIED_SINCE, _header_date(options.get("if_modified_since")))
    with_header(headers, HeaderConstants.IF_UNMODIFIED_SINCE, _header_date(options.get("if_unmodified_since")))
    with_header(headers, HeaderConstants.IF_MATCH, options.get("if_match"))
    with_header(headers, HeaderConstants.IF_NONE_MATCH, options.get("if_none_match"))

    with_header(headers, HeaderConstants.IF_MODIFIED_SINCE, _header_date(options.get("dest_if_modified_since")))
    with_header(headers, HeaderConstants.IF_UNMODIFIED_SINCE, _header_date(options.get("dest_if_unmodified_since")))
    with_header(headers, HeaderConstants.IF_MATCH, options.get("dest_if_match"))
    with_header(headers, HeaderConstants.IF_NONE_MATCH, options.get("dest_if_none_match"))
    with_header(headers, "x-ms-source-if-modified-since", _header_date(options.get("source_if_modified_since")))
    with_header(headers, "x-ms-source-if-unmodified-since", _header_date(options.get("source_if_unmodified_since")))
    with_header(headers, "x-ms-source-if-match", options.get("source_if_match"))
    with_header(headers, "x-ms-source-if-none-match", options.get("source_if_none_match"))

    with_header(headers, "x-ms-if-sequence-number-le", options.get("if_sequence_number_le"))
    with_header(headers, "x-ms-if-sequence-number-lt", options.get("if_sequence_number_lt"))
    with_header(headers, "x-ms-if-sequence-number-eq", options.get("if_sequence_number_eq"))

    with_header(headers, "x-ms-blob-condition-maxsize", options.get("max_size"))
    with_header(headers, "x-ms-blob-condition-appendpos", options.get("append_position"))


def get_or_apply_content_type(body: Any, content_type: Optional[str] = None) -> Optional[str]:
    """
    Pick the blob content type for a request body.

    Text bodies default to ``text/plain; charset=UTF-8``; any other body to
    ``application/octet-stream``. No body leaves the type unset.
    """
    if body is None or content_type:
        return content_type
    if isinstance(body, str) and body:
        return HeaderConstants.DEFAULT_TEXT_CONTENT_TYPE
    return HeaderConstants.DEFAULT_CONTENT_TYPE


def _content_size(content: Any, options: Dict[str, Any]) -> int:
    if isinstance(content, str):
        return len(content.encode("utf-8"))
    if isinstance(content, (bytes, bytearray)):
        return len(content)
    if options.get("content_length") is not None:
        return int(options["content_length"])
    raise ValueError(
        "Either optional parameter 'content_length' should be set or 'content' should be bytes or str "
        "to get payload's size."
    )


def _as_stream(content: Content) -> BinaryIO:
    if isinstance(content, str):
        return io.BytesIO(content.encode("utf-8"))
    if isinstance(content, (bytes, bytearray)):
        return io.BytesIO(bytes(content))
    return content


class BlobService(StorageService):
    """
    Client for the Blob service.

    Example:
        >>> blobs = StorageClient.create_development().blob_client()
        >>> blobs.create_container("photos")
        >>> blobs.create_block_blob("photos", "cat.jpg", data)
    """

    service_type = ServiceType.BLOB
    api_version = BLOB_STG_VERSION

    def call(
        self,
        method: str,
        uri: str,
        body: Body = None,
        headers: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> HttpResponse:
        headers = dict(headers or {})
        content_type = get_or_apply_content_type(body, headers.get(BLOB_CONTENT_TYPE))
        if content_type:
            headers[BLOB_CONTENT_TYPE] = content_type
        return super().call(method, uri, body, headers, options)

    # Containers

    def list_containers(self, **options: Any) -> EnumerationResults:
        """
        List containers in the account.

        Args:
            **options: prefix, marker, max_results, metadata (include
                metadata), timeout, request_id, location_mode

        Returns:
            EnumerationResults of Container with ``continuation_token``
        """
        query: Dict[str, str] = {}
        with_query(query, "prefix", options.get("prefix"))
        with_query(query, "marker", options.get("marker"))
        with_query(query, "maxresults", options.get("max_results"))
        if options.get("metadata") is True:
            query["include"] = "metadata"
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        uri = self.containers_uri(query, options)
        response = self.call("GET", uri, None, {}, options)
        return container_enumeration_results_from_xml(response.body)

    def create_container(self, name: str, **options: Any) -> Container:
        """
        Create a container.

        Args:
            name: Container name
            **options: metadata, public_access_level ("container" or "blob"),
                timeout, request_id

        Returns:
            Container

        Raises:
            ValueError: If the name is not a valid container name
        """
        ContainerNameValidator.validate_raise(name)

        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        add_metadata_to_headers(options.get("metadata"), headers)
        with_header(headers, HeaderConstants.PUBLIC_ACCESS, options.get("public_access_level"))

        response = self.call("PUT", self.container_uri(name, query, options), None, headers, options)
        container = container_from_headers(response.headers)
        container.name = name
        container.metadata = dict(options.get("metadata") or {})
        container.public_access_level = options.get("public_access_level")
        logger.debug(f"Created container: {name}")
        return container

    def get_container_properties(self, name: str, **options: Any) -> Container:
        """
        Get container properties and metadata.

        Args:
            name: Container name
            **options: lease_id, timeout, request_id, location_mode
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.container_uri(name, query, options), None, headers, options)
        container = container_from_headers(response.headers)
        container.name = name
        return container

    def get_container_metadata(self, name: str, **options: Any) -> Container:
        """
        Get container metadata.

        Args:
            name: Container name
            **options: lease_id, timeout, request_id, location_mode
        """
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.container_uri(name, query, options), None, headers, options)
        container = container_from_headers(response.headers)
        container.name = name
        return container

    def set_container_metadata(self, name: str, metadata: Dict[str, Any], **options: Any) -> None:
        """
        Replace container metadata.

        Args:
            name: Container name
            metadata: New metadata
            **options: lease_id, if_modified_since, timeout, request_id
        """
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        add_metadata_to_headers(metadata, headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        with_header(headers, HeaderConstants.IF_MODIFIED_SINCE, _header_date(options.get("if_modified_since")))

        self.call("PUT", self.container_uri(name, query, options), None, headers, options)

    def get_container_acl(self, name: str, **options: Any) -> Tuple[Container, List[SignedIdentifier]]:
        """
        Get container public access level and stored access policies.

        Returns:
            Tuple of (Container, list of SignedIdentifier)
        """
        query = {"comp": "acl"}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.container_uri(name, query, options), None, headers, options)
        container = container_from_headers(response.headers)
        container.name = name

        signed_identifiers: List[SignedIdentifier] = []
        if response.body:
            signed_identifiers = signed_identifiers_from_xml(response.body)
        return container, signed_identifiers

    def set_container_acl(
        self, name: str, public_access_level: Optional[str] = None, **options: Any
    ) -> Tuple[Container, List[SignedIdentifier]]:
        """
        Set container public access level and stored access policies.

        Args:
            name: Container name
            public_access_level: "container", "blob" or None for private
            **options: signed_identifiers, lease_id, timeout, request_id

        Returns:
            Tuple of (Container, list of SignedIdentifier)
        """
        query = {"comp": "acl"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        if public_access_level:
            headers[HeaderConstants.PUBLIC_ACCESS] = str(public_access_level)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        signed_identifiers = options.get("signed_identifiers")
        body = signed_identifiers_to_xml(signed_identifiers) if signed_identifiers else None

        response = self.call("PUT", self.container_uri(name, query, options), body, headers, options)
        container = container_from_headers(response.headers)
        container.name = name
        container.public_access_level = public_access_level
        return container, list(signed_identifiers or [])

    def delete_container(self, name: str, **options: Any) -> None:
        """
        Delete a container.

        Args:
            name: Container name
            **options: lease_id, if_modified_since, if_unmodified_since,
                timeout, request_id
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        self.call("DELETE", self.container_uri(name, query, options), None, headers, options)
        logger.debug(f"Deleted container: {name}")

    def list_blobs(self, name: str, **options: Any) -> EnumerationResults:
        """
        List blobs in a container.

        Args:
            name: Container name
            **options: prefix, delimiter, marker, max_results, metadata,
                snapshots, uncommittedblobs, copy (include flags), timeout,
                request_id, location_mode

        Returns:
            EnumerationResults of Blob with ``continuation_token``
        """
        query = {"comp": "list"}
        if options.get("prefix"):
            query["prefix"] = options["prefix"].replace("\\", "/")
        with_query(query, "delimiter", options.get("delimiter"))
        with_query(query, "marker", options.get("marker"))
        with_query(query, "maxresults", options.get("max_results"))
        with_query(query, "timeout", options.get("timeout"))

        included = [
            dataset
            for dataset in ("metadata", "snapshots", "uncommittedblobs", "copy")
            if options.get(dataset) is True
        ]
        if included:
            query["include"] = ",".join(included)

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.container_uri(name, query, options), None, {}, options)
        return blob_enumeration_results_from_xml(response.body)

    def acquire_container_lease(self, container: str, **options: Any) -> str:
        """Acquire a container lease. Returns the lease id."""
        return self._acquire_lease(container, None, **options)

    def renew_container_lease(self, container: str, lease: str, **options: Any) -> str:
        return self._renew_lease(container, None, lease, **options)

    def change_container_lease(self, container: str, lease: str, proposed_lease: str, **options: Any) -> str:
        return self._change_lease(container, None, lease, proposed_lease, **options)

    def release_container_lease(self, container: str, lease: str, **options: Any) -> None:
        self._release_lease(container, None, lease, **options)

    def break_container_lease(self, container: str, **options: Any) -> int:
        """Break a container lease. Returns the remaining lease time in seconds."""
        return self._break_lease(container, None, **options)

    # Blobs

    def get_blob(self, container: str, blob: str, **options: Any) -> Tuple[Blob, bytes]:
        """
        Download a blob.

        Args:
            container: Container name
            blob: Blob name
            **options: snapshot, start_range, end_range, get_content_md5,
                lease_id, conditional options, timeout, request_id,
                location_mode

        Returns:
            Tuple of (Blob, content bytes)
        """
        query: Dict[str, str] = {}
        with_query(query, "snapshot", options.get("snapshot"))
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        if options.get("end_range") is not None and options.get("start_range") is None:
            options["start_range"] = 0
        if options.get("start_range") is not None:
            end_range = options.get("end_range")
            headers["x-ms-range"] = f"bytes={options['start_range']}-{'' if end_range is None else end_range}"
            with_header(headers, "x-ms-range-get-content-md5", bool(options.get("get_content_md5")))
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.blob_uri(container, blob, query, options), None, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        result.snapshot = result.snapshot or options.get("snapshot")
        return result, response.body

    def get_blob_properties(self, container: str, blob: str, **options: Any) -> Blob:
        """
        Get blob properties and metadata.

        Args:
            container: Container name
            blob: Blob name
            **options: snapshot, lease_id, conditional options, timeout,
                request_id, location_mode
        """
        query: Dict[str, str] = {}
        with_query(query, "snapshot", options.get("snapshot"))
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("HEAD", self.blob_uri(container, blob, query, options), None, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        result.snapshot = options.get("snapshot")
        return result

    def set_blob_properties(self, container: str, blob: str, **options: Any) -> None:
        """
        Set blob system properties.

        Args:
            container: Container name
            blob: Blob name
            **options: content_type, content_encoding, content_language,
                content_md5, cache_control, content_disposition,
                content_length (page blobs), sequence_number_action
                ("max", "update", "increment"), sequence_number, lease_id,
                conditional options, timeout, request_id
        """
        query = {"comp": "properties"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        for option, header in CONTENT_SETTINGS.items():
            with_header(headers, header, options.get(option))
        with_header(headers, "x-ms-blob-content-length", options.get("content_length"))

        action = options.get("sequence_number_action")
        if action:
            headers["x-ms-sequence-number-action"] = str(action)
            if str(action) != "increment":
                with_header(headers, "x-ms-blob-sequence-number", options.get("sequence_number"))

        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        self.call("PUT", self.blob_uri(container, blob, query, options), None, headers, options)

    def get_blob_metadata(self, container: str, blob: str, **options: Any) -> Blob:
        """
        Get blob metadata.

        Args:
            container: Container name
            blob: Blob name
            **options: snapshot, lease_id, conditional options, timeout,
                request_id, location_mode
        """
        query = {"comp": "metadata"}
        with_query(query, "snapshot", options.get("snapshot"))
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.blob_uri(container, blob, query, options), None, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        result.snapshot = options.get("snapshot")
        return result

    def set_blob_metadata(self, container: str, blob: str, metadata: Dict[str, Any], **options: Any) -> None:
        """Replace blob metadata."""
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        add_metadata_to_headers(metadata, headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        self.call("PUT", self.blob_uri(container, blob, query, options), None, headers, options)

    def acquire_blob_lease(self, container: str, blob: str, **options: Any) -> str:
        """Acquire a blob lease. Returns the lease id."""
        return self._acquire_lease(container, blob, **options)

    def renew_blob_lease(self, container: str, blob: str, lease: str, **options: Any) -> str:
        return self._renew_lease(container, blob, lease, **options)

    def change_blob_lease(self, container: str, blob: str, lease: str, proposed_lease: str, **options: Any) -> str:
        return self._change_lease(container, blob, lease, proposed_lease, **options)

    def release_blob_lease(self, container: str, blob: str, lease: str, **options: Any) -> None:
        self._release_lease(container, blob, lease, **options)

    def break_blob_lease(self, container: str, blob: str, **options: Any) -> int:
        """Break a blob lease. Returns the remaining lease time in seconds."""
        return self._break_lease(container, blob, **options)

    def create_blob_snapshot(self, container: str, blob: str, **options: Any) -> Optional[str]:
        """
        Snapshot a blob.

        Returns:
            Snapshot timestamp (``x-ms-snapshot``)
        """
        query = {"comp": "snapshot"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        add_metadata_to_headers(options.get("metadata"), headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        response = self.call("PUT", self.blob_uri(container, blob, query, options), None, headers, options)
        return response.headers.get("x-ms-snapshot")

    def copy_blob_from_uri(
        self, destination_container: str, destination_blob: str, source_uri: str, **options: Any
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Start a server side copy from any readable blob URI.

        Args:
            destination_container: Destination container name
            destination_blob: Destination blob name
            source_uri: Source blob URI (may include a SAS token)
            **options: metadata, lease_id, source/destination conditional
                options, timeout, request_id

        Returns:
            Tuple of (copy id, copy status)
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        headers = {"x-ms-copy-source": source_uri}
        add_blob_conditional_headers(options, headers)
        add_metadata_to_headers(options.get("metadata"), headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        uri = self.blob_uri(destination_container, destination_blob, query, options)
        response = self.call("PUT", uri, None, headers, options)
        return response.headers.get("x-ms-copy-id"), response.headers.get("x-ms-copy-status")

    def copy_blob(
        self,
        destination_container: str,
        destination_blob: str,
        source_container: str,
        source_blob: str,
        **options: Any,
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Copy a blob within the same account.

        Args:
            **options: source_snapshot plus the copy_blob_from_uri options
        """
        source_query: Dict[str, str] = {}
        with_query(source_query, "snapshot", options.get("source_snapshot"))
        source_uri = self.blob_uri(source_container, source_blob, source_query, {})
        return self.copy_blob_from_uri(destination_container, destination_blob, source_uri, **options)

    def abort_copy_blob(self, container: str, blob: str, copy_id: str, **options: Any) -> None:
        """Abort a pending copy, leaving a zero length destination blob."""
        query = {"comp": "copy"}
        with_query(query, "timeout", options.get("timeout"))
        with_query(query, "copyid", copy_id)

        headers = {"x-ms-copy-action": "abort"}
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        self.call("PUT", self.blob_uri(container, blob, query, options), None, headers, options)

    def delete_blob(self, container: str, blob: str, **options: Any) -> None:
        """
        Delete a blob or one of its snapshots.

        Args:
            container: Container name
            blob: Blob name
            **options: snapshot, delete_snapshots ("include" by default, or
                "only"), lease_id, conditional options, timeout, request_id
        """
        query: Dict[str, str] = {}
        with_query(query, "snapshot", options.get("snapshot"))
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        delete_snapshots = options.get("delete_snapshots") or "include"
        if options.get("snapshot") is None:
            headers["x-ms-delete-snapshots"] = str(delete_snapshots)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        self.call("DELETE", self.blob_uri(container, blob, query, options), None, headers, options)

    # Block blobs

    def create_block_blob(self, container: str, blob: str, content: Content, **options: Any) -> Blob:
        """
        Upload a block blob.

        Content up to ``single_upload_threshold`` (128 MiB by default, at most
        256 MiB) is sent in one request; larger content is split into blocks
        which are then committed.

        Args:
            container: Container name
            blob: Blob name
            content: bytes, str or a binary stream (with content_length)
            **options: single_upload_threshold, content_length, content
                settings, metadata, lease_id, conditional options,
                transactional_md5, timeout, request_id

        Returns:
            Blob

        Raises:
            ValueError: If the size cannot be determined or is too large
        """
        size = _content_size(content, options)
        threshold = self._single_upload_threshold(options.get("single_upload_threshold"))
        if size > threshold:
            return self._create_block_blob_multiple_put(container, blob, content, size, **options)
        return self._create_block_blob_single_put(container, blob, content, **options)

    create_block_blob_from_content = create_block_blob

    def put_blob_block(self, container: str, blob: str, block_id: str, content: Body, **options: Any) -> Optional[str]:
        """
        Upload an uncommitted block.

        Args:
            container: Container name
            blob: Blob name
            block_id: Block id (base64 encoded on the wire)
            content: Block content
            **options: content_md5, lease_id, timeout, request_id

        Returns:
            Content-MD5 computed by the service
        """
        query = {"comp": "block", "blockid": _encode_block_id(block_id)}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.CONTENT_MD5, options.get("content_md5"))
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        response = self.call("PUT", self.blob_uri(container, blob, query, options), content, headers, options)
        return response.headers.get(HeaderConstants.CONTENT_MD5)

    def commit_blob_blocks(
        self, container: str, blob: str, block_list: Iterable[BlockListEntry], **options: Any
    ) -> None:
        """
        Commit a list of blocks as the blob content.

        Args:
            container: Container name
            blob: Blob name
            block_list: Block ids or ``(id, type)`` pairs where type is
                "committed", "uncommitted" or "latest"
            **options: transactional_md5, content settings, metadata,
                lease_id, conditional options, timeout, request_id
        """
        query = {"comp": "blocklist"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.CONTENT_MD5, options.get("transactional_md5"))
        for option, header in CONTENT_SETTINGS.items():
            with_header(headers, header, options.get(option))
        add_metadata_to_headers(options.get("metadata"), headers)
        add_blob_conditional_headers(options, headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        headers.setdefault(BLOB_CONTENT_TYPE, HeaderConstants.DEFAULT_CONTENT_TYPE)

        body = block_list_to_xml(block_list)
        self.call("PUT", self.blob_uri(container, blob, query, options), body, headers, options)

    def list_blob_blocks(self, container: str, blob: str, **options: Any) -> Dict[str, List[Block]]:
        """
        List the blocks of a block blob.

        Args:
            container: Container name
            blob: Blob name
            **options: blocklist_type ("all", "committed", "uncommitted"),
                snapshot, lease_id, timeout, request_id, location_mode

        Returns:
            Dict with ``committed`` and ``uncommitted`` lists of Block
        """
        query = {"comp": "blocklist"}
        with_query(query, "snapshot", options.get("snapshot"))
        with_query(query, "blocklisttype", options.get("blocklist_type") or "all")
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.blob_uri(container, blob, query, options), None, headers, options)
        return block_list_from_xml(response.body)

    def _create_block_blob_single_put(self, container: str, blob: str, content: Content, **options: Any) -> Blob:
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        if not isinstance(content, (bytes, bytearray, str)):
            content = content.read()

        headers = {"x-ms-blob-type": "BlockBlob"}
        with_header(headers, HeaderConstants.CONTENT_MD5, options.get("transactional_md5"))
        for option, header in CONTENT_SETTINGS.items():
            with_header(headers, header, options.get(option))
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_metadata_to_headers(options.get("metadata"), headers)
        add_blob_conditional_headers(options, headers)
        with_header(headers, BLOB_CONTENT_TYPE, get_or_apply_content_type(content, options.get("content_type")))

        response = self.call("PUT", self.blob_uri(container, blob, query, options), content, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        if options.get("metadata"):
            result.metadata = dict(options["metadata"])
        return result

    def _create_block_blob_multiple_put(
        self, container: str, blob: str, content: Content, size: int, **options: Any
    ) -> Blob:
        content_type = get_or_apply_content_type(content, options.get("content_type"))
        stream = _as_stream(content)
        block_size = self._block_size(size)
        block_count = -(-size // block_size)

        block_list: List[BlockListEntry] = []
        for index in range(block_count):
            block_id = str(index).rjust(BlobConstants.BLOCK_ID_PADDING, "0")
            block_options = {k: options[k] for k in ("timeout", "lease_id") if options.get(k)}
            self.put_blob_block(container, blob, block_id, stream.read(block_size), **block_options)
            block_list.append((block_id,))
        logger.debug(f"Uploaded {block_count} blocks for {container}/{blob}")

        commit_options = {
            k: options[k]
            for k in (
                "content_encoding", "content_language", "content_md5", "cache_control",
                "content_disposition", "metadata", "timeout", "request_id", "lease_id",
            )
            if options.get(k)
        }
        commit_options["content_type"] = content_type
        self.commit_blob_blocks(container, blob, block_list, **commit_options)

        properties_options = {"lease_id": options["lease_id"]} if options.get("lease_id") else {}
        return self.get_blob_properties(container, blob, **properties_options)

    @staticmethod
    def _single_upload_threshold(threshold: Optional[int]) -> int:
        if threshold is None:
            return BlobConstants.DEFAULT_SINGLE_BLOB_PUT_THRESHOLD_IN_BYTES
        if threshold <= 0:
            raise ValueError("Single Upload Threshold should be positive number")
        return min(threshold, BlobConstants.MAX_SINGLE_UPLOAD_BLOB_SIZE_IN_BYTES)

    @staticmethod
    def _block_size(size: int) -> int:
        if size > BlobConstants.MAX_BLOB_SIZE:
            raise ValueError(f"Block blob size should be less than {BlobConstants.MAX_BLOB_SIZE} bytes in size")
        if size / BlobConstants.MAX_BLOCK_COUNT < BlobConstants.DEFAULT_WRITE_BLOCK_SIZE_IN_BYTES:
            return BlobConstants.DEFAULT_WRITE_BLOCK_SIZE_IN_BYTES
        return BlobConstants.MAX_BLOCK_SIZE

    # Page blobs

    def create_page_blob(self, container: str, blob: str, length: int, **options: Any) -> Blob:
        """
        Create an empty page blob.

        Args:
            container: Container name
            blob: Blob name
            length: Maximum size in bytes, a multiple of 512
            **options: sequence_number, content settings, metadata,
                lease_id, conditional options, timeout, request_id
        """
        _check_page_alignment(length, "Page blob length")

        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        headers = {
            "x-ms-blob-type": "PageBlob",
            "x-ms-blob-content-length": str(length),
            "x-ms-blob-sequence-number": str(options.get("sequence_number") or 0),
        }
        with_header(headers, HeaderConstants.CONTENT_MD5, options.get("transactional_md5"))
        for option, header in CONTENT_SETTINGS.items():
            with_header(headers, header, options.get(option))
        add_metadata_to_headers(options.get("metadata"), headers)
        add_blob_conditional_headers(options, headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        response = self.call("PUT", self.blob_uri(container, blob, query, options), None, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        if options.get("metadata"):
            result.metadata = dict(options["metadata"])
        return result

    def put_blob_pages(
        self, container: str, blob: str, start_range: int, end_range: int, content: bytes, **options: Any
    ) -> Blob:
        """
        Write pages to a page blob.

        The range is inclusive and must cover whole 512 byte pages.
        """
        _check_page_range(start_range, end_range)

        query = {"comp": "page"}
        with_query(query, "timeout", options.get("timeout"))

        headers = {
            "x-ms-range": f"bytes={start_range}-{end_range}",
            "x-ms-page-write": "update",
            HeaderConstants.CONTENT_TYPE: "",
        }
        with_header(headers, HeaderConstants.CONTENT_MD5, options.get("transactional_md5"))
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        response = self.call("PUT", self.blob_uri(container, blob, query, options), content, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        return result

    def clear_blob_pages(self, container: str, blob: str, start_range: int, end_range: int, **options: Any) -> Blob:
        """Clear a range of pages."""
        _check_page_range(start_range, end_range)

        query = {"comp": "page"}
        with_query(query, "timeout", options.get("timeout"))

        headers = {
            "x-ms-range": f"bytes={start_range}-{end_range}",
            "x-ms-page-write": "clear",
            HeaderConstants.CONTENT_TYPE: "",
        }
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        response = self.call("PUT", self.blob_uri(container, blob, query, options), None, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        return result

    def list_page_blob_ranges(self, container: str, blob: str, **options: Any) -> List[Tuple[int, int]]:
        """
        List the valid page ranges of a page blob.

        Args:
            container: Container name
            blob: Blob name
            **options: start_range, end_range, snapshot, previous_snapshot,
                lease_id, conditional options, timeout, request_id,
                location_mode

        Returns:
            List of inclusive (start, end) byte ranges
        """
        query = {"comp": "pagelist"}
        with_query(query, "snapshot", options.get("snapshot"))
        with_query(query, "prevsnapshot", options.get("previous_snapshot"))
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        uri = self.blob_uri(container, blob, query, options)

        if options.get("end_range") is not None and options.get("start_range") is None:
            options["start_range"] = 0
        headers: Dict[str, str] = {}
        if options.get("start_range") is not None:
            end_range = options.get("end_range")
            headers["x-ms-range"] = f"bytes={options['start_range']}-{'' if end_range is None else end_range}"
        add_blob_conditional_headers(options, headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        response = self.call("GET", uri, None, headers, options)
        return page_list_from_xml(response.body)

    def resize_page_blob(self, container: str, blob: str, size: int, **options: Any) -> None:
        """Change the maximum size of a page blob."""
        _check_page_alignment(size, "Page blob size")
        options.setdefault("content_length", size)
        self.set_blob_properties(container, blob, **options)

    def set_sequence_number(self, container: str, blob: str, action: str, number: Optional[int], **options: Any) -> None:
        """
        Update the sequence number of a page blob.

        Args:
            action: "max", "update" or "increment"
            number: New sequence number (ignored for "increment")
        """
        options.setdefault("sequence_number_action", action)
        options.setdefault("sequence_number", number)
        self.set_blob_properties(container, blob, **options)

    def incremental_copy_blob(
        self, destination_container: str, destination_blob: str, source_uri: str, **options: Any
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Start an incremental copy of a page blob snapshot.

        Returns:
            Tuple of (copy id, copy status)
        """
        query = {"comp": "incrementalcopy"}
        with_query(query, "timeout", options.get("timeout"))

        headers = {"x-ms-copy-source": source_uri}
        add_blob_conditional_headers(options, headers)
        add_metadata_to_headers(options.get("metadata"), headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))

        uri = self.blob_uri(destination_container, destination_blob, query, options)
        response = self.call("PUT", uri, None, headers, options)
        return response.headers.get("x-ms-copy-id"), response.headers.get("x-ms-copy-status")

    # Append blobs

    def create_append_blob(self, container: str, blob: str, **options: Any) -> Blob:
        """Create an empty append blob."""
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        headers = {"x-ms-blob-type": "AppendBlob"}
        for option, header in CONTENT_SETTINGS.items():
            with_header(headers, header, options.get(option))
        add_metadata_to_headers(options.get("metadata"), headers)
        add_blob_conditional_headers(options, headers)
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        headers.setdefault(BLOB_CONTENT_TYPE, HeaderConstants.DEFAULT_CONTENT_TYPE)

        response = self.call("PUT", self.blob_uri(container, blob, query, options), None, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        if options.get("metadata"):
            result.metadata = dict(options["metadata"])
        return result

    def append_blob_block(self, container: str, blob: str, content: Body, **options: Any) -> Blob:
        """
        Append a block to an append blob.

        Args:
            container: Container name
            blob: Blob name
            content: Block content (at most 4 MiB)
            **options: content_md5, lease_id, max_size, append_position,
                conditional options, timeout, request_id
        """
        query = {"comp": "appendblock"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        with_header(headers, HeaderConstants.CONTENT_MD5, options.get("content_md5"))
        with_header(headers, HeaderConstants.LEASE_ID, options.get("lease_id"))
        add_blob_conditional_headers(options, headers)

        response = self.call("PUT", self.blob_uri(container, blob, query, options), content, headers, options)
        result = blob_from_headers(response.headers)
        result.name = blob
        return result

    def create_append_blob_from_content(self, container: str, blob: str, content: Content, **options: Any) -> Blob:
        """
        Create an append blob and append the content in 4 MiB blocks.

        Args:
            **options: max_size, content settings, metadata, lease_id,
                conditional options, timeout, request_id

        Raises:
            StorageError: If the content is larger than max_size
        """
        max_size = options.pop("max_size", None)
        if max_size is not None and isinstance(content, (bytes, bytearray, str)):
            if max_size < _content_size(content, options):
                raise StorageError("Given content has exceeded the specified maximum size for the blob.")

        options["content_type"] = get_or_apply_content_type(content, options.get("content_type"))
        self.create_append_blob(container, blob, **options)

        stream = _as_stream(content)
        block_options = {
            k: options[k]
            for k in ("if_modified_since", "if_unmodified_since", "if_match", "if_none_match", "lease_id")
            if options.get(k)
        }
        if max_size is not None:
            block_options["max_size"] = max_size

        position = 0
        while True:
            payload = stream.read(BlobConstants.MAX_APPEND_BLOCK_SIZE)
            if not payload:
                break
            block_options["append_position"] = position
            self.append_blob_block(container, blob, payload, **block_options)
            position += len(payload)

        properties_options = {"lease_id": options["lease_id"]} if options.get("lease_id") else {}
        return self.get_blob_properties(container, blob, **properties_options)

    # User delegation

    def get_user_delegation_key(self, start: datetime, expiry: datetime, **options: Any) -> UserDelegationKey:
        """
        Get a key for signing user delegation SAS tokens.

        Requires a token credential signer.

        Args:
            start: Key validity start, at most 7 days from now
            expiry: Key expiry, at most 7 days from now

        Raises:
            ValueError: If the times are out of range or out of order
        """
        start = start if start.tzinfo else start.replace(tzinfo=timezone.utc)
        expiry = expiry if expiry.tzinfo else expiry.replace(tzinfo=timezone.utc)
        max_delegation_time = datetime.now(timezone.utc) + MAX_USER_DELEGATION_KEY_DURATION
        if start > max_delegation_time:
            raise ValueError(f"Start time must be before {max_delegation_time}")
        if expiry > max_delegation_time:
            raise ValueError(f"Expiry time must be before {max_delegation_time}")
        if start >= expiry:
            raise ValueError("Start time must be before expiry time")

        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))
        body = key_info_to_xml(start, expiry)
        response = self.call("POST", self.user_delegation_key_uri(query, options), body, {}, options)
        return user_delegation_key_from_xml(response.body)

    # Leases

    def _lease_uri(self, container: str, blob: Optional[str], options: Dict[str, Any]) -> str:
        query = {"comp": "lease"}
        with_query(query, "timeout", options.get("timeout"))
        if blob:
            return self.blob_uri(container, blob, query, options)
        return self.container_uri(container, query, options)

    def _acquire_lease(self, container: str, blob: Optional[str], **options: Any) -> str:
        uri = self._lease_uri(container, blob, options)
        duration = options.get("duration")
        headers = {
            HeaderConstants.LEASE_ACTION: "acquire",
            "x-ms-lease-duration": str(duration if duration is not None else -1),
        }
        with_header(headers, "x-ms-proposed-lease-id", options.get("proposed_lease_id"))
        with_header(headers, "Origin", options.get("origin"))
        add_blob_conditional_headers(options, headers)

        response = self.call("PUT", uri, None, headers, options)
        return response.headers.get(HeaderConstants.LEASE_ID)

    def _renew_lease(self, container: str, blob: Optional[str], lease: str, **options: Any) -> str:
        uri = self._lease_uri(container, blob, options)
        headers = {HeaderConstants.LEASE_ACTION: "renew", HeaderConstants.LEASE_ID: lease}
        with_header(headers, "Origin", options.get("origin"))
        add_blob_conditional_headers(options, headers)

        response = self.call("PUT", uri, None, headers, options)
        return response.headers.get(HeaderConstants.LEASE_ID)

    def _change_lease(self, container: str, blob: Optional[str], lease: str, proposed_lease: str, **options: Any) -> str:
        uri = self._lease_uri(container, blob, options)
        headers = {
            HeaderConstants.LEASE_ACTION: "change",
            HeaderConstants.LEASE_ID: lease,
            "x-ms-proposed-lease-id": proposed_lease,
        }
        with_header(headers, "Origin", options.get("origin"))
        add_blob_conditional_headers(options, headers)

        response = self.call("PUT", uri, None, headers, options)
        return response.headers.get(HeaderConstants.LEASE_ID)

    def _release_lease(self, container: str, blob: Optional[str], lease: str, **options: Any) -> None:
        uri = self._lease_uri(container, blob, options)
        headers = {HeaderConstants.LEASE_ACTION: "release", HeaderConstants.LEASE_ID: lease}
        with_header(headers, "Origin", options.get("origin"))
        add_blob_conditional_headers(options, headers)

        self.call("PUT", uri, None, headers, options)

    def _break_lease(self, container: str, blob: Optional[str], **options: Any) -> int:
        uri = self._lease_uri(container, blob, options)
        headers = {HeaderConstants.LEASE_ACTION: "break"}
        with_header(headers, "x-ms-lease-break-period", options.get("break_period"))
        with_header(headers, "Origin", options.get("origin"))
        add_blob_conditional_headers(options, headers)

        response = self.call("PUT", uri, None, headers, options)
        return int(response.headers.get("x-ms-lease-time") or 0)

    # URIs

    def containers_uri(self, query: Dict[str, str], options: Dict[str, Any]) -> str:
        return self.generate_uri("", {"comp": "list", **query}, options)

    def user_delegation_key_uri(self, query: Dict[str, str], options: Dict[str, Any]) -> str:
        return self.generate_uri("", {"restype": "service", "comp": "userdelegationkey", **query}, options)

    def container_uri(self, name: str, query: Dict[str, str], options: Dict[str, Any]) -> str:
        return self.generate_uri(name, {"restype": "container", **query}, options)

    def blob_uri(self, container: Optional[str], blob: str, query: Dict[str, str], options: Dict[str, Any]) -> str:
        path = f"{container}/{blob}" if container else blob
        options.setdefault("encode", True)
        return self.generate_uri(path, query, options)


def _encode_block_id(block_id: str) -> str:
    return base64.b64encode(block_id.encode("utf-8")).decode("utf-8")


def _check_page_alignment(value: int, label: str) -> None:
    if value % BlobConstants.PAGE_SIZE != 0:
        raise ValueError(f"{label} must be a multiple of {BlobConstants.PAGE_SIZE} bytes")


def _check_page_range(start_range: int, end_range: int) -> None:
    if start_range % BlobConstants.PAGE_SIZE != 0 or (end_range + 1) % BlobConstants.PAGE_SIZE != 0:
        raise ValueError(
            f"Page ranges must start and end on {BlobConstants.PAGE_SIZE} byte boundaries "
            f"(got bytes={start_range}-{end_range})"
        )
