"""
Azure File service client.

Share, directory and file operations over the File REST API.
"""

import io
import logging
import posixpath
from typing import Any, BinaryIO, Dict, List, Optional, Tuple, Union

from azstore.core.constants import (
    FILE_STG_VERSION,
    FileConstants,
    HeaderConstants,
    RequestLocationMode,
    ServiceType,
)
from azstore.core.http_client import Body, HttpResponse
from azstore.core.models import EnumerationResults, SignedIdentifier
from azstore.core.serialization import signed_identifiers_from_xml, signed_identifiers_to_xml
from azstore.core.service import StorageService, add_metadata_to_headers, with_header, with_query
from azstore.services.file.models import Directory, File, Share, ShareNameValidator
from azstore.services.file.serialization import (
    directories_and_files_enumeration_results_from_xml,
    directory_from_headers,
    file_from_headers,
    range_list_from_xml,
    share_enumeration_results_from_xml,
    share_from_headers,
    share_stats_from_xml,
)

logger = logging.getLogger(__name__)

FILE_CONTENT_TYPE = "x-ms-content-type"

Content = Union[bytes, str, BinaryIO]

CONTENT_SETTINGS = {
    "content_type": FILE_CONTENT_TYPE,
    "content_encoding": "x-ms-content-encoding",
    "content_language": "x-ms-content-language",
    "content_md5": "x-ms-content-md5",
    "cache_control": "x-ms-cache-control",
    "content_disposition": "x-ms-content-disposition",
}


def get_or_apply_content_type(body: Any, content_type: Optional[str] = None) -> Optional[str]:
    """Pick the file content type for a request body, as for blobs."""
    if body is None or content_type:
        return content_type
    if isinstance(body, str) and body:
        return HeaderConstants.DEFAULT_TEXT_CONTENT_TYPE
    return HeaderConstants.DEFAULT_CONTENT_TYPE


def _range_header(start_range: Optional[int], end_range: Optional[int]) -> Optional[str]:
    if end_range is not None and start_range is None:
        start_range = 0
    if start_range is None:
        return None
    return f"bytes={start_range}-{'' if end_range is None else end_range}"


class FileService(StorageService):
    """
    Client for the File service.

    Example:
        >>> files = StorageClient.create(conn_str).file_client()
        >>> files.create_share("reports", quota=10)
        >>> files.create_directory("reports", "2024")
        >>> files.create_file_from_content("reports", "2024", "q1.csv", len(data), data)
    """

    service_type = ServiceType.FILE
    api_version = FILE_STG_VERSION

    def call(
        self,
        method: str,
        uri: str,
        body: Body = None,
        headers: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> HttpResponse:
        headers = dict(headers or {})
        content_type = get_or_apply_content_type(body, headers.get(FILE_CONTENT_TYPE))
        if content_type:
            headers[FILE_CONTENT_TYPE] = content_type
        return super().call(method, uri, body, headers, options)

    # Shares

    def list_shares(self, **options: Any) -> EnumerationResults:
        """
        List shares in the account.

        Args:
            **options: prefix, marker, max_results, metadata, timeout,
                request_id, location_mode

        Returns:
            EnumerationResults of Share with ``continuation_token``
        """
        query: Dict[str, str] = {}
        with_query(query, "prefix", options.get("prefix"))
        with_query(query, "marker", options.get("marker"))
        with_query(query, "maxresults", options.get("max_results"))
        if options.get("metadata") is True:
            query["include"] = "metadata"
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.shares_uri(query, options), None, {}, options)
        return share_enumeration_results_from_xml(response.body)

    def create_share(self, name: str, **options: Any) -> Share:
        """
        Create a share.

        Args:
            name: Share name
            **options: quota (GiB, 1-5120), metadata, timeout, request_id

        Returns:
            Share

        Raises:
            ValueError: If the name or quota is invalid
        """
        ShareNameValidator.validate_raise(name)
        quota = options.get("quota")
        _check_quota(quota)

        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        add_metadata_to_headers(options.get("metadata"), headers)
        with_header(headers, "x-ms-share-quota", quota)

        response = self.call("PUT", self.share_uri(name, query, options), None, headers, options)
        share = share_from_headers(response.headers)
        share.name = name
        if quota:
            share.quota = quota
        if options.get("metadata"):
            share.metadata = dict(options["metadata"])
        logger.debug(f"Created share: {name}")
        return share

    def get_share_properties(self, name: str, **options: Any) -> Share:
        """Get share properties, quota and metadata."""
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.share_uri(name, query, options), None, {}, options)
        share = share_from_headers(response.headers)
        share.name = name
        return share

    def set_share_properties(self, name: str, **options: Any) -> None:
        """
        Set share properties.

        Args:
            name: Share name
            **options: quota (GiB), timeout, request_id
        """
        _check_quota(options.get("quota"))

        query = {"comp": "properties"}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        with_header(headers, "x-ms-share-quota", options.get("quota"))

        self.call("PUT", self.share_uri(name, query, options), None, headers, options)

    def get_share_metadata(self, name: str, **options: Any) -> Share:
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.share_uri(name, query, options), None, {}, options)
        share = share_from_headers(response.headers)
        share.name = name
        return share

    def set_share_metadata(self, name: str, metadata: Dict[str, Any], **options: Any) -> None:
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        add_metadata_to_headers(metadata, headers)

        self.call("PUT", self.share_uri(name, query, options), None, headers, options)

    def delete_share(self, name: str, **options: Any) -> None:
        """Delete a share and everything in it."""
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        self.call("DELETE", self.share_uri(name, query, options), None, {}, options)
        logger.debug(f"Deleted share: {name}")

    def get_share_acl(self, name: str, **options: Any) -> Tuple[Share, List[SignedIdentifier]]:
        """
        Get the stored access policies of a share.

        Returns:
            Tuple of (Share, list of SignedIdentifier)
        """
        query = {"comp": "acl"}
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.share_uri(name, query, options), None, {}, options)
        share = share_from_headers(response.headers)
        share.name = name

        signed_identifiers: List[SignedIdentifier] = []
        if response.body:
            signed_identifiers = signed_identifiers_from_xml(response.body)
        return share, signed_identifiers

    def set_share_acl(self, name: str, **options: Any) -> Tuple[Share, List[SignedIdentifier]]:
        """
        Set the stored access policies of a share.

        Args:
            name: Share name
            **options: signed_identifiers, timeout, request_id

        Returns:
            Tuple of (Share, list of SignedIdentifier)
        """
        query = {"comp": "acl"}
        with_query(query, "timeout", options.get("timeout"))

        signed_identifiers = options.get("signed_identifiers")
        body = signed_identifiers_to_xml(signed_identifiers) if signed_identifiers else None

        response = self.call("PUT", self.share_uri(name, query, options), body, {}, options)
        share = share_from_headers(response.headers)
        share.name = name
        return share, list(signed_identifiers or [])

    def get_share_stats(self, name: str, **options: Any) -> Share:
        """Get share usage. ``Share.usage`` is in GiB."""
        query = {"comp": "stats"}
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.share_uri(name, query, options), None, {}, options)
        share = share_from_headers(response.headers)
        share.name = name
        share.usage = share_stats_from_xml(response.body)
        return share

    # Directories

    def list_directories_and_files(
        self, share: str, directory_path: Optional[str], **options: Any
    ) -> EnumerationResults:
        """
        List files and subdirectories of a directory.

        Args:
            share: Share name
            directory_path: Directory path, None for the share root
            **options: prefix, marker, max_results, timeout, request_id,
                location_mode

        Returns:
            EnumerationResults of File and Directory
        """
        query = {"comp": "list"}
        with_query(query, "prefix", options.get("prefix"))
        with_query(query, "marker", options.get("marker"))
        with_query(query, "maxresults", options.get("max_results"))
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        uri = self.directory_uri(share, directory_path, query, options)
        response = self.call("GET", uri, None, {}, options)
        return directories_and_files_enumeration_results_from_xml(response.body)

    def create_directory(self, share: str, directory_path: str, **options: Any) -> Directory:
        """
        Create a directory. The parent directory must exist.

        Args:
            share: Share name
            directory_path: Directory path
            **options: metadata, timeout, request_id
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        add_metadata_to_headers(options.get("metadata"), headers)

        response = self.call("PUT", self.directory_uri(share, directory_path, query, options), None, headers, options)
        directory = directory_from_headers(response.headers)
        directory.name = directory_path
        if options.get("metadata"):
            directory.metadata = dict(options["metadata"])
        return directory

    def get_directory_properties(self, share: str, directory_path: str, **options: Any) -> Directory:
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.directory_uri(share, directory_path, query, options), None, {}, options)
        directory = directory_from_headers(response.headers)
        directory.name = directory_path
        return directory

    def delete_directory(self, share: str, directory_path: str, **options: Any) -> None:
        """Delete an empty directory."""
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        self.call("DELETE", self.directory_uri(share, directory_path, query, options), None, {}, options)

    def get_directory_metadata(self, share: str, directory_path: str, **options: Any) -> Directory:
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.directory_uri(share, directory_path, query, options), None, {}, options)
        directory = directory_from_headers(response.headers)
        directory.name = directory_path
        return directory

    def set_directory_metadata(self, share: str, directory_path: str, metadata: Dict[str, Any], **options: Any) -> None:
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        add_metadata_to_headers(metadata, headers)

        self.call("PUT", self.directory_uri(share, directory_path, query, options), None, headers, options)

    # Files

    def create_file(self, share: str, directory_path: Optional[str], file: str, length: int, **options: Any) -> File:
        """
        Create an empty file of the given length.

        Args:
            share: Share name
            directory_path: Directory path, None for the share root
            file: File name
            length: File size in bytes
            **options: content_type, content_encoding, content_language,
                content_md5, cache_control, content_disposition, metadata,
                timeout, request_id

        Returns:
            File
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        headers = {"x-ms-type": "file", "x-ms-content-length": str(length)}
        for option, header in CONTENT_SETTINGS.items():
            with_header(headers, header, options.get(option))
        add_metadata_to_headers(options.get("metadata"), headers)

        response = self.call("PUT", self.file_uri(share, directory_path, file, query, options), None, headers, options)
        result = file_from_headers(response.headers)
        result.name = file
        result.properties["content_length"] = length
        if options.get("metadata"):
            result.metadata = dict(options["metadata"])
        return result

    def get_file(self, share: str, directory_path: Optional[str], file: str, **options: Any) -> Tuple[File, bytes]:
        """
        Download a file or a range of it.

        Args:
            **options: start_range, end_range, get_content_md5, timeout,
                request_id, location_mode

        Returns:
            Tuple of (File, content bytes)
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        range_header = _range_header(options.get("start_range"), options.get("end_range"))
        if range_header:
            headers["x-ms-range"] = range_header
            with_header(headers, "x-ms-range-get-content-md5", bool(options.get("get_content_md5")))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.file_uri(share, directory_path, file, query, options), None, headers, options)
        result = file_from_headers(response.headers)
        result.name = file
        return result, response.body

    def get_file_properties(self, share: str, directory_path: Optional[str], file: str, **options: Any) -> File:
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("HEAD", self.file_uri(share, directory_path, file, query, options), None, {}, options)
        result = file_from_headers(response.headers)
        result.name = file
        return result

    def set_file_properties(self, share: str, directory_path: Optional[str], file: str, **options: Any) -> None:
        """
        Set file system properties.

        Properties not given are cleared by the service.

        Args:
            **options: content_type, content_encoding, content_language,
                content_md5, cache_control, content_disposition,
                content_length (resizes), timeout, request_id
        """
        query = {"comp": "properties"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        for option, header in CONTENT_SETTINGS.items():
            with_header(headers, header, options.get(option))
        with_header(headers, "x-ms-content-length", options.get("content_length"))

        self.call("PUT", self.file_uri(share, directory_path, file, query, options), None, headers, options)

    def resize_file(self, share: str, directory_path: Optional[str], file: str, size: int, **options: Any) -> None:
        options.setdefault("content_length", size)
        self.set_file_properties(share, directory_path, file, **options)

    def put_file_range(
        self,
        share: str,
        directory_path: Optional[str],
        file: str,
        start_range: int,
        end_range: int,
        content: Body,
        **options: Any,
    ) -> File:
        """
        Write bytes into an inclusive range of a file.

        Args:
            **options: transactional_md5, timeout, request_id
        """
        query = {"comp": "range"}
        with_query(query, "timeout", options.get("timeout"))

        headers = {"x-ms-range": f"bytes={start_range}-{end_range}", "x-ms-write": "update"}
        with_header(headers, HeaderConstants.CONTENT_MD5, options.get("transactional_md5"))

        uri = self.file_uri(share, directory_path, file, query, options)
        response = self.call("PUT", uri, content, headers, options)
        result = file_from_headers(response.headers)
        result.name = file
        return result

    def clear_file_range(
        self,
        share: str,
        directory_path: Optional[str],
        file: str,
        start_range: Optional[int],
        end_range: Optional[int] = None,
        **options: Any,
    ) -> File:
        """Clear an inclusive range of a file."""
        query = {"comp": "range"}
        with_query(query, "timeout", options.get("timeout"))

        if end_range is not None and start_range is None:
            start_range = 0
        headers = {
            "x-ms-range": f"bytes={start_range}-{'' if end_range is None else end_range}",
            "x-ms-write": "clear",
        }

        response = self.call("PUT", self.file_uri(share, directory_path, file, query, options), None, headers, options)
        result = file_from_headers(response.headers)
        result.name = file
        return result

    def list_file_ranges(
        self, share: str, directory_path: Optional[str], file: str, **options: Any
    ) -> Tuple[File, List[Tuple[int, int]]]:
        """
        List the written ranges of a file.

        Args:
            **options: start_range, end_range, timeout, request_id,
                location_mode

        Returns:
            Tuple of (File, list of inclusive (start, end) ranges)
        """
        query = {"comp": "rangelist"}
        with_query(query, "timeout", options.get("timeout"))

        headers: Dict[str, str] = {}
        with_header(headers, "x-ms-range", _range_header(options.get("start_range"), options.get("end_range")))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.file_uri(share, directory_path, file, query, options), None, headers, options)
        result = file_from_headers(response.headers)
        result.name = file
        return result, range_list_from_xml(response.body)

    def get_file_metadata(self, share: str, directory_path: Optional[str], file: str, **options: Any) -> File:
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))

        options["request_location_mode"] = RequestLocationMode.PRIMARY_OR_SECONDARY
        response = self.call("GET", self.file_uri(share, directory_path, file, query, options), None, {}, options)
        result = file_from_headers(response.headers)
        result.name = file
        return result

    def set_file_metadata(
        self, share: str, directory_path: Optional[str], file: str, metadata: Dict[str, Any], **options: Any
    ) -> None:
        query = {"comp": "metadata"}
        with_query(query, "timeout", options.get("timeout"))
        headers: Dict[str, str] = {}
        add_metadata_to_headers(metadata, headers)

        self.call("PUT", self.file_uri(share, directory_path, file, query, options), None, headers, options)

    def delete_file(self, share: str, directory_path: Optional[str], file: str, **options: Any) -> None:
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        self.call("DELETE", self.file_uri(share, directory_path, file, query, options), None, {}, options)

    def copy_file_from_uri(
        self,
        destination_share: str,
        destination_directory_path: Optional[str],
        destination_file: str,
        source_uri: str,
        **options: Any,
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Start a server side copy from a file or blob URI.

        Returns:
            Tuple of (copy id, copy status)
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        headers = {"x-ms-copy-source": source_uri}
        add_metadata_to_headers(options.get("metadata"), headers)

        uri = self.file_uri(destination_share, destination_directory_path, destination_file, query, options)
        response = self.call("PUT", uri, None, headers, options)
        return response.headers.get("x-ms-copy-id"), response.headers.get("x-ms-copy-status")

    def copy_file(
        self,
        destination_share: str,
        destination_directory_path: Optional[str],
        destination_file: str,
        source_share: str,
        source_directory_path: Optional[str],
        source_file: str,
        **options: Any,
    ) -> Tuple[Optional[str], Optional[str]]:
        """Copy a file within the same account."""
        source_uri = self.file_uri(source_share, source_directory_path, source_file, {}, {})
        return self.copy_file_from_uri(
            destination_share, destination_directory_path, destination_file, source_uri, **options
        )

    def abort_copy_file(self, share: str, directory_path: Optional[str], file: str, copy_id: str, **options: Any) -> None:
        query = {"comp": "copy"}
        with_query(query, "timeout", options.get("timeout"))
        with_query(query, "copyid", copy_id)

        headers = {"x-ms-copy-action": "abort"}
        self.call("PUT", self.file_uri(share, directory_path, file, query, options), None, headers, options)

    def create_file_from_content(
        self,
        share: str,
        directory_path: Optional[str],
        file: str,
        length: int,
        content: Content,
        **options: Any,
    ) -> File:
        """
        Create a file and upload its content in 4 MiB ranges.

        Args:
            share: Share name
            directory_path: Directory path, None for the share root
            file: File name
            length: File size in bytes
            content: bytes, str or a binary stream
            **options: content settings, metadata, timeout, request_id

        Returns:
            File properties after the upload
        """
        options["content_type"] = get_or_apply_content_type(content, options.get("content_type"))
        self.create_file(share, directory_path, file, length, **options)

        if isinstance(content, str):
            stream: BinaryIO = io.BytesIO(content.encode("utf-8"))
        elif isinstance(content, (bytes, bytearray)):
            stream = io.BytesIO(bytes(content))
        else:
            stream = content

        range_options = {k: options[k] for k in ("timeout", "request_id") if options.get(k)}
        start = 0
        while start < length:
            payload = stream.read(min(FileConstants.DEFAULT_WRITE_SIZE_IN_BYTES, length - start))
            if not payload:
                break
            self.put_file_range(share, directory_path, file, start, start + len(payload) - 1, payload, **range_options)
            start += len(payload)
        logger.debug(f"Uploaded {start} bytes to {share}/{directory_path or ''}/{file}")

        return self.get_file_properties(share, directory_path, file)

    # URIs

    def shares_uri(self, query: Dict[str, str], options: Dict[str, Any]) -> str:
        return self.generate_uri("", {"comp": "list", **query}, options)

    def share_uri(self, name: str, query: Dict[str, str], options: Dict[str, Any]) -> str:
        return self.generate_uri(name, {"restype": "share", **query}, options)

    def directory_uri(
        self, share: str, directory_path: Optional[str], query: Dict[str, str], options: Dict[str, Any]
    ) -> str:
        path = share if not directory_path else posixpath.join(share, directory_path)
        options.setdefault("encode", True)
        return self.generate_uri(path, {"restype": "directory", **query}, options)

    def file_uri(
        self,
        share: str,
        directory_path: Optional[str],
        file: str,
        query: Dict[str, str],
        options: Dict[str, Any],
    ) -> str:
        if directory_path:
            path = posixpath.join(share, directory_path, file)
        else:
            path = posixpath.join(share, file)
        options.setdefault("encode", True)
        return self.generate_uri(path, query, options)


def _check_quota(quota: Optional[int]) -> None:
    if quota is not None and not 0 < int(quota) <= FileConstants.MAX_SHARE_QUOTA_GB:
        raise ValueError(f"Share quota must be between 1 and {FileConstants.MAX_SHARE_QUOTA_GB} GiB")
