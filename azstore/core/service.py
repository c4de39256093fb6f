"""
azstore Storage Service base class.

Defines the request path shared by the Blob, File and Table services:
URI generation for primary and secondary locations, common headers,
signing, the filter pipeline and the service-level properties and stats
operations.
"""

import base64
import hashlib
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import quote, urlencode

from azstore.auth.sas import SharedAccessSignatureSigner
from azstore.auth.sharedkey import SharedKeySigner
from azstore.auth.signers import AnonymousSigner
from azstore.core.constants import (
    STG_VERSION,
    USER_AGENT,
    HeaderConstants,
    LocationMode,
    RequestLocationMode,
    ServiceType,
    StorageLocation,
)
from azstore.core.exceptions import InvalidOptionsError
from azstore.core.http_client import Body, HttpFilter, HttpRequest, HttpResponse
from azstore.core.logging_config import clear_request_id, set_request_id
from azstore.core.models import StorageServiceProperties, StorageServiceStats
from azstore.core.retry import get_location
from azstore.core.serialization import (
    service_properties_from_xml,
    service_properties_to_xml,
    service_stats_from_xml,
)

if TYPE_CHECKING:
    from azstore.core.client import StorageClient

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_CONTENT_TYPE = "application/atom+xml; charset=utf-8"

RequestCallback = Callable[[Dict[str, str]], None]


def with_value(target: Dict[str, Any], key: str, value: Any) -> None:
    """
    Set ``target[key]`` unless the value is None or False.

    Values are stored as strings, booleans as ``true``.
    """
    if value is None or value is False:
        return
    if value is True:
        value = "true"
    target[key] = value if isinstance(value, str) else str(value)


with_header = with_value
with_query = with_value


def add_metadata_to_headers(metadata: Optional[Mapping[str, Any]], headers: Dict[str, str]) -> None:
    if metadata:
        for key, value in metadata.items():
            headers[f"{HeaderConstants.METADATA_PREFIX}{key}"] = str(value)


class StorageService:
    """
    Base class for storage service clients.

    Subclasses set ``service_type`` and ``api_version`` and build resource
    URIs with :meth:`generate_uri`. Operation options are passed as keyword
    arguments; the same dict is handed to :meth:`generate_uri` and
    :meth:`call` so the retry filter sees both location URIs.
    """

    service_type: ServiceType = ServiceType.BLOB
    api_version: str = STG_VERSION
    shared_key_signer_class = SharedKeySigner

    def __init__(
        self,
        client: "StorageClient",
        signer: Any = None,
        api_version: Optional[str] = None,
        user_agent_prefix: Optional[str] = None,
        request_callback: Optional[RequestCallback] = None,
    ):
        """
        Initialize service.

        Args:
            client: StorageClient holding account options and the HTTP client
            signer: Request signer; defaults to one derived from the client
            api_version: REST API version sent as x-ms-version
            user_agent_prefix: Prepended to the User-Agent header
            request_callback: Called with the headers of every request
        """
        self.client = client
        if api_version:
            self.api_version = api_version
        self.user_agent_prefix = user_agent_prefix or client.user_agent_prefix
        self.request_callback = request_callback or client.request_callback
        self.signer = signer or self._default_signer()
        self.filters: List[HttpFilter] = list(client.filters)

        options = client.options
        self.storage_service_host: Dict[str, Optional[str]] = {
            StorageLocation.PRIMARY.value: options.host(self.service_type),
            StorageLocation.SECONDARY.value: options.host(self.service_type, secondary=True),
        }
        logger.debug(
            f"{type(self).__name__} initialized for account {options.storage_account_name} "
            f"at {self.storage_service_host[StorageLocation.PRIMARY.value]}"
        )

    @property
    def account_name(self) -> Optional[str]:
        return self.client.options.storage_account_name

    def _default_signer(self) -> Any:
        options = self.client.options
        if options.signer is not None:
            return options.signer
        if options.storage_access_key:
            return self.shared_key_signer_class(options.storage_account_name, options.storage_access_key)
        if options.storage_sas_token:
            return SharedAccessSignatureSigner(
                self.api_version, options.storage_account_name or "", options.storage_sas_token
            )
        return AnonymousSigner()

    def with_filter(self, http_filter: HttpFilter) -> "StorageService":
        """Add a filter (e.g. a retry policy) to every request of this service."""
        self.filters.append(http_filter)
        return self

    def common_headers(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        options = options or {}
        user_agent = f"{self.user_agent_prefix}; {USER_AGENT}" if self.user_agent_prefix else USER_AGENT
        headers = {
            HeaderConstants.STORAGE_VERSION: self.api_version,
            HeaderConstants.USER_AGENT: user_agent,
        }
        if options.get("request_id"):
            headers[HeaderConstants.CLIENT_REQUEST_ID] = str(options["request_id"])
        if self.request_callback is not None:
            self.request_callback(headers)
        return headers

    def call(
        self,
        method: str,
        uri: str,
        body: Body = None,
        headers: Optional[Dict[str, str]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> HttpResponse:
        """
        Send a signed request through the filter pipeline.

        Args:
            method: HTTP method
            uri: Request URI from generate_uri
            body: Request body
            headers: Operation specific headers (override common ones)
            options: Operation options

        Returns:
            HttpResponse for a successful request

        Raises:
            HTTPError: If the service returns a non-success status
        """
        options = options if options is not None else {}
        request_headers = self.common_headers(options)
        request_headers.update(headers or {})

        if isinstance(body, str):
            body = body.encode("utf-8")
        lowered = {k.lower() for k in request_headers}
        if body is None:
            request_headers[HeaderConstants.CONTENT_LENGTH] = "0"
        else:
            request_headers[HeaderConstants.CONTENT_LENGTH] = str(len(body))
            if "content-md5" not in lowered:
                request_headers[HeaderConstants.CONTENT_MD5] = base64.b64encode(hashlib.md5(body).digest()).decode()
            if "content-type" not in lowered:
                request_headers[HeaderConstants.CONTENT_TYPE] = DEFAULT_REQUEST_CONTENT_TYPE

        request = HttpRequest(
            method,
            uri,
            body=body,
            headers=request_headers,
            http_client=self.client.http_client,
            signer=self.signer,
            options=options,
        )
        for http_filter in self.filters:
            request.with_filter(http_filter)

        if options.get("request_id"):
            set_request_id(str(options["request_id"]))
        try:
            return request.call()
        finally:
            clear_request_id()

    def generate_uri(
        self,
        path: str = "",
        query: Optional[Mapping[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Build the request URI for the location selected by the options.

        Both the primary and secondary URIs are stored in ``options`` under
        ``primary_uri`` and ``secondary_uri``.

        Args:
            path: Resource path relative to the account
            query: Query parameters
            options: Operation options (location_mode, request_location_mode,
                encode)

        Returns:
            Request URI

        Raises:
            InvalidOptionsError: If the location modes conflict or the
                service has no endpoint configured
        """
        options = options if options is not None else {}
        location = get_location(
            options.get("location_mode") or LocationMode.PRIMARY_ONLY,
            options.get("request_location_mode") or RequestLocationMode.PRIMARY_ONLY,
        )

        if options.get("encode"):
            path = quote(path.replace("\\", "/"), safe="/")

        for candidate in StorageLocation:
            host = self.storage_service_host[candidate.value]
            if host is None:
                options[f"{candidate.value}_uri"] = None
                continue
            resource = path
            if self.client.options.use_path_style_uri:
                account_path = self.get_account_path(candidate)
                resource = f"{account_path}/{path}" if path else account_path
            options[f"{candidate.value}_uri"] = self._build_uri(host, resource, query)

        uri = options[f"{location.value}_uri"]
        if uri is None:
            raise InvalidOptionsError(
                f"No {location.value} {self.service_type.value} endpoint is configured"
            )
        return uri

    def get_account_path(self, location: Union[StorageLocation, str]) -> str:
        account = self.account_name or ""
        if StorageLocation(location) == StorageLocation.PRIMARY:
            return account
        return f"{account}-secondary"

    def _build_uri(self, host: str, path: str, query: Optional[Mapping[str, Any]]) -> str:
        uri = f"{host.rstrip('/')}/{path.lstrip('/')}"
        encoded = self.encode_query(query or {})
        return f"{uri}?{encoded}" if encoded else uri

    def encode_query(self, query: Mapping[str, Any]) -> str:
        return urlencode({k: v for k, v in query.items() if v is not None}, quote_via=quote)

    def get_service_properties(self, **options: Any) -> StorageServiceProperties:
        """
        Get the analytics and CORS properties of the service.

        Args:
            **options: timeout, request_id, location_mode

        Returns:
            StorageServiceProperties
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        response = self.call("GET", self.service_properties_uri(query, options), None, {}, options)
        return service_properties_from_xml(response.body)

    def set_service_properties(self, service_properties: StorageServiceProperties, **options: Any) -> None:
        """
        Set the analytics and CORS properties of the service.

        Args:
            service_properties: Properties to store
            **options: timeout, request_id
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        body = service_properties_to_xml(service_properties)
        self.call("PUT", self.service_properties_uri(query, options), body, {}, options)

    def get_service_stats(self, **options: Any) -> StorageServiceStats:
        """
        Get replication stats. Only available against the secondary location.

        Args:
            **options: timeout, request_id

        Returns:
            StorageServiceStats
        """
        query: Dict[str, str] = {}
        with_query(query, "timeout", options.get("timeout"))

        options.update(
            location_mode=LocationMode.SECONDARY_ONLY,
            request_location_mode=RequestLocationMode.SECONDARY_ONLY,
        )
        response = self.call("GET", self.service_stats_uri(query, options), None, {}, options)
        return service_stats_from_xml(response.body)

    def service_properties_uri(self, query: Dict[str, str], options: Dict[str, Any]) -> str:
        query.update(restype="service", comp="properties")
        return self.generate_uri("", query, options)

    def service_stats_uri(self, query: Dict[str, str], options: Dict[str, Any]) -> str:
        query.update(restype="service", comp="stats")
        return self.generate_uri("", query, options)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "StorageService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
