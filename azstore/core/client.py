"""
azstore Storage Client.

Holds the validated account options and the shared HTTP client, and
creates the Blob, File and Table service clients.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

import httpx

from azstore.core.config_manager import (
    AzStoreConfig,
    ClientOptions,
    HttpConfig,
    RetryPolicyType,
    load_env,
    resolve_client_options,
)
from azstore.core.constants import StorageServiceClientConstants
from azstore.core.http_client import HttpFilter
from azstore.core.retry import ExponentialRetryPolicyFilter, LinearRetryPolicyFilter

if TYPE_CHECKING:
    from azstore.services.blob.service import BlobService
    from azstore.services.file.service import FileService
    from azstore.services.table.service import TableService

logger = logging.getLogger(__name__)


class StorageClient:
    """
    Connection settings for one storage account.

    Example:
        >>> client = StorageClient.create_development()
        >>> blobs = client.blob_client()
        >>> blobs.create_container("photos")
    """

    def __init__(
        self,
        options: Union[str, Dict[str, Any], ClientOptions, None] = None,
        user_agent_prefix: Optional[str] = None,
        request_callback: Any = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        filters: Optional[List[HttpFilter]] = None,
    ):
        """
        Initialize client.

        Args:
            options: Client options dict, a connection string, resolved
                ClientOptions, or None to read the environment
            user_agent_prefix: Prepended to the User-Agent header
            request_callback: Called with the headers of every request
            http_client: httpx.Client to send requests with
            timeout: Request timeout in seconds for the default HTTP client
            filters: HTTP filters added to every service created by this client
        """
        if isinstance(options, ClientOptions):
            self.options = options
        else:
            self.options = resolve_client_options(options)
        self.user_agent_prefix = user_agent_prefix
        self.request_callback = request_callback
        self.filters: List[HttpFilter] = list(filters or [])
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.Client(timeout=timeout)

        logger.debug(
            f"Storage client created for account {self.options.storage_account_name} "
            f"(path style: {self.options.use_path_style_uri})"
        )

    @classmethod
    def create(cls, options: Union[str, Dict[str, Any], None] = None, **kwargs: Any) -> "StorageClient":
        """
        Create a client from options.

        Args:
            options: Client options or a connection string
            **kwargs: user_agent_prefix, request_callback, http_client,
                timeout, filters

        Returns:
            StorageClient

        Raises:
            InvalidOptionsError: If the options are not a supported set
        """
        return cls(options, **kwargs)

    @classmethod
    def create_development(cls, proxy_uri: Optional[str] = None, **kwargs: Any) -> "StorageClient":
        """Create a client for the local storage emulator."""
        return cls.create(
            {
                "use_development_storage": True,
                "development_storage_proxy_uri": proxy_uri or StorageServiceClientConstants.DEV_STORE_URI,
            },
            **kwargs,
        )

    @classmethod
    def create_from_env(cls, **kwargs: Any) -> "StorageClient":
        """Create a client from AZURE_STORAGE_* environment variables."""
        return cls.create(load_env(), **kwargs)

    @classmethod
    def create_from_connection_string(cls, connection_string: str, **kwargs: Any) -> "StorageClient":
        """Create a client from a storage connection string."""
        return cls.create(connection_string, **kwargs)

    @classmethod
    def from_config(cls, config: AzStoreConfig, **kwargs: Any) -> "StorageClient":
        """
        Create a client from a loaded AzStoreConfig.

        The HTTP timeout, User-Agent prefix and retry policy come from the
        ``http`` section.
        """
        http = config.http
        kwargs.setdefault("timeout", http.timeout)
        kwargs.setdefault("user_agent_prefix", http.user_agent_prefix)
        retry_filter = build_retry_filter(http)
        if retry_filter is not None:
            kwargs.setdefault("filters", [retry_filter])
        return cls(config.client_options(), **kwargs)

    @property
    def storage_account_name(self) -> Optional[str]:
        return self.options.storage_account_name

    @property
    def storage_access_key(self) -> Optional[str]:
        return self.options.storage_access_key

    def blob_client(self, **kwargs: Any) -> "BlobService":
        from azstore.services.blob.service import BlobService
        return BlobService(self, **kwargs)

    def file_client(self, **kwargs: Any) -> "FileService":
        from azstore.services.file.service import FileService
        return FileService(self, **kwargs)

    def table_client(self, **kwargs: Any) -> "TableService":
        from azstore.services.table.service import TableService
        return TableService(self, **kwargs)

    def close(self) -> None:
        if self._owns_http_client:
            self.http_client.close()

    def __enter__(self) -> "StorageClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def build_retry_filter(http: HttpConfig) -> Optional[HttpFilter]:
    """Create the retry filter selected by the http configuration."""
    policy = RetryPolicyType(http.retry_policy)
    if policy == RetryPolicyType.LINEAR:
        return LinearRetryPolicyFilter(http.retry_count, http.retry_interval)
    if policy == RetryPolicyType.EXPONENTIAL:
        return ExponentialRetryPolicyFilter(http.retry_count, http.retry_interval)
    return None
