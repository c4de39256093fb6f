"""
Shared constants for azstore.

Service versions, location modes, emulator settings and the environment
variable / connection string key tables used by the configuration layer.
"""

import platform
from enum import Enum

from azstore import __version__


STG_VERSION = "2018-11-09"
BLOB_STG_VERSION = "2018-11-09"
FILE_STG_VERSION = "2016-05-31"
TABLE_STG_VERSION = "2016-05-31"

USER_AGENT = (
    f"Azure-Storage/{__version__} "
    f"(Python {platform.python_version()}; {platform.system()} {platform.release()})"
)

KB = 1024
MB = 1024 * 1024
GB = 1024 * 1024 * 1024

HTTP = "http"
HTTPS = "https"

DEFAULT_DNS_SUFFIX = "core.windows.net"
DEFAULT_PROTOCOL = HTTPS


class ServiceType(str, Enum):
    """Storage service kinds."""
    BLOB = "blob"
    QUEUE = "queue"
    TABLE = "table"
    FILE = "file"


class StorageLocation(str, Enum):
    """Replica a request is sent to."""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class LocationMode(str, Enum):
    """Client preference for which replica serves requests."""
    PRIMARY_ONLY = "primary_only"
    PRIMARY_THEN_SECONDARY = "primary_then_secondary"
    SECONDARY_ONLY = "secondary_only"
    SECONDARY_THEN_PRIMARY = "secondary_then_primary"


class RequestLocationMode(str, Enum):
    """Replicas an individual REST operation may run against."""
    PRIMARY_ONLY = "primary_only"
    SECONDARY_ONLY = "secondary_only"
    PRIMARY_OR_SECONDARY = "primary_or_secondary"


class StorageServiceClientConstants:
    """Development storage (emulator) settings."""
    DEV_STORE_NAME = "devstoreaccount1"
    DEV_STORE_KEY = (
        "Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq/"
        "K1SZFPTOtr/KBHBeksoGMGw=="
    )
    DEV_STORE_URI = "http://127.0.0.1"
    DEV_STORE_BLOB_HOST_PORT = 10000
    DEV_STORE_QUEUE_HOST_PORT = 10001
    DEV_STORE_TABLE_HOST_PORT = 10002
    DEV_STORE_FILE_HOST_PORT = 10003


# Option name -> environment variable read when no options are supplied
ENV_OPTION_MAPPING = {
    "use_development_storage": "EMULATED",
    "storage_account_name": "AZURE_STORAGE_ACCOUNT",
    "storage_access_key": "AZURE_STORAGE_ACCESS_KEY",
    "storage_connection_string": "AZURE_STORAGE_CONNECTION_STRING",
    "storage_blob_host": "AZURE_STORAGE_BLOB_HOST",
    "storage_table_host": "AZURE_STORAGE_TABLE_HOST",
    "storage_queue_host": "AZURE_STORAGE_QUEUE_HOST",
    "storage_file_host": "AZURE_STORAGE_FILE_HOST",
    "storage_sas_token": "AZURE_STORAGE_SAS_TOKEN",
    "storage_dns_suffix": "AZURE_STORAGE_DNS_SUFFIX",
}

# Connection string key -> option name
CONNECTION_STRING_MAPPING = {
    "UseDevelopmentStorage": "use_development_storage",
    "DevelopmentStorageProxyUri": "development_storage_proxy_uri",
    "DefaultEndpointsProtocol": "default_endpoints_protocol",
    "AccountName": "storage_account_name",
    "AccountKey": "storage_access_key",
    "BlobEndpoint": "storage_blob_host",
    "TableEndpoint": "storage_table_host",
    "QueueEndpoint": "storage_queue_host",
    "FileEndpoint": "storage_file_host",
    "SharedAccessSignature": "storage_sas_token",
    "EndpointSuffix": "storage_dns_suffix",
}


class AclConstants:
    """Element names for signed identifier XML."""
    ACCESS_POLICY = "AccessPolicy"
    EXPIRY = "Expiry"
    ID = "Id"
    PERMISSION = "Permission"
    SIGNED_IDENTIFIER_ELEMENT = "SignedIdentifier"
    SIGNED_IDENTIFIERS_ELEMENT = "SignedIdentifiers"
    START = "Start"


class HeaderConstants:
    """Frequently used request / response header names."""
    STORAGE_VERSION = "x-ms-version"
    CLIENT_REQUEST_ID = "x-ms-client-request-id"
    DATE = "x-ms-date"
    USER_AGENT = "User-Agent"
    CONTENT_LENGTH = "Content-Length"
    CONTENT_TYPE = "Content-Type"
    CONTENT_MD5 = "Content-MD5"
    ETAG = "ETag"
    LAST_MODIFIED = "Last-Modified"
    AUTHORIZATION = "Authorization"
    IF_MATCH = "If-Match"
    IF_NONE_MATCH = "If-None-Match"
    IF_MODIFIED_SINCE = "If-Modified-Since"
    IF_UNMODIFIED_SINCE = "If-Unmodified-Since"
    LEASE_ID = "x-ms-lease-id"
    LEASE_ACTION = "x-ms-lease-action"
    PUBLIC_ACCESS = "x-ms-blob-public-access"
    REQUEST_ID = "x-ms-request-id"
    METADATA_PREFIX = "x-ms-meta-"
    DEFAULT_CONTENT_TYPE = "application/octet-stream"
    DEFAULT_TEXT_CONTENT_TYPE = "text/plain; charset=UTF-8"


class TableConstants:
    """OData and continuation markers used by the Table service."""
    CHANGESET_DELIMITER = "--changesetresponse_"
    BATCH_DELIMITER = "--batchresponse_"
    CONTINUATION_NEXT_ROW_KEY = "x-ms-continuation-nextrowkey"
    CONTINUATION_NEXT_PARTITION_KEY = "x-ms-continuation-nextpartitionkey"
    CONTINUATION_NEXT_TABLE_NAME = "x-ms-continuation-nexttablename"
    NEXT_ROW_KEY = "NextRowKey"
    NEXT_PARTITION_KEY = "NextPartitionKey"
    NEXT_TABLE_NAME = "NextTableName"
    ODATA_PREFIX = "odata."
    ODATA_TYPE_SUFFIX = "@odata.type"
    ODATA_ETAG = "odata.etag"
    DEFAULT_DATA_SERVICE_VERSION = "3.0;NetFx"
    TABLE_NAME = "TableName"
    TABLE_SERVICE_TABLE_NAME = "Tables"
    PARTITION_KEY = "PartitionKey"
    ROW_KEY = "RowKey"
    TIMESTAMP = "Timestamp"
    ACL_VERSION = "2012-02-12"
    BATCH_MAX_OPERATIONS = 100


class ODataAccept:
    """Accept header values controlling OData metadata verbosity."""
    NO_META = "application/json;odata=nometadata"
    MIN_META = "application/json;odata=minimalmetadata"
    FULL_META = "application/json;odata=fullmetadata"

    @classmethod
    def for_name(cls, name: str) -> str:
        mapping = {
            "no_meta": cls.NO_META,
            "min_meta": cls.MIN_META,
            "full_meta": cls.FULL_META,
        }
        if name not in mapping:
            raise ValueError(f"Unknown OData metadata level: {name}")
        return mapping[name]


class BlobConstants:
    """Size limits for blob uploads."""
    DEFAULT_SINGLE_BLOB_PUT_THRESHOLD_IN_BYTES = 128 * MB
    MAX_SINGLE_UPLOAD_BLOB_SIZE_IN_BYTES = 256 * MB
    DEFAULT_WRITE_BLOCK_SIZE_IN_BYTES = 4 * MB
    MAX_BLOCK_SIZE = 100 * MB
    MAX_BLOCK_COUNT = 50000
    MAX_BLOB_SIZE = MAX_BLOCK_COUNT * MAX_BLOCK_SIZE
    MAX_APPEND_BLOCK_SIZE = 4 * MB
    PAGE_SIZE = 512
    BLOCK_ID_PADDING = 6


class FileConstants:
    """Size limits for file uploads."""
    DEFAULT_WRITE_SIZE_IN_BYTES = 4 * MB
    MAX_SHARE_QUOTA_GB = 5120
