"""
azstore: Azure Storage client library

Typed clients for the Azure Blob, File and Table storage REST APIs.
"""

__version__ = "0.1.0"

from .core.client import StorageClient
from .core.config_manager import AzStoreConfig, ConfigManager
from .core.exceptions import (
    HTTPError,
    InvalidConnectionStringError,
    InvalidOptionsError,
    SigningError,
    StorageError,
)
from .services.blob import BlobService
from .services.file import FileService
from .services.table import TableService

__all__ = [
    "AzStoreConfig",
    "BlobService",
    "ConfigManager",
    "FileService",
    "HTTPError",
    "InvalidConnectionStringError",
    "InvalidOptionsError",
    "SigningError",
    "StorageClient",
    "StorageError",
    "TableService",
    "__version__",
]
