"""Core module initialization."""

from .client import StorageClient
from .config_manager import AzStoreConfig, ClientOptions, ConfigManager
from .exceptions import HTTPError, InvalidConnectionStringError, InvalidOptionsError, SigningError, StorageError
from .http_client import HttpRequest, HttpResponse
from .logging_config import setup_logging
from .retry import ExponentialRetryPolicyFilter, LinearRetryPolicyFilter, RetryPolicyFilter
from .service import StorageService

__all__ = [
    "StorageClient",
    "AzStoreConfig",
    "ClientOptions",
    "ConfigManager",
    "HTTPError",
    "InvalidConnectionStringError",
    "InvalidOptionsError",
    "SigningError",
    "StorageError",
    "HttpRequest",
    "HttpResponse",
    "setup_logging",
    "ExponentialRetryPolicyFilter",
    "LinearRetryPolicyFilter",
    "RetryPolicyFilter",
    "StorageService",
]
