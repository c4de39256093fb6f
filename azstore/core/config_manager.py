"""
Configuration management for azstore.

Resolves storage client options from keyword arguments, connection
strings, environment variables and YAML/JSON configuration files, and
validates them against the supported option sets.
"""

import os
import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from enum import Enum
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from azstore.auth.signers import AnonymousSigner
from azstore.core.constants import (
    CONNECTION_STRING_MAPPING,
    DEFAULT_DNS_SUFFIX,
    DEFAULT_PROTOCOL,
    ENV_OPTION_MAPPING,
    ServiceType,
    StorageServiceClientConstants,
)
from azstore.core.exceptions import InvalidConnectionStringError, InvalidOptionsError
from azstore.core.logging_config import redact

logger = logging.getLogger(__name__)

HOST_OPTIONS = ["storage_blob_host", "storage_table_host", "storage_file_host", "storage_queue_host"]

VALID_OPTIONS = [
    "use_development_storage",
    "development_storage_proxy_uri",
    "storage_account_name",
    "storage_access_key",
    "storage_connection_string",
    "storage_sas_token",
    "storage_blob_host",
    "storage_table_host",
    "storage_queue_host",
    "storage_file_host",
    "storage_dns_suffix",
    "default_endpoints_protocol",
    "use_path_style_uri",
    "signer",
]

_BASE64 = re.compile(r"^(?:[A-Za-z0-9+/]{4})*(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=|[A-Za-z0-9+/]{4})$")
_SCHEME = re.compile(r"^https?", re.IGNORECASE)


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RetryPolicyType(str, Enum):
    """Retry filters that can be enabled from configuration."""
    NONE = "none"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


def _is_true(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.lower() == "true")


def _is_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    if not re.match(r"^https?://", value, re.IGNORECASE):
        value = "http://" + value
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _is_signer(value: Any) -> bool:
    return callable(getattr(value, "sign_request", None))


OPTION_VALIDATORS: Dict[str, Callable[[Any], bool]] = {
    "use_development_storage": _is_true,
    "development_storage_proxy_uri": _is_url,
    "storage_account_name": lambda v: isinstance(v, str),
    "storage_access_key": lambda v: isinstance(v, str) and bool(_BASE64.match(v)),
    "storage_connection_string": lambda v: isinstance(v, str) and bool(v),
    "storage_sas_token": lambda v: isinstance(v, str),
    "storage_blob_host": _is_url,
    "storage_table_host": _is_url,
    "storage_queue_host": _is_url,
    "storage_file_host": _is_url,
    "storage_dns_suffix": _is_url,
    "default_endpoints_protocol": lambda v: isinstance(v, str) and v.lower() in ("http", "https"),
    "use_path_style_uri": _is_true,
    "signer": _is_signer,
}


class ClientOptions(BaseModel):
    """Validated connection settings for a storage account."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    use_development_storage: bool = False
    development_storage_proxy_uri: Optional[str] = None
    storage_account_name: Optional[str] = None
    storage_access_key: Optional[str] = None
    storage_sas_token: Optional[str] = None
    storage_blob_host: Optional[str] = None
    storage_table_host: Optional[str] = None
    storage_queue_host: Optional[str] = None
    storage_file_host: Optional[str] = None
    storage_dns_suffix: Optional[str] = None
    default_endpoints_protocol: Optional[str] = None
    use_path_style_uri: bool = False
    signer: Optional[Any] = None

    def host(self, service: Union[ServiceType, str], secondary: bool = False) -> Optional[str]:
        """
        Endpoint for a service.

        Secondary endpoints insert "-secondary" after the account name in
        the host name. Path-style clients keep the same host and switch the
        account path instead.

        Args:
            service: Service kind
            secondary: Return the secondary replica endpoint

        Returns:
            Endpoint URL, or None if the service is not configured
        """
        service = ServiceType(service)
        primary = getattr(self, f"storage_{service.value}_host")
        if not secondary or primary is None or self.use_path_style_uri:
            return primary

        parsed = urlparse(primary)
        labels = (parsed.hostname or "").split(".")
        if self.storage_account_name and labels and labels[0] == self.storage_account_name:
            labels[0] = f"{self.storage_account_name}-secondary"
            netloc = ".".join(labels)
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            return parsed._replace(netloc=netloc).geturl()
        return primary


def parse_connection_string(connection_string: str) -> Dict[str, str]:
    """
    Parse an Azure Storage connection string into option names.

    Args:
        connection_string: "Key=Value;Key=Value" string

    Returns:
        Dict of option name -> value

    Raises:
        InvalidConnectionStringError: On empty strings, bad segments,
            unknown, empty or duplicate keys
    """
    options: Dict[str, str] = {}
    seen: List[str] = []

    for segment in connection_string.split(";"):
        if not segment:
            continue
        index = segment.find("=")
        if index <= 0:
            raise InvalidConnectionStringError("Connection string is invalid.")
        key, value = segment[:index], segment[index + 1:]
        if key not in CONNECTION_STRING_MAPPING:
            raise InvalidConnectionStringError(f'Connection string has a bad key: "{key}".')
        if not value:
            raise InvalidConnectionStringError(f'Connection string has an empty value for key: "{key}".')
        if key in seen:
            raise InvalidConnectionStringError(f'Connection string has a duplicate key: "{key}".')
        seen.append(key)
        options[CONNECTION_STRING_MAPPING[key]] = value

    if not options:
        raise InvalidConnectionStringError("Connection string is invalid.")

    return options


def load_env() -> Dict[str, str]:
    """Read client options from AZURE_STORAGE_* environment variables."""
    connection_string = os.getenv(ENV_OPTION_MAPPING["storage_connection_string"])
    if connection_string:
        return parse_connection_string(connection_string)

    options = {}
    for option, env_var in ENV_OPTION_MAPPING.items():
        value = os.getenv(env_var)
        if value:
            options[option] = value
    return options


def validated_options(
    opts: Dict[str, Any],
    required: Optional[List[str]] = None,
    at_least_one: Optional[List[str]] = None,
    only_one: Optional[List[str]] = None,
    optional: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Check options against one supported option set.

    Raises:
        InvalidOptionsError: If the options do not form this set
    """
    required = required or []
    at_least_one = at_least_one or []
    only_one = only_one or []
    optional = optional or []

    if any(value is None for value in opts.values()):
        raise InvalidOptionsError("None is not allowed for option values")
    if any(key not in opts for key in required):
        raise InvalidOptionsError(f"Not all required keys are provided: {required}")
    if only_one and sum(1 for key in only_one if key in opts) != 1:
        raise InvalidOptionsError(f"Only one of {only_one} is required")
    if at_least_one and not any(key in opts for key in at_least_one):
        raise InvalidOptionsError(f"At least one of {at_least_one} is required")

    valid = required + at_least_one + only_one + optional
    results = {}
    for key, value in opts.items():
        if valid and key not in valid:
            raise InvalidOptionsError(f"{key} is not included in valid options")
        if key not in OPTION_VALIDATORS or not OPTION_VALIDATORS[key](value):
            raise InvalidOptionsError(f"{key} is invalid")
        results[key] = value
    return results


def normalize_hosts(options: Dict[str, Any]) -> None:
    """Prefix explicit hosts with default_endpoints_protocol when it is set."""
    protocol = options.get("default_endpoints_protocol")
    if not protocol:
        return
    for key in HOST_OPTIONS:
        if options.get(key):
            if _SCHEME.match(options[key]):
                raise InvalidOptionsError(
                    "Explicit host cannot contain scheme if default_endpoints_protocol is set."
                )
            options[key] = f"{protocol}://{options[key]}"


def filter_options(opts: Dict[str, Any]) -> Dict[str, Any]:
    """
    Resolve raw options to a complete option set.

    The first matching set wins: development storage, connection string,
    account name with a single credential, account name and key with explicit
    hosts, explicit hosts only (anonymous or SAS), and account name with a
    single credential plus explicit hosts.

    Raises:
        InvalidOptionsError: If no option set matches
    """
    try:
        results = validated_options(
            opts, required=["use_development_storage"], optional=["development_storage_proxy_uri"]
        )
        proxy_uri = results.setdefault("development_storage_proxy_uri", StorageServiceClientConstants.DEV_STORE_URI)
        results.update(
            use_development_storage=True,
            storage_account_name=StorageServiceClientConstants.DEV_STORE_NAME,
            storage_access_key=StorageServiceClientConstants.DEV_STORE_KEY,
            storage_blob_host=f"{proxy_uri}:{StorageServiceClientConstants.DEV_STORE_BLOB_HOST_PORT}",
            storage_table_host=f"{proxy_uri}:{StorageServiceClientConstants.DEV_STORE_TABLE_HOST_PORT}",
            storage_queue_host=f"{proxy_uri}:{StorageServiceClientConstants.DEV_STORE_QUEUE_HOST_PORT}",
            storage_file_host=f"{proxy_uri}:{StorageServiceClientConstants.DEV_STORE_FILE_HOST_PORT}",
            use_path_style_uri=True,
        )
        return results
    except InvalidOptionsError:
        pass

    try:
        results = validated_options(
            opts, required=["storage_connection_string"], optional=["use_path_style_uri"]
        )
        parsed = parse_connection_string(results.pop("storage_connection_string"))
        if "use_path_style_uri" in results:
            parsed["use_path_style_uri"] = results["use_path_style_uri"]
        return filter_options(parsed)
    except InvalidOptionsError:
        pass

    try:
        results = validated_options(
            opts,
            required=["storage_account_name"],
            only_one=["storage_access_key", "storage_sas_token", "signer"],
            optional=["default_endpoints_protocol", "storage_dns_suffix"],
        )
        protocol = results.setdefault("default_endpoints_protocol", DEFAULT_PROTOCOL)
        suffix = results.setdefault("storage_dns_suffix", DEFAULT_DNS_SUFFIX)
        account = results["storage_account_name"]
        for service in ServiceType:
            results[f"storage_{service.value}_host"] = f"{protocol}://{account}.{service.value}.{suffix}"
        results["use_path_style_uri"] = False
        return results
    except InvalidOptionsError:
        pass

    try:
        results = validated_options(
            opts,
            required=["storage_account_name", "storage_access_key"],
            at_least_one=HOST_OPTIONS,
            optional=["use_path_style_uri", "default_endpoints_protocol"],
        )
        results["use_path_style_uri"] = "use_path_style_uri" in results
        normalize_hosts(results)
        return results
    except InvalidOptionsError:
        pass

    try:
        results = validated_options(
            opts,
            at_least_one=HOST_OPTIONS,
            optional=["use_path_style_uri", "default_endpoints_protocol", "storage_sas_token"],
        )
        results["use_path_style_uri"] = "use_path_style_uri" in results
        normalize_hosts(results)
        if "storage_sas_token" not in results:
            results["signer"] = AnonymousSigner()
        return results
    except InvalidOptionsError:
        pass

    try:
        results = validated_options(
            opts,
            required=["storage_account_name"],
            only_one=["storage_access_key", "storage_sas_token"],
            at_least_one=HOST_OPTIONS,
            optional=["use_path_style_uri", "default_endpoints_protocol"],
        )
        results["use_path_style_uri"] = "use_path_style_uri" in results
        normalize_hosts(results)
        return results
    except InvalidOptionsError:
        pass

    safe = {
        k: "***REDACTED***" if k in ("storage_access_key", "storage_sas_token")
        else redact(v) if isinstance(v, str) else v
        for k, v in opts.items()
    }
    raise InvalidOptionsError(f"options provided are not valid set: {safe}")


def resolve_client_options(options: Union[str, Dict[str, Any], None] = None) -> ClientOptions:
    """
    Build ClientOptions from a connection string, an option dict or the
    environment.

    Args:
        options: Connection string, dict of options, or None for environment

    Returns:
        Validated ClientOptions

    Raises:
        InvalidOptionsError: If the options are not a supported set
        InvalidConnectionStringError: If the connection string is malformed
    """
    if isinstance(options, str):
        opts: Dict[str, Any] = parse_connection_string(options)
    else:
        opts = dict(options or {})

    if not opts:
        opts = load_env()

    unknown = [key for key in opts if key not in VALID_OPTIONS]
    if unknown:
        raise InvalidOptionsError(f"Unknown options: {unknown}")

    results = filter_options(opts)
    results["use_development_storage"] = _is_true(results.get("use_development_storage", False))
    results["use_path_style_uri"] = _is_true(results.get("use_path_style_uri", False))
    return ClientOptions(**results)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.WARNING
    format: str = "text"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'azstore.core.retry': 'DEBUG'}"
    )


class HttpConfig(BaseModel):
    """HTTP transport and retry configuration."""
    timeout: float = Field(default=30.0, gt=0.0, description="Request timeout in seconds")
    retry_policy: RetryPolicyType = RetryPolicyType.NONE
    retry_count: Optional[int] = Field(default=None, ge=0)
    retry_interval: Optional[float] = Field(default=None, ge=0.0)
    user_agent_prefix: Optional[str] = None


class AzStoreConfig(BaseModel):
    """Main azstore configuration schema."""

    storage: Dict[str, Any] = Field(
        default_factory=dict,
        description="Client options or a storage_connection_string"
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    http: HttpConfig = Field(default_factory=HttpConfig)

    @field_validator("storage")
    @classmethod
    def validate_storage_keys(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """Reject unknown storage option names."""
        unknown = [key for key in v if key not in VALID_OPTIONS]
        if unknown:
            raise ValueError(f"Unknown storage options: {unknown}")
        return v

    model_config = ConfigDict(use_enum_values=True)

    def client_options(self) -> ClientOptions:
        return resolve_client_options(self.storage)


class ConfigManager:
    """
    Manages azstore configuration loading and validation.

    Configuration precedence (highest to lowest):
    1. Explicit overrides (e.g. CLI arguments)
    2. Environment variables (AZSTORE_* and AZURE_STORAGE_CONNECTION_STRING)
    3. Configuration file (YAML/JSON)
    4. Defaults
    """

    def __init__(self):
        self._config: Optional[AzStoreConfig] = None
        self._config_file: Optional[Path] = None

    def load(
        self,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> AzStoreConfig:
        """
        Load and validate configuration from multiple sources.

        Args:
            config_file: Path to configuration file (YAML or JSON)
            overrides: Dictionary of explicit overrides

        Returns:
            Validated AzStoreConfig instance

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
        """
        logger.debug("Loading azstore configuration")

        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = self._load_from_file(config_file)
            self._config_file = Path(config_file)
            logger.debug(f"Loaded configuration from file: {config_file}")

        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.debug(f"Applied {len(env_config)} environment variable overrides")

        if overrides:
            config_dict = self._merge_configs(config_dict, overrides)
            logger.debug(f"Applied {len(overrides)} explicit overrides")

        try:
            self._config = AzStoreConfig(**config_dict)
            self._log_configuration()
            return self._config
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        if connection_string := os.getenv(ENV_OPTION_MAPPING["storage_connection_string"]):
            config.setdefault("storage", {})["storage_connection_string"] = connection_string

        if log_level := os.getenv("AZSTORE_LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_file := os.getenv("AZSTORE_LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file

        if timeout := os.getenv("AZSTORE_HTTP_TIMEOUT"):
            config.setdefault("http", {})["timeout"] = float(timeout)
        if retry_policy := os.getenv("AZSTORE_RETRY_POLICY"):
            config.setdefault("http", {})["retry_policy"] = retry_policy.lower()

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key == "storage" and value:
                # Storage options form one option set and are replaced whole
                result[key] = dict(value)
            elif key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _log_configuration(self) -> None:
        """Log the loaded configuration (with secrets redacted)."""
        if not self._config:
            return

        config_dict = self._config.model_dump()

        storage = config_dict.get("storage", {})
        for key in ("storage_access_key", "storage_sas_token", "storage_connection_string"):
            if storage.get(key):
                storage[key] = "***REDACTED***"
        storage.pop("signer", None)

        logger.debug(f"Active configuration: {json.dumps(config_dict, indent=2, default=str)}")

    def get_config(self) -> AzStoreConfig:
        """
        Get the loaded configuration.

        Returns:
            AzStoreConfig instance

        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> AzStoreConfig:
        """
        Reload configuration from the same sources.

        Returns:
            Reloaded AzStoreConfig instance
        """
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file)
