"""
Tests for client option resolution and ConfigManager.
"""

import json

import pytest
import yaml
from pydantic import ValidationError

from azstore.auth.signers import AnonymousSigner
from azstore.core.config_manager import (
    AzStoreConfig,
    ConfigManager,
    LogLevel,
    RetryPolicyType,
    parse_connection_string,
    resolve_client_options,
)
from azstore.core.constants import ServiceType, StorageServiceClientConstants
from azstore.core.exceptions import InvalidConnectionStringError, InvalidOptionsError

ACCOUNT_KEY = "YWNjZXNzLWtleQ=="


class TestParseConnectionString:
    """Test suite for connection string parsing."""

    def test_parses_account_settings(self):
        """Test known keys are mapped to option names."""
        options = parse_connection_string(
            f"DefaultEndpointsProtocol=https;AccountName=myaccount;AccountKey={ACCOUNT_KEY};"
            "EndpointSuffix=core.windows.net"
        )

        assert options == {
            "default_endpoints_protocol": "https",
            "storage_account_name": "myaccount",
            "storage_access_key": ACCOUNT_KEY,
            "storage_dns_suffix": "core.windows.net",
        }

    def test_value_may_contain_equals(self):
        """Test only the first '=' separates key and value."""
        options = parse_connection_string("SharedAccessSignature=sv=2018-11-09&sig=abc%3D;AccountName=a")

        assert options["storage_sas_token"] == "sv=2018-11-09&sig=abc%3D"

    def test_unknown_key_rejected(self):
        """Test an unknown key raises."""
        with pytest.raises(InvalidConnectionStringError, match="bad key"):
            parse_connection_string("AccountName=a;Colour=blue")

    def test_duplicate_key_rejected(self):
        """Test a repeated key raises."""
        with pytest.raises(InvalidConnectionStringError, match="duplicate key"):
            parse_connection_string("AccountName=a;AccountName=b")

    def test_empty_value_rejected(self):
        """Test a key without a value raises."""
        with pytest.raises(InvalidConnectionStringError, match="empty value"):
            parse_connection_string("AccountName=;AccountKey=abc")

    def test_missing_separator_rejected(self):
        """Test a segment without '=' raises."""
        with pytest.raises(InvalidConnectionStringError):
            parse_connection_string("AccountName")

    def test_empty_string_rejected(self):
        """Test an empty connection string raises."""
        with pytest.raises(InvalidConnectionStringError):
            parse_connection_string(";;")


class TestResolveClientOptions:
    """Test suite for option set resolution."""

    def test_account_name_and_key(self):
        """Test default endpoints are derived from the account name."""
        options = resolve_client_options({"storage_account_name": "myaccount", "storage_access_key": ACCOUNT_KEY})

        assert options.storage_blob_host == "https://myaccount.blob.core.windows.net"
        assert options.storage_table_host == "https://myaccount.table.core.windows.net"
        assert options.storage_file_host == "https://myaccount.file.core.windows.net"
        assert options.use_path_style_uri is False

    def test_custom_protocol_and_suffix(self):
        """Test protocol and DNS suffix are applied to derived endpoints."""
        options = resolve_client_options({
            "storage_account_name": "myaccount",
            "storage_access_key": ACCOUNT_KEY,
            "default_endpoints_protocol": "http",
            "storage_dns_suffix": "core.chinacloudapi.cn",
        })

        assert options.storage_blob_host == "http://myaccount.blob.core.chinacloudapi.cn"

    def test_development_storage(self):
        """Test the emulator account and ports are used."""
        options = resolve_client_options({"use_development_storage": True})

        assert options.storage_account_name == StorageServiceClientConstants.DEV_STORE_NAME
        assert options.storage_access_key == StorageServiceClientConstants.DEV_STORE_KEY
        assert options.storage_blob_host == "http://127.0.0.1:10000"
        assert options.storage_table_host == "http://127.0.0.1:10002"
        assert options.storage_file_host == "http://127.0.0.1:10003"
        assert options.use_path_style_uri is True

    def test_development_storage_from_connection_string(self):
        """Test UseDevelopmentStorage with a proxy URI."""
        options = resolve_client_options(
            "UseDevelopmentStorage=true;DevelopmentStorageProxyUri=http://192.168.0.2"
        )

        assert options.use_development_storage is True
        assert options.storage_blob_host == "http://192.168.0.2:10000"

    def test_connection_string(self):
        """Test a connection string resolves like the equivalent options."""
        options = resolve_client_options(f"AccountName=myaccount;AccountKey={ACCOUNT_KEY}")

        assert options.storage_account_name == "myaccount"
        assert options.storage_file_host == "https://myaccount.file.core.windows.net"

    def test_connection_string_option(self):
        """Test storage_connection_string inside an option dict."""
        options = resolve_client_options({
            "storage_connection_string": f"AccountName=myaccount;AccountKey={ACCOUNT_KEY}"
        })

        assert options.storage_blob_host == "https://myaccount.blob.core.windows.net"

    def test_explicit_hosts_with_protocol(self):
        """Test hosts are prefixed with default_endpoints_protocol."""
        options = resolve_client_options({
            "storage_account_name": "myaccount",
            "storage_access_key": ACCOUNT_KEY,
            "storage_blob_host": "myaccount.blob.example.com",
            "default_endpoints_protocol": "https",
        })

        assert options.storage_blob_host == "https://myaccount.blob.example.com"

    def test_explicit_host_with_scheme_and_protocol_rejected(self):
        """Test a host may not carry a scheme when a protocol is given."""
        with pytest.raises(InvalidOptionsError):
            resolve_client_options({
                "storage_account_name": "myaccount",
                "storage_access_key": ACCOUNT_KEY,
                "storage_blob_host": "https://myaccount.blob.example.com",
                "default_endpoints_protocol": "https",
            })

    def test_anonymous_hosts(self):
        """Test hosts without credentials get an anonymous signer."""
        options = resolve_client_options({"storage_blob_host": "https://public.blob.core.windows.net"})

        assert isinstance(options.signer, AnonymousSigner)
        assert options.storage_account_name is None

    def test_sas_token(self):
        """Test account name with a SAS token."""
        options = resolve_client_options({"storage_account_name": "myaccount", "storage_sas_token": "sv=x&sig=y"})

        assert options.storage_sas_token == "sv=x&sig=y"
        assert options.storage_access_key is None

    def test_key_and_sas_token_rejected(self):
        """Test only one credential may be supplied."""
        with pytest.raises(InvalidOptionsError):
            resolve_client_options({
                "storage_account_name": "myaccount",
                "storage_access_key": ACCOUNT_KEY,
                "storage_sas_token": "sv=x&sig=y",
            })

    def test_invalid_key_rejected(self):
        """Test a non base64 access key is rejected."""
        with pytest.raises(InvalidOptionsError):
            resolve_client_options({"storage_account_name": "myaccount", "storage_access_key": "not base64!"})

    def test_unknown_option_rejected(self):
        """Test unknown option names are rejected."""
        with pytest.raises(InvalidOptionsError, match="Unknown options"):
            resolve_client_options({"storage_account_name": "myaccount", "colour": "blue"})

    def test_none_value_rejected(self):
        """Test None values are rejected."""
        with pytest.raises(InvalidOptionsError):
            resolve_client_options({"storage_account_name": "myaccount", "storage_access_key": None})

    def test_error_redacts_connection_string_key(self):
        """Test secrets inside a connection string stay out of error messages."""
        with pytest.raises(InvalidOptionsError) as exc_info:
            resolve_client_options({
                "storage_connection_string": f"AccountName=a;AccountKey={ACCOUNT_KEY}",
                "storage_account_name": "b",
            })

        assert ACCOUNT_KEY not in str(exc_info.value)
        assert "AccountKey=***REDACTED***" in str(exc_info.value)

    def test_environment(self, monkeypatch):
        """Test options are read from AZURE_STORAGE_* variables."""
        monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
        monkeypatch.setenv("AZURE_STORAGE_ACCOUNT", "envaccount")
        monkeypatch.setenv("AZURE_STORAGE_ACCESS_KEY", ACCOUNT_KEY)

        options = resolve_client_options()

        assert options.storage_account_name == "envaccount"
        assert options.storage_blob_host == "https://envaccount.blob.core.windows.net"


class TestSecondaryHost:
    """Test suite for secondary endpoint derivation."""

    def test_secondary_host(self):
        """Test '-secondary' is appended to the account label."""
        options = resolve_client_options({"storage_account_name": "myaccount", "storage_access_key": ACCOUNT_KEY})

        assert options.host(ServiceType.BLOB, secondary=True) == "https://myaccount-secondary.blob.core.windows.net"

    def test_path_style_secondary_keeps_host(self):
        """Test path-style clients use the same host for both locations."""
        options = resolve_client_options({"use_development_storage": True})

        assert options.host(ServiceType.BLOB, secondary=True) == "http://127.0.0.1:10000"


class TestConfigManager:
    """Test suite for ConfigManager."""

    def test_load_defaults(self, monkeypatch):
        """Test loading default configuration."""
        monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
        monkeypatch.delenv("AZSTORE_LOG_LEVEL", raising=False)
        monkeypatch.delenv("AZSTORE_HTTP_TIMEOUT", raising=False)
        monkeypatch.delenv("AZSTORE_RETRY_POLICY", raising=False)
        monkeypatch.delenv("AZSTORE_LOG_FILE", raising=False)

        config = ConfigManager().load()

        assert config.storage == {}
        assert config.logging.level == LogLevel.WARNING
        assert config.http.timeout == 30.0
        assert config.http.retry_policy == RetryPolicyType.NONE.value

    def test_load_from_yaml_file(self, tmp_path, monkeypatch):
        """Test loading configuration from YAML file."""
        monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
        config_file = tmp_path / "azstore.yaml"
        config_file.write_text(yaml.dump({
            "storage": {"storage_account_name": "myaccount", "storage_access_key": ACCOUNT_KEY},
            "logging": {"level": "DEBUG"},
            "http": {"retry_policy": "exponential", "retry_count": 2},
        }))

        config = ConfigManager().load(config_file=str(config_file))

        assert config.logging.level == LogLevel.DEBUG
        assert config.http.retry_policy == "exponential"
        assert config.client_options().storage_blob_host == "https://myaccount.blob.core.windows.net"

    def test_load_from_json_file(self, tmp_path, monkeypatch):
        """Test loading configuration from JSON file."""
        monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
        config_file = tmp_path / "azstore.json"
        config_file.write_text(json.dumps({"http": {"timeout": 5}}))

        config = ConfigManager().load(config_file=str(config_file))

        assert config.http.timeout == 5.0

    def test_missing_file(self):
        """Test a missing configuration file raises."""
        with pytest.raises(FileNotFoundError):
            ConfigManager().load(config_file="/nonexistent/azstore.yaml")

    def test_unsupported_format(self, tmp_path):
        """Test unknown file extensions are rejected."""
        config_file = tmp_path / "azstore.ini"
        config_file.write_text("[storage]")

        with pytest.raises(ValueError, match="Unsupported config file format"):
            ConfigManager().load(config_file=str(config_file))

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        """Test AZSTORE_* variables override file values."""
        monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
        monkeypatch.setenv("AZSTORE_LOG_LEVEL", "error")
        config_file = tmp_path / "azstore.yaml"
        config_file.write_text(yaml.dump({"logging": {"level": "DEBUG"}}))

        config = ConfigManager().load(config_file=str(config_file))

        assert config.logging.level == LogLevel.ERROR

    def test_overrides_win(self, monkeypatch):
        """Test explicit overrides have the highest precedence."""
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", "AccountName=fromenv;AccountKey=YWNjZXNzLWtleQ==")

        config = ConfigManager().load(overrides={
            "storage": {"storage_connection_string": f"AccountName=fromcli;AccountKey={ACCOUNT_KEY}"}
        })

        assert config.client_options().storage_account_name == "fromcli"

    def test_environment_connection_string_replaces_file_credentials(self, tmp_path, monkeypatch):
        """Test a connection string from the environment replaces file credentials."""
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", f"AccountName=fromenv;AccountKey={ACCOUNT_KEY}")
        config_file = tmp_path / "azstore.yaml"
        config_file.write_text(yaml.dump({
            "storage": {"storage_account_name": "fromfile", "storage_access_key": ACCOUNT_KEY},
        }))

        config = ConfigManager().load(config_file=str(config_file))

        assert config.storage == {"storage_connection_string": f"AccountName=fromenv;AccountKey={ACCOUNT_KEY}"}
        assert config.client_options().storage_account_name == "fromenv"

    def test_file_credentials_used_without_environment(self, tmp_path, monkeypatch):
        """Test file credentials apply when no higher source supplies storage options."""
        monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
        config_file = tmp_path / "azstore.yaml"
        config_file.write_text(yaml.dump({
            "storage": {"storage_account_name": "fromfile", "storage_access_key": ACCOUNT_KEY},
        }))

        config = ConfigManager().load(config_file=str(config_file), overrides={"http": {"timeout": 5}})

        assert config.client_options().storage_account_name == "fromfile"

    def test_unknown_storage_option(self):
        """Test unknown storage options fail validation."""
        with pytest.raises(ValidationError):
            AzStoreConfig(storage={"colour": "blue"})

    def test_invalid_timeout(self):
        """Test a non positive timeout fails validation."""
        with pytest.raises(ValidationError):
            AzStoreConfig(http={"timeout": 0})
