"""SAS (Shared Access Signature) tokens for Azure Storage services.

This module generates service, account and user delegation SAS tokens,
signs requests with an existing token, and validates account, service and
user delegation SAS tokens (signature, time window, permission and service
checks).
"""

import hmac
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union
from urllib.parse import parse_qs, unquote, urlencode, urlparse

from azstore.auth.signers import Signer
from azstore.core.constants import ENV_OPTION_MAPPING, STG_VERSION, ServiceType
from azstore.core.exceptions import InvalidOptionsError, StorageError

if TYPE_CHECKING:
    from azstore.core.http_client import HttpRequest
    from azstore.core.models import UserDelegationKey

logger = logging.getLogger(__name__)

TimeValue = Union[str, datetime]


class SASPermission(str, Enum):
    """SAS permission flags."""

    READ = "r"
    WRITE = "w"
    DELETE = "d"
    LIST = "l"
    ADD = "a"
    CREATE = "c"
    UPDATE = "u"
    PROCESS = "p"


class SASResourceType(str, Enum):
    """SAS resource type flags."""

    SERVICE = "s"
    CONTAINER = "c"
    OBJECT = "o"


class SASService(str, Enum):
    """SAS service type flags."""

    BLOB = "b"
    QUEUE = "q"
    TABLE = "t"
    FILE = "f"


SERVICE_TYPE_MAPPING = {
    SASService.BLOB.value: ServiceType.BLOB,
    SASService.TABLE.value: ServiceType.TABLE,
    SASService.QUEUE.value: ServiceType.QUEUE,
    SASService.FILE.value: ServiceType.FILE,
}

ACCOUNT_KEY_MAPPINGS = {
    "version": "sv",
    "service": "ss",
    "resource": "srt",
    "permissions": "sp",
    "start": "st",
    "expiry": "se",
    "protocol": "spr",
    "ip_range": "sip",
}

SERVICE_KEY_MAPPINGS = {
    "version": "sv",
    "permissions": "sp",
    "start": "st",
    "expiry": "se",
    "identifier": "si",
    "protocol": "spr",
    "ip_range": "sip",
}

USER_DELEGATION_KEY_MAPPINGS = {
    "signed_oid": "skoid",
    "signed_tid": "sktid",
    "signed_start": "skt",
    "signed_expiry": "ske",
    "signed_service": "sks",
    "signed_version": "skv",
}

BLOB_KEY_MAPPINGS = {
    "resource": "sr",
    "timestamp": "snapshot",
    "cache_control": "rscc",
    "content_disposition": "rscd",
    "content_encoding": "rsce",
    "content_language": "rscl",
    "content_type": "rsct",
}

TABLE_KEY_MAPPINGS = {
    "table_name": "tn",
    "startpk": "spk",
    "endpk": "epk",
    "startrk": "srk",
    "endrk": "erk",
}

FILE_KEY_MAPPINGS = {
    "resource": "sr",
    "cache_control": "rscc",
    "content_disposition": "rscd",
    "content_encoding": "rsce",
    "content_language": "rscl",
    "content_type": "rsct",
}

SERVICE_RESOURCE_KEY_MAPPINGS = {
    ServiceType.BLOB: BLOB_KEY_MAPPINGS,
    ServiceType.TABLE: TABLE_KEY_MAPPINGS,
    ServiceType.FILE: FILE_KEY_MAPPINGS,
}

SERVICE_OPTIONAL_QUERY_PARAMS = {
    "sp", "si", "sip", "spr", "rscc", "rscd", "rsce", "rscl", "rsct", "spk", "srk", "epk", "erk",
}

ACCOUNT_OPTIONAL_QUERY_PARAMS = {"st", "sip", "spr"}

DEFAULT_PERMISSIONS = "r"
DEFAULT_EXPIRY = timedelta(minutes=30)


class SASValidationError(StorageError):
    """Base exception for SAS validation errors."""

    def __init__(self, message: str, error_code: str = "AuthenticationFailed"):
        """Initialize SAS validation error.

        Args:
            message: Human-readable error message
            error_code: Azure-compatible error code
        """
        super().__init__(message, error_code)


def _format_time(value: TimeValue) -> str:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise InvalidOptionsError(f"Invalid SAS time value: {value}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def service_key_mappings(service_type: Optional[ServiceType], user_delegation: bool) -> Dict[str, str]:
    """Option name to query parameter mapping for a service SAS."""
    mappings = dict(SERVICE_KEY_MAPPINGS)
    mappings.update(SERVICE_RESOURCE_KEY_MAPPINGS.get(service_type, {}))
    if user_delegation:
        mappings.pop("identifier")
        mappings.update(USER_DELEGATION_KEY_MAPPINGS)
    return mappings


class SharedAccessSignature:
    """
    Generates shared access signature tokens.

    Tokens are signed with the account key, or with the value of a user
    delegation key when one is supplied.
    """

    def __init__(
        self,
        account_name: str = "",
        access_key: str = "",
        user_delegation_key: Optional["UserDelegationKey"] = None,
    ):
        """
        Initialize the SAS generator.

        Missing account name or key are read from AZURE_STORAGE_ACCOUNT and
        AZURE_STORAGE_ACCESS_KEY.

        Args:
            account_name: Storage account name
            access_key: Base64-encoded account key
            user_delegation_key: Optional key obtained from the Blob service
        """
        if not access_key and user_delegation_key is not None:
            access_key = user_delegation_key.value
        account_name = account_name or os.getenv(ENV_OPTION_MAPPING["storage_account_name"], "")
        access_key = access_key or os.getenv(ENV_OPTION_MAPPING["storage_access_key"], "")
        if not account_name or not access_key:
            raise InvalidOptionsError("Account name and access key are required to generate a SAS")

        self.account_name = account_name
        self.user_delegation_key = user_delegation_key
        self._signer = Signer(access_key)

    def generate_service_sas_token(self, path: str, **options: Any) -> str:
        """
        Generate a service SAS token for a blob, container, file, share or table.

        Args:
            path: Resource path, e.g. "container/blob" or a table name
            **options: service ("b", "t", "f"), resource, permissions, start,
                expiry, identifier, protocol, ip_range, plus blob/file response
                header overrides (cache_control, content_disposition,
                content_encoding, content_language, content_type), blob
                timestamp, and table key ranges (startpk, endpk, startrk, endrk)

        Returns:
            URL-encoded query string including the signature

        Raises:
            InvalidOptionsError: If version or unknown options are supplied
        """
        service_type = None
        if "service" in options:
            service = options.pop("service")
            service_type = SERVICE_TYPE_MAPPING.get(str(service))

        if options.get("version"):
            raise InvalidOptionsError("SAS version cannot be set")
        options.pop("version", None)

        options = {"permissions": DEFAULT_PERMISSIONS, "version": STG_VERSION, **options}

        if service_type == ServiceType.BLOB:
            options["resource"] = options.get("resource") or "b"
        elif service_type == ServiceType.TABLE:
            options["table_name"] = path
        elif service_type == ServiceType.FILE:
            options["resource"] = options.get("resource") or "f"

        if self.user_delegation_key is not None:
            for key in USER_DELEGATION_KEY_MAPPINGS:
                options[key] = getattr(self.user_delegation_key, key)
        valid_mappings = service_key_mappings(service_type, self.user_delegation_key is not None)

        invalid_options = sorted(k for k in options if k not in valid_mappings)
        if invalid_options:
            raise InvalidOptionsError(f"invalid options {invalid_options} provided for SAS token generate")

        self._canonicalize_time(options)

        query: List[tuple] = []
        for key, value in options.items():
            param = valid_mappings[key]
            if param in SERVICE_OPTIONAL_QUERY_PARAMS and _text(value) == "":
                continue
            query.append((param, _text(value)))
        query.append(("sig", self.sign(self.signable_string_for_service(service_type, path, options))))

        return urlencode(query)

    def signable_string_for_service(
        self, service_type: Optional[ServiceType], path: str, options: Dict[str, Any]
    ) -> str:
        """Build the string to sign for a service SAS."""
        fields = [
            options.get("permissions"),
            options.get("start"),
            options.get("expiry"),
            self.canonicalized_resource(service_type, path),
        ]

        if self.user_delegation_key is None:
            fields.append(options.get("identifier"))
        else:
            fields.extend(options.get(key) for key in USER_DELEGATION_KEY_MAPPINGS)

        fields.extend([options.get("ip_range"), options.get("protocol"), options.get("version") or STG_VERSION])

        if service_type == ServiceType.BLOB:
            fields.extend([options.get("resource"), options.get("timestamp")])

        if service_type in (ServiceType.BLOB, ServiceType.FILE):
            fields.extend([
                options.get("cache_control"),
                options.get("content_disposition"),
                options.get("content_encoding"),
                options.get("content_language"),
                options.get("content_type"),
            ])

        if service_type == ServiceType.TABLE:
            fields.extend([
                options.get("startpk"),
                options.get("startrk"),
                options.get("endpk"),
                options.get("endrk"),
            ])

        return "\n".join(_text(value) for value in fields)

    def generate_account_sas_token(self, **options: Any) -> str:
        """
        Generate an account SAS token.

        Args:
            **options: service (e.g. "bqtf"), resource (e.g. "sco"),
                permissions, start, expiry, protocol, ip_range

        Returns:
            URL-encoded query string including the signature

        Raises:
            InvalidOptionsError: If version or unknown options are supplied
        """
        if options.get("version"):
            raise InvalidOptionsError("SAS version cannot be set")
        options.pop("version", None)

        options = {"permissions": DEFAULT_PERMISSIONS, "version": STG_VERSION, **options}

        invalid_options = sorted(k for k in options if k not in ACCOUNT_KEY_MAPPINGS)
        if invalid_options:
            raise InvalidOptionsError(f"invalid options {invalid_options} provided for SAS token generate")

        self._canonicalize_time(options)

        query: List[tuple] = []
        for key, value in options.items():
            param = ACCOUNT_KEY_MAPPINGS[key]
            if param in ACCOUNT_OPTIONAL_QUERY_PARAMS and _text(value) == "":
                continue
            query.append((param, _text(value)))
        query.append(("sig", self.sign(self.signable_string_for_account(options))))

        return urlencode(query)

    def signable_string_for_account(self, options: Dict[str, Any]) -> str:
        """Build the string to sign for an account SAS (ends with a newline)."""
        return "\n".join(_text(value) for value in [
            self.account_name,
            options.get("permissions"),
            options.get("service"),
            options.get("resource"),
            options.get("start"),
            options.get("expiry"),
            options.get("ip_range"),
            options.get("protocol"),
            options.get("version") or STG_VERSION,
            "",
        ])

    def sign(self, string_to_sign: str) -> str:
        """Sign a string with the account key or the user delegation key."""
        return self._signer.sign(string_to_sign)

    def canonicalized_resource(self, service_type: Optional[ServiceType], path: str) -> str:
        service = service_type.value if service_type is not None else ""
        separator = "" if path.startswith("/") else "/"
        return f"/{service}/{self.account_name}{separator}{path}"

    @staticmethod
    def _canonicalize_time(options: Dict[str, Any]) -> None:
        if options.get("start"):
            options["start"] = _format_time(options["start"])
        if options.get("expiry"):
            options["expiry"] = _format_time(options["expiry"])
        else:
            options["expiry"] = _format_time(datetime.now(timezone.utc) + DEFAULT_EXPIRY)

    def signed_uri(self, uri: str, use_account_sas: bool = False, **options: Any) -> str:
        """
        Append a freshly generated SAS token to a resource URI.

        When no service is given it is inferred from the host name,
        e.g. ``account.blob.core.windows.net`` selects the blob service.

        Args:
            uri: Resource URI
            use_account_sas: Generate an account SAS instead of a service SAS
            **options: Options forwarded to the token generator

        Returns:
            URI with the SAS query string appended
        """
        parsed = urlparse(uri)

        if options.get("service") is None and parsed.hostname:
            host_parts = parsed.hostname.split(".")
            if len(host_parts) > 1 and host_parts[0] == self.account_name:
                options["service"] = host_parts[1][0]

        if use_account_sas:
            sas_params = self.generate_account_sas_token(**options)
        else:
            sas_params = self.generate_service_sas_token(unquote(parsed.path), **options)

        separator = "&" if parsed.query else "?"
        return f"{uri}{separator}{sas_params}"


class SharedAccessSignatureSigner:
    """Signs requests by appending an existing SAS token to the URI."""

    def __init__(self, api_version: str, account_name: str = "", sas_token: str = ""):
        account_name = account_name or os.getenv(ENV_OPTION_MAPPING["storage_account_name"], "")
        sas_token = sas_token or os.getenv(ENV_OPTION_MAPPING["storage_sas_token"], "")
        if not sas_token:
            raise InvalidOptionsError("A SAS token is required for SAS signing")
        self.api_version = api_version
        self.account_name = account_name
        self.sas_token = sas_token

    def sign_request(self, request: "HttpRequest") -> "HttpRequest":
        separator = "&" if urlparse(request.uri).query else "?"
        token = self.sas_token[1:] if self.sas_token.startswith("?") else self.sas_token
        request.uri = f"{request.uri}{separator}{token}&api-version={self.api_version}"
        return request


SERVICE_FOR_SIGNED_RESOURCE = {
    "b": SASService.BLOB,
    "bs": SASService.BLOB,
    "c": SASService.BLOB,
    "f": SASService.FILE,
    "s": SASService.FILE,
}


@dataclass
class SASToken:
    """
    Parsed SAS token.

    Account tokens carry ``ss`` and ``srt``; service tokens carry ``sr`` or,
    for tables, ``tn``.
    """

    signed_version: str  # sv
    signed_expiry: str  # se
    signature: str  # sig
    signed_permissions: Optional[str] = None  # sp
    signed_services: Optional[str] = None  # ss
    signed_resource_types: Optional[str] = None  # srt
    signed_resource: Optional[str] = None  # sr
    table_name: Optional[str] = None  # tn
    signed_start: Optional[str] = None  # st
    signed_protocol: Optional[str] = None  # spr
    signed_ip: Optional[str] = None  # sip
    raw_params: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not all([self.signed_version, self.signed_expiry, self.signature]):
            raise SASValidationError("Missing required SAS parameters", "InvalidQueryParameterValue")
        if self.is_account_sas:
            if not self.signed_resource_types or not self.signed_permissions:
                raise SASValidationError("Missing required SAS parameters", "InvalidQueryParameterValue")
        elif not self.signed_resource and not self.table_name:
            raise SASValidationError("Missing signed resource", "InvalidQueryParameterValue")

    @property
    def is_account_sas(self) -> bool:
        return self.signed_services is not None

    @property
    def is_user_delegation_sas(self) -> bool:
        return "skoid" in self.raw_params

    @property
    def service(self) -> Optional[SASService]:
        """Service a service token was issued for."""
        if self.table_name:
            return SASService.TABLE
        return SERVICE_FOR_SIGNED_RESOURCE.get(self.signed_resource or "")


class SASValidator:
    """
    Verifies SAS tokens against the strings to sign used when generating them.

    Account and service tokens are checked with the account key. User
    delegation tokens need the delegation key they were issued with.
    """

    def __init__(
        self,
        account_name: str,
        account_key: str = "",
        user_delegation_key: Optional["UserDelegationKey"] = None,
    ):
        """
        Args:
            account_name: Storage account name
            account_key: Storage account key (base64-encoded)
            user_delegation_key: Key used to verify user delegation tokens
        """
        self.account_name = account_name
        self._account_sas = SharedAccessSignature(account_name, account_key) if account_key else None
        self._delegation_sas = (
            SharedAccessSignature(account_name, user_delegation_key=user_delegation_key)
            if user_delegation_key is not None
            else None
        )
        if self._account_sas is None and self._delegation_sas is None:
            raise InvalidOptionsError("An account key or user delegation key is required to verify a SAS")

    def parse_sas_token(self, url: str) -> SASToken:
        """
        Parse a SAS token from a URL or a bare query string.

        Raises:
            SASValidationError: If required parameters are missing
        """
        query = urlparse(url).query if "?" in url or "://" in url else url
        params = {key: values[0] for key, values in parse_qs(query).items() if values}

        for key in ("sv", "se", "sig"):
            if key not in params:
                raise SASValidationError(f"Missing required SAS parameter: {key}", "InvalidQueryParameterValue")

        return SASToken(
            signed_version=params["sv"],
            signed_expiry=params["se"],
            signature=params["sig"],
            signed_permissions=params.get("sp"),
            signed_services=params.get("ss"),
            signed_resource_types=params.get("srt"),
            signed_resource=params.get("sr"),
            table_name=params.get("tn"),
            signed_start=params.get("st"),
            signed_protocol=params.get("spr"),
            signed_ip=params.get("sip"),
            raw_params=params,
        )

    def validate_signature(self, sas_token: SASToken, path: Optional[str] = None) -> None:
        """
        Recompute the signature and compare it in constant time.

        Args:
            sas_token: Parsed SAS token
            path: Resource path a service token was issued for; tables use ``tn``

        Raises:
            SASValidationError: If the signature does not match
        """
        generator = self._delegation_sas if sas_token.is_user_delegation_sas else self._account_sas
        if generator is None:
            raise SASValidationError("No key available to verify this SAS", "AuthenticationFailed")

        if sas_token.is_account_sas:
            string_to_sign = generator.signable_string_for_account(
                self._signed_options(sas_token, ACCOUNT_KEY_MAPPINGS)
            )
        else:
            string_to_sign = self._service_string_to_sign(generator, sas_token, path)

        if not hmac.compare_digest(generator.sign(string_to_sign), sas_token.signature):
            raise SASValidationError("Signature mismatch", "AuthenticationFailed")

    def _service_string_to_sign(
        self, generator: SharedAccessSignature, sas_token: SASToken, path: Optional[str]
    ) -> str:
        service = sas_token.service
        if service is None:
            raise SASValidationError(
                f"Unknown signed resource: {sas_token.signed_resource}", "InvalidQueryParameterValue"
            )
        service_type = SERVICE_TYPE_MAPPING[service.value]
        if service_type == ServiceType.TABLE:
            path = sas_token.table_name
        if not path:
            raise SASValidationError("A resource path is required to verify a service SAS", "InvalidQueryParameterValue")

        mappings = service_key_mappings(service_type, sas_token.is_user_delegation_sas)
        return generator.signable_string_for_service(service_type, path, self._signed_options(sas_token, mappings))

    @staticmethod
    def _signed_options(sas_token: SASToken, mappings: Dict[str, str]) -> Dict[str, str]:
        return {key: sas_token.raw_params[param] for key, param in mappings.items() if param in sas_token.raw_params}

    def validate_expiry(self, sas_token: SASToken) -> None:
        """Reject tokens whose expiry has passed."""
        if datetime.now(timezone.utc) >= _parse_sas_time(sas_token.signed_expiry, "expiry"):
            raise SASValidationError("SAS token has expired", "AuthenticationFailed")

    def validate_start_time(self, sas_token: SASToken) -> None:
        """Reject tokens whose start time is still in the future."""
        if not sas_token.signed_start:
            return
        if datetime.now(timezone.utc) < _parse_sas_time(sas_token.signed_start, "start"):
            raise SASValidationError("SAS token not yet valid", "AuthenticationFailed")

    def validate_permissions(self, sas_token: SASToken, required_permission: SASPermission) -> None:
        if required_permission.value not in set(sas_token.signed_permissions or ""):
            raise SASValidationError(
                f"SAS token lacks required permission: {required_permission.value}",
                "AuthorizationPermissionMismatch",
            )

    def validate_resource_types(self, sas_token: SASToken, required_resource_type: SASResourceType) -> None:
        if required_resource_type.value not in set(sas_token.signed_resource_types or ""):
            raise SASValidationError(
                f"SAS token does not allow resource type: {required_resource_type.value}",
                "AuthorizationResourceTypeMismatch",
            )

    def validate_services(self, sas_token: SASToken, required_service: SASService) -> None:
        if sas_token.is_account_sas:
            allowed = set(sas_token.signed_services or "")
        else:
            allowed = {sas_token.service.value} if sas_token.service else set()
        if required_service.value not in allowed:
            raise SASValidationError(
                f"SAS token does not allow service: {required_service.value}",
                "AuthorizationServiceMismatch",
            )

    def validate(
        self,
        url: str,
        *,
        required_permission: SASPermission,
        required_service: SASService,
        required_resource_type: Optional[SASResourceType] = None,
        path: Optional[str] = None,
    ) -> SASToken:
        """
        Perform complete SAS token validation.

        Args:
            url: Full URL with SAS query parameters, or a bare token
            required_permission: Permission required for the operation
            required_service: Service the token must grant
            required_resource_type: Resource type an account token must grant
            path: Resource path for a service token; defaults to the URL path

        Returns:
            Validated SASToken object

        Raises:
            SASValidationError: If any validation check fails
        """
        sas_token = self.parse_sas_token(url)
        if path is None and "://" in url:
            path = unquote(urlparse(url).path)

        self.validate_signature(sas_token, path)
        self.validate_expiry(sas_token)
        self.validate_start_time(sas_token)
        self.validate_permissions(sas_token, required_permission)
        if sas_token.is_account_sas and required_resource_type is not None:
            self.validate_resource_types(sas_token, required_resource_type)
        self.validate_services(sas_token, required_service)
        logger.debug("SAS token validated for account %s", self.account_name)
        return sas_token


def _parse_sas_time(value: str, name: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise SASValidationError(f"Invalid {name} time format", "InvalidQueryParameterValue") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
