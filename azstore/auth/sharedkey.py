"""
SharedKey request signing for Azure Storage services.

Implements the SharedKey and SharedKeyLite authorization schemes for the
Blob and File services, and the Table service variants of both.

Reference: https://docs.microsoft.com/en-us/rest/api/storageservices/authorize-with-shared-key
"""

import logging
import re
from typing import TYPE_CHECKING, Dict, List, Mapping
from urllib.parse import parse_qs, urlparse

from azstore.auth.signers import Signer
from azstore.core.exceptions import SigningError

if TYPE_CHECKING:
    from azstore.core.http_client import HttpRequest

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def _lower_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {str(k).lower(): str(v) for k, v in headers.items()}


class SharedKeySigner(Signer):
    """
    Signs Blob and File requests with the SharedKey scheme.

    The Authorization header takes the form
    ``SharedKey <account>:<base64 HMAC-SHA256 signature>``.
    """

    name = "SharedKey"

    def __init__(self, account_name: str, access_key: str):
        """
        Initialize SharedKey signer.

        Args:
            account_name: Storage account name
            access_key: Base64-encoded account key
        """
        self.account_name = account_name
        super().__init__(access_key)

    def sign_request(self, request: "HttpRequest") -> "HttpRequest":
        request.headers["Authorization"] = (
            f"{self.name} {self.sign_request_parts(request.method, request.uri, request.headers)}"
        )
        return request

    def sign_request_parts(self, method: str, uri: str, headers: Mapping[str, str]) -> str:
        """
        Build the ``account:signature`` credential for a request.

        Args:
            method: HTTP method
            uri: Full request URI
            headers: Request headers

        Returns:
            Credential string for the Authorization header
        """
        string_to_sign = self.signable_string(method, uri, headers)
        logger.debug("SharedKey string to sign: %r", string_to_sign)
        return f"{self.account_name}:{self.sign(string_to_sign)}"

    def signable_string(self, method: str, uri: str, headers: Mapping[str, str]) -> str:
        """
        Build the canonical string for the SharedKey scheme.

        Format:
            VERB\\n
            Content-Encoding\\n
            Content-Language\\n
            Content-Length\\n
            Content-MD5\\n
            Content-Type\\n
            Date\\n
            If-Modified-Since\\n
            If-Match\\n
            If-None-Match\\n
            If-Unmodified-Since\\n
            Range\\n
            CanonicalizedHeaders\\n
            CanonicalizedResource
        """
        lowered = _lower_headers(headers)
        parts = [
            method.upper(),
            lowered.get("content-encoding", ""),
            lowered.get("content-language", ""),
            # Zero length bodies are signed as an empty Content-Length
            lowered.get("content-length", "").lstrip("0"),
            lowered.get("content-md5", ""),
            lowered.get("content-type", ""),
            lowered.get("date", ""),
            lowered.get("if-modified-since", ""),
            lowered.get("if-match", ""),
            lowered.get("if-none-match", ""),
            lowered.get("if-unmodified-since", ""),
            lowered.get("range", ""),
            self.canonicalized_headers(headers),
            self.canonicalized_resource(uri),
        ]
        return "\n".join(parts)

    @staticmethod
    def canonicalized_headers(headers: Mapping[str, str]) -> str:
        """
        Build CanonicalizedHeaders string.

        Rules:
        1. Include all headers starting with "x-ms-"
        2. Lowercase names and sort them
        3. Format each as "name:value"
        4. Collapse runs of whitespace to a single space

        Args:
            headers: Request headers

        Returns:
            Canonicalized headers string
        """
        ms_headers = sorted(
            (k, v) for k, v in _lower_headers(headers).items() if k.startswith("x-ms-")
        )
        return "\n".join(_WHITESPACE.sub(" ", f"{name}:{value}") for name, value in ms_headers)

    def canonicalized_resource(self, uri: str) -> str:
        """
        Build CanonicalizedResource string.

        Format:
            /account-name/resource-path
            param1:value1
            param2:value2,value3

        Args:
            uri: Full request URI

        Returns:
            Canonicalized resource string
        """
        parsed = urlparse(uri)
        resource = f"/{self.account_name}{parsed.path or '/'}"

        params = _parse_query_string(parsed.query)
        lines = [resource]
        for name in sorted(params):
            values = sorted(value.strip() for value in params[name])
            lines.append(f"{name}:{','.join(values)}")
        return "\n".join(lines)


class SharedKeyLiteSigner(SharedKeySigner):
    """Signs Blob and File requests with the SharedKeyLite scheme."""

    name = "SharedKeyLite"

    def signable_string(self, method: str, uri: str, headers: Mapping[str, str]) -> str:
        lowered = _lower_headers(headers)
        # x-ms-date is signed with the canonicalized headers, leaving Date blank
        if "date" not in lowered and "x-ms-date" not in lowered:
            raise SigningError("Headers must include Date or x-ms-date")
        return "\n".join([
            method.upper(),
            lowered.get("content-md5", ""),
            lowered.get("content-type", ""),
            lowered.get("date", ""),
            self.canonicalized_headers(headers),
            self.canonicalized_resource(uri),
        ])


class TableSharedKeySigner(SharedKeySigner):
    """
    Signs Table requests with the SharedKey scheme.

    The Table service signs a shorter string and only keeps the ``comp``
    query parameter in the canonicalized resource.
    """

    def signable_string(self, method: str, uri: str, headers: Mapping[str, str]) -> str:
        lowered = _lower_headers(headers)
        return "\n".join([
            method.upper(),
            lowered.get("content-md5", ""),
            lowered.get("content-type", ""),
            _table_date(lowered),
            self.canonicalized_resource(uri),
        ])

    def canonicalized_resource(self, uri: str) -> str:
        parsed = urlparse(uri)
        resource = f"/{self.account_name}{parsed.path}"

        comp = _parse_query_string(parsed.query).get("comp")
        if comp:
            resource = f"{resource}?comp={comp[0]}"
        return resource


class TableSharedKeyLiteSigner(TableSharedKeySigner):
    """Signs Table requests with the SharedKeyLite scheme."""

    name = "SharedKeyLite"

    def signable_string(self, method: str, uri: str, headers: Mapping[str, str]) -> str:
        return "\n".join([
            _table_date(_lower_headers(headers)),
            self.canonicalized_resource(uri),
        ])


def _table_date(headers: Dict[str, str]) -> str:
    if "date" in headers:
        return headers["date"]
    if "x-ms-date" in headers:
        return headers["x-ms-date"]
    raise SigningError("Headers must include Date or x-ms-date")


def _parse_query_string(query: str) -> Dict[str, List[str]]:
    """
    Parse query string into dict with lowercase names and decoded values.

    Args:
        query: Query string

    Returns:
        Dict of parameter name -> list of values
    """
    params: Dict[str, List[str]] = {}
    for name, values in parse_qs(query, keep_blank_values=True).items():
        params.setdefault(name.lower(), []).extend(values)
    return params
