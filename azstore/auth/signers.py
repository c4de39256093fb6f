"""
Request signers for azstore.

A signer receives an outgoing HttpRequest just before it is sent and adds
whatever credentials its scheme requires (an Authorization header, a SAS
query string, or nothing at all).
"""

import base64
import binascii
import hashlib
import hmac
import logging
from typing import TYPE_CHECKING, Protocol

from azstore.core.exceptions import InvalidOptionsError

if TYPE_CHECKING:
    from azstore.core.http_client import HttpRequest

logger = logging.getLogger(__name__)


class TokenCredential(Protocol):
    """Anything exposing an OAuth bearer ``token`` attribute."""

    token: str


class Signer:
    """Base class for request signers holding a base64 account key."""

    def __init__(self, access_key: str):
        if access_key is None:
            raise ValueError("Signing key must be provided")
        try:
            self.access_key = base64.b64decode(access_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidOptionsError("Access key must be a base64 encoded string") from exc

    def sign(self, string_to_sign: str) -> str:
        """
        Compute an HMAC-SHA256 signature.

        Args:
            string_to_sign: Canonical string

        Returns:
            Base64-encoded signature
        """
        digest = hmac.new(self.access_key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("utf-8")

    def sign_request(self, request: "HttpRequest") -> "HttpRequest":
        raise NotImplementedError


class AnonymousSigner:
    """Leaves requests unsigned, for public containers and anonymous hosts."""

    def sign_request(self, request: "HttpRequest") -> "HttpRequest":
        return request


class TokenSigner:
    """Signs requests with an OAuth bearer token."""

    def __init__(self, credential: TokenCredential):
        self.credential = credential

    def sign_request(self, request: "HttpRequest") -> "HttpRequest":
        request.headers["Authorization"] = f"Bearer {self.credential.token}"
        return request
