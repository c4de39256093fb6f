"""
Tests for SharedKey request signing.
"""

import base64
import hashlib
import hmac

import pytest

from azstore.auth.sharedkey import (
    SharedKeyLiteSigner,
    SharedKeySigner,
    TableSharedKeyLiteSigner,
    TableSharedKeySigner,
)
from azstore.auth.signers import AnonymousSigner, Signer, TokenSigner
from azstore.core.exceptions import InvalidOptionsError, SigningError
from azstore.core.http_client import HttpRequest

ACCOUNT_KEY = "YWNjZXNzLWtleQ=="

HEADERS = {
    "Content-Encoding": "foo",
    "Content-Language": "foo",
    "Content-Length": "foo",
    "Content-MD5": "foo",
    "Content-Type": "foo",
    "Date": "foo",
    "If-Modified-Since": "foo",
    "If-Match": "foo",
    "If-None-Match": "foo",
    "If-Unmodified-Since": "foo",
    "Range": "foo",
    "x-ms-ImATeapot": "teapot",
    "x-ms-ShortAndStout": "True",
}


def _hmac(string_to_sign):
    digest = hmac.new(base64.b64decode(ACCOUNT_KEY), string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class TestSharedKeySigner:
    """Test suite for the SharedKey scheme."""

    @pytest.fixture
    def signer(self):
        return SharedKeySigner("account-name", ACCOUNT_KEY)

    def test_sign_request_parts(self, signer):
        """Test a known signature for a fixed set of headers."""
        credential = signer.sign_request_parts("POST", "http://dummy.uri/resource", HEADERS)

        assert credential == "account-name:vcdxlDVoE1QvJerkg0ci3Wlnj2Qq8yzlsrkRf5dEU/I="

    def test_canonicalized_headers(self, signer):
        """Test x-ms-* headers are lowercased and sorted."""
        assert signer.canonicalized_headers(HEADERS) == "x-ms-imateapot:teapot\nx-ms-shortandstout:True"

    def test_canonicalized_headers_whitespace(self, signer):
        """Test runs of whitespace collapse to one space."""
        headers = {"x-ms-meta-note": "a   b\tc", "x-ms-version": "2018-11-09"}

        assert signer.canonicalized_headers(headers) == "x-ms-meta-note:a b c\nx-ms-version:2018-11-09"

    def test_canonicalized_resource(self, signer):
        """Test the account name prefixes the path."""
        assert signer.canonicalized_resource("http://dummy.uri/resource") == "/account-name/resource"

    def test_canonicalized_resource_query(self, signer):
        """Test query parameters are lowercased, sorted and decoded."""
        resource = signer.canonicalized_resource(
            "http://dummy.uri/container?restype=container&comp=list&Include=metadata,snapshots&prefix=a%20b"
        )

        assert resource == (
            "/account-name/container\ncomp:list\ninclude:metadata,snapshots\nprefix:a b\nrestype:container"
        )

    def test_zero_content_length_is_blank(self, signer):
        """Test a zero Content-Length is signed as empty."""
        string_to_sign = signer.signable_string("GET", "http://dummy.uri/", {"Content-Length": "0"})

        assert string_to_sign.split("\n")[3] == ""

    def test_sign_request_sets_authorization(self, signer):
        """Test the Authorization header is added to the request."""
        request = HttpRequest("GET", "http://dummy.uri/resource", headers={"x-ms-date": "now"})
        signer.sign_request(request)

        assert request.headers["Authorization"].startswith("SharedKey account-name:")


class TestSharedKeyLiteSigner:
    """Test suite for the SharedKeyLite scheme."""

    def test_signable_string(self):
        """Test the shorter string to sign."""
        signer = SharedKeyLiteSigner("account-name", ACCOUNT_KEY)
        headers = {"Date": "Mon, 01 Jan 2024 00:00:00 GMT", "Content-Type": "text/plain", "x-ms-version": "2018"}

        string_to_sign = signer.signable_string("PUT", "http://dummy.uri/c/b", headers)

        assert string_to_sign == (
            "PUT\n\ntext/plain\nMon, 01 Jan 2024 00:00:00 GMT\nx-ms-version:2018\n/account-name/c/b"
        )

    def test_x_ms_date_leaves_date_blank(self):
        """Test x-ms-date stands in for Date in the canonicalized headers."""
        signer = SharedKeyLiteSigner("account-name", ACCOUNT_KEY)
        headers = {"x-ms-date": "Mon, 01 Jan 2024 00:00:00 GMT", "x-ms-version": "2018-11-09"}

        string_to_sign = signer.signable_string("DELETE", "http://dummy.uri/c?restype=container", headers)

        assert string_to_sign == (
            "DELETE\n\n\n\n"
            "x-ms-date:Mon, 01 Jan 2024 00:00:00 GMT\nx-ms-version:2018-11-09\n"
            "/account-name/c\nrestype:container"
        )

    def test_requires_a_date(self):
        """Test a request without any date cannot be signed."""
        signer = SharedKeyLiteSigner("account-name", ACCOUNT_KEY)

        with pytest.raises(SigningError, match="Date"):
            signer.signable_string("GET", "http://dummy.uri/", {})

    def test_scheme_name(self):
        """Test the Authorization scheme name."""
        signer = SharedKeyLiteSigner("account-name", ACCOUNT_KEY)
        request = HttpRequest("GET", "http://dummy.uri/", headers={"Date": "now"})
        signer.sign_request(request)

        assert request.headers["Authorization"].startswith("SharedKeyLite account-name:")


class TestTableSharedKeySigner:
    """Test suite for the Table service schemes."""

    def test_signable_string(self):
        """Test the Table string to sign only keeps comp."""
        signer = TableSharedKeySigner("account-name", ACCOUNT_KEY)
        headers = {"x-ms-date": "Mon, 01 Jan 2024 00:00:00 GMT", "Content-Type": "application/json"}

        string_to_sign = signer.signable_string(
            "GET", "http://dummy.uri/Tables?comp=acl&timeout=30", headers
        )

        assert string_to_sign == (
            "GET\n\napplication/json\nMon, 01 Jan 2024 00:00:00 GMT\n/account-name/Tables?comp=acl"
        )

    def test_sign(self):
        """Test the credential is an HMAC of the string to sign."""
        signer = TableSharedKeySigner("account-name", ACCOUNT_KEY)
        headers = {"x-ms-date": "Mon, 01 Jan 2024 00:00:00 GMT"}

        credential = signer.sign_request_parts("GET", "http://dummy.uri/people()", headers)

        expected = _hmac("GET\n\n\nMon, 01 Jan 2024 00:00:00 GMT\n/account-name/people()")
        assert credential == f"account-name:{expected}"

    def test_lite_signable_string(self):
        """Test the Table SharedKeyLite string to sign."""
        signer = TableSharedKeyLiteSigner("account-name", ACCOUNT_KEY)

        string_to_sign = signer.signable_string("GET", "http://dummy.uri/Tables", {"Date": "today"})

        assert string_to_sign == "today\n/account-name/Tables"

    def test_requires_a_date(self):
        """Test a date header is required."""
        signer = TableSharedKeySigner("account-name", ACCOUNT_KEY)

        with pytest.raises(SigningError):
            signer.signable_string("GET", "http://dummy.uri/Tables", {})


class TestSigners:
    """Test suite for the other signers."""

    def test_invalid_key(self):
        """Test non base64 keys are rejected."""
        with pytest.raises(InvalidOptionsError):
            Signer("not base64!")

    def test_sign(self):
        """Test HMAC-SHA256 signing."""
        assert Signer(ACCOUNT_KEY).sign("text") == _hmac("text")

    def test_anonymous(self):
        """Test anonymous requests stay unsigned."""
        request = HttpRequest("GET", "http://dummy.uri/")
        AnonymousSigner().sign_request(request)

        assert "Authorization" not in request.headers

    def test_token(self):
        """Test bearer tokens."""

        class Credential:
            token = "abc"

        request = HttpRequest("GET", "http://dummy.uri/")
        TokenSigner(Credential()).sign_request(request)

        assert request.headers["Authorization"] == "Bearer abc"


class TestSignedRequests:
    """Test requests signed end to end through the services."""

    @staticmethod
    def _expected(signer, request):
        return f"{signer.name} {signer.sign_request_parts(request.method, str(request.url), request.headers)}"

    def test_blob_shared_key_lite(self, storage_client, transport):
        """Test a Blob request signed with SharedKeyLite."""
        signer = SharedKeyLiteSigner("account", ACCOUNT_KEY)
        transport.queue(202)

        storage_client.blob_client(signer=signer).delete_container("photos")

        request = transport.last
        assert "Date" not in request.headers
        assert request.headers["Authorization"] == self._expected(signer, request)

    def test_table_shared_key_lite(self, storage_client, transport):
        """Test a Table request signed with SharedKeyLite."""
        signer = TableSharedKeyLiteSigner("account", ACCOUNT_KEY)
        transport.queue(204)

        storage_client.table_client(signer=signer).delete_table("people")

        request = transport.last
        string_to_sign = f"{request.headers['x-ms-date']}\n/account/Tables('people')"
        assert request.headers["Authorization"] == f"SharedKeyLite account:{_hmac(string_to_sign)}"

    def test_table_shared_key(self, table_service, transport):
        """Test the default Table signer."""
        transport.queue(204)

        table_service.delete_table("people")

        request = transport.last
        assert request.headers["Authorization"] == self._expected(table_service.signer, request)
