"""
HTTP request pipeline for azstore.

HttpRequest runs a chain of filters around a single httpx call. Filters are
callables taking ``(request, next_call)`` and returning an HttpResponse;
the first registered filter is the outermost. The request is signed right
before each attempt is sent, so retries against another location are
signed for that location.
"""

import logging
from email.utils import formatdate
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import httpx

from azstore.core.exceptions import HTTPError
from azstore.core.logging_config import log_with_context, redact

logger = logging.getLogger(__name__)

Body = Union[bytes, str, None]
NextCall = Callable[[], "HttpResponse"]
HttpFilter = Callable[["HttpRequest", NextCall], "HttpResponse"]


class HttpResponse:
    """
    Response returned by the storage service.

    Wraps the status line, headers and raw body so that both real httpx
    responses and the individual parts of a batch response share one shape.
    """

    def __init__(
        self,
        status_code: int,
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
        uri: str = "",
        reason_phrase: str = "",
    ):
        self.status_code = status_code
        self.headers = httpx.Headers(headers or {})
        self.body = body
        self.uri = uri
        self.reason_phrase = reason_phrase

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "HttpResponse":
        return cls(
            status_code=response.status_code,
            headers=response.headers,
            body=response.content,
            uri=str(response.request.url),
            reason_phrase=response.reason_phrase,
        )

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace") if self.body else ""

    @property
    def success(self) -> bool:
        return 200 <= self.status_code < 300

    def __repr__(self) -> str:
        return f"<HttpResponse [{self.status_code}]>"


class HttpRequest:
    """A single storage REST call and the filters wrapped around it."""

    def __init__(
        self,
        method: str,
        uri: str,
        body: Body = None,
        headers: Optional[Dict[str, str]] = None,
        http_client: Optional[httpx.Client] = None,
        signer: Any = None,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.method = method.upper()
        self.uri = uri
        self.original_uri = uri
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        self.headers: Dict[str, str] = dict(headers or {})
        self.http_client = http_client
        self.signer = signer
        self.options: Dict[str, Any] = options if options is not None else {}
        self.filters: List[HttpFilter] = []

    def with_filter(self, http_filter: HttpFilter) -> "HttpRequest":
        self.filters.append(http_filter)
        return self

    def call(self) -> HttpResponse:
        """
        Run the filter chain and send the request.

        Returns:
            HttpResponse for a successful (2xx) response

        Raises:
            HTTPError: If the service returns a non-success status
            httpx.TransportError: On connection level failures
        """
        def chain(index: int) -> NextCall:
            if index == len(self.filters):
                return self._send
            http_filter = self.filters[index]
            next_call = chain(index + 1)
            return lambda: http_filter(self, next_call)

        return chain(0)()

    def _send(self) -> HttpResponse:
        self.headers["x-ms-date"] = formatdate(usegmt=True)
        if self.signer is not None:
            self.signer.sign_request(self)

        logger.debug(redact(f"{self.method} {self.uri}"))

        client = self.http_client
        owns_client = client is None
        if owns_client:
            client = httpx.Client()
        try:
            raw = client.request(self.method, self.uri, content=self.body, headers=self.headers)
        finally:
            if owns_client:
                client.close()

        response = HttpResponse.from_httpx(raw)
        log_with_context(
            logger,
            logging.DEBUG,
            redact(f"{self.method} {self.uri} -> {response.status_code}"),
            status_code=response.status_code,
            request_id=response.headers.get("x-ms-request-id"),
        )

        if not response.success:
            raise HTTPError(response)
        return response
