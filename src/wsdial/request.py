"""
HTTP request and response models for the WebSocket handshake.

Callers can describe the target they want to reach in several ways; every
entry point funnels them through :func:`into_client_request`, which returns
the canonical :class:`Request`.
"""

from __future__ import annotations

import http.client
import io
import logging
import re
import typing
from dataclasses import dataclass, field
from urllib.parse import ParseResult, SplitResult

from ._collections import HTTPHeaderDict
from .exceptions import ProtocolError
from .util.url import Url, parse_url

log = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^HTTP/(\d+)\.(\d+)$")


def parse_http_version(version: str) -> tuple[int, int]:
    """Parse ``HTTP/x.y`` into ``(x, y)``."""
    match = _VERSION_RE.match(version)
    if match is None:
        raise ProtocolError(f"Invalid HTTP version {version!r}")
    return int(match.group(1)), int(match.group(2))


@dataclass(frozen=True)
class Request:
    """
    A client handshake request.

    The body is always empty for WebSocket upgrades; it is kept so a
    request built elsewhere round-trips unchanged.
    """

    method: str
    uri: Url
    version: str = "HTTP/1.1"
    headers: HTTPHeaderDict = field(default_factory=HTTPHeaderDict)
    body: bytes = b""

    @classmethod
    def get(cls, uri: Url | str, headers: typing.Any = None) -> Request:
        """Build a ``GET`` request with an empty body for ``uri``."""
        if isinstance(uri, str):
            uri = parse_url(uri)
        return cls(method="GET", uri=uri, headers=HTTPHeaderDict(headers))

    @classmethod
    def from_raw(cls, data: bytes | bytearray) -> Request:
        """
        Build a request from a raw HTTP/1.x request head, as read off a
        socket or produced by another HTTP parser.

        Only ``GET`` requests of version 1.1 or later are accepted, and the
        request target must be a URL.
        """
        head = bytes(data)
        line, sep, rest = head.partition(b"\r\n")
        if not sep:
            raise ProtocolError("Incomplete request head")

        try:
            method, target, version = line.decode("ascii").split(" ")
        except (UnicodeDecodeError, ValueError) as e:
            raise ProtocolError(f"Malformed request line {line!r}") from e

        if method != "GET":
            raise ProtocolError(f"Wrong HTTP method {method!r}, expected GET")
        if parse_http_version(version) < (1, 1):
            raise ProtocolError(f"Wrong HTTP version {version!r}, expected HTTP/1.1")

        headers = HTTPHeaderDict()
        if rest.strip():
            try:
                message = http.client.parse_headers(io.BytesIO(rest))
            except http.client.HTTPException as e:
                raise ProtocolError(f"Malformed request headers: {e}") from e
            headers.extend(message.items())

        return cls(method="GET", uri=parse_url(target), version="HTTP/1.1", headers=headers)

    def with_uri(self, uri: Url) -> Request:
        """
        A fresh request for another target, keeping method, version and
        headers. The body is dropped.
        """
        return Request(
            method=self.method,
            uri=uri,
            version=self.version,
            headers=self.headers.copy(),
        )

    def __into_client_request__(self) -> Request:
        return self


@dataclass
class Response:
    """The server's answer to a handshake request."""

    status: int
    reason: str = ""
    version: str = "HTTP/1.1"
    headers: HTTPHeaderDict = field(default_factory=HTTPHeaderDict)
    body: bytes = b""

    @property
    def is_redirect(self) -> bool:
        """True for any status of the 3xx redirection class."""
        return 300 <= self.status < 400

    def get_location(self) -> str | None:
        """The first ``Location`` header, if any."""
        locations = self.headers.getlist("Location")
        return locations[0] if locations else None


ClientRequestLike = typing.Union[
    str, bytes, bytearray, Url, SplitResult, ParseResult, Request
]


def into_client_request(request: typing.Any) -> Request:
    """
    Convert ``request`` into a :class:`Request` for a client connection.

    Accepted inputs:

    * URL text such as ``"wss://example.com/chat"``
    * a :class:`~wsdial.util.url.Url`
    * a :mod:`urllib.parse` ``SplitResult`` or ``ParseResult``
    * an already built :class:`Request`, returned as is
    * the raw bytes of an HTTP request head (see :meth:`Request.from_raw`)
    * any object implementing ``__into_client_request__()``

    Bare URLs become ``GET`` requests with an empty body.

    :raises LocationParseError: If the input is not a valid URL
    :raises ProtocolError: If a raw request head is not a valid GET request
    :raises TypeError: For any other type of input
    """
    if isinstance(request, Request):
        return request
    if isinstance(request, str):
        return Request.get(parse_url(request))
    if isinstance(request, Url):
        return Request.get(request)
    if isinstance(request, (SplitResult, ParseResult)):
        return Request.get(parse_url(request.geturl()))
    if isinstance(request, (bytes, bytearray)):
        return Request.from_raw(request)

    convert = getattr(request, "__into_client_request__", None)
    if convert is not None:
        return convert()

    raise TypeError(
        f"Cannot build a client request from {type(request).__name__!r}"
    )
