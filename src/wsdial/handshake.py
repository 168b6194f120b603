"""
Client side of the WebSocket opening handshake (RFC 6455, section 4).

:meth:`ClientHandshake.start` prepares the upgrade request for a stream and
returns a :class:`MidHandshake`; :meth:`MidHandshake.handshake` drives the
exchange. Over a blocking stream a single call either completes or fails.
Over a non-blocking stream it may instead raise
:class:`~wsdial.exceptions.HandshakeInterrupted`, after which the same
:class:`MidHandshake` can be resumed once the stream is ready again.
"""

from __future__ import annotations

import base64
import hashlib
import http.client
import io
import logging
import os
import typing

from ._collections import HTTPHeaderDict
from .exceptions import (
    HandshakeInterrupted,
    ProtocolError,
    TransportError,
    UrlError,
    WebSocketHandshakeError,
)
from .protocol import WebSocket, WebSocketConfig
from .request import Request, Response, parse_http_version
from .stream import uri_mode
from .tls import HAS_PYOPENSSL, HAS_SSL

log = logging.getLogger(__name__)

WS_VERSION = 13
WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

# Upper bound for the response status line and headers
MAX_HEAD_SIZE = 64 * 1024
READ_CHUNK_SIZE = 4096

_UPGRADE_HEADERS = frozenset(
    ("host", "connection", "upgrade", "sec-websocket-version", "sec-websocket-key")
)

_WOULD_BLOCK: tuple[type[BaseException], ...] = (BlockingIOError,)
if HAS_SSL:
    import ssl

    _WOULD_BLOCK += (ssl.SSLWantReadError, ssl.SSLWantWriteError)
if HAS_PYOPENSSL:
    from OpenSSL import SSL

    _WOULD_BLOCK += (SSL.WantReadError, SSL.WantWriteError)


class Stream(typing.Protocol):
    """Anything the handshake can run over: a socket or an AutoStream."""

    def recv(self, bufsize: int) -> bytes: ...

    def send(self, data: bytes) -> int: ...


def generate_key() -> str:
    """A random ``Sec-WebSocket-Key`` value."""
    return base64.b64encode(os.urandom(16)).decode("ascii")


def derive_accept_key(key: str) -> str:
    """The ``Sec-WebSocket-Accept`` value a server must answer ``key`` with."""
    digest = hashlib.sha1((key + WS_GUID).encode("ascii")).digest()
    return base64.b64encode(digest).decode("ascii")


def _check_header(name: str, value: str) -> None:
    if not name or any(c in name for c in "\r\n: ") or "\r" in value or "\n" in value:
        raise ProtocolError(f"Invalid characters in header {name!r}")


def build_request_head(request: Request, key: str) -> bytes:
    """
    Serialize the upgrade request line and headers.

    Headers the caller already set (including ``Sec-WebSocket-Key``) are
    kept; the mandatory upgrade headers are added where missing.
    """
    headers = HTTPHeaderDict()
    headers["Host"] = request.headers.get("Host") or typing.cast(str, request.uri.authority)
    headers["Connection"] = request.headers.get("Connection") or "Upgrade"
    headers["Upgrade"] = request.headers.get("Upgrade") or "websocket"
    headers["Sec-WebSocket-Version"] = (
        request.headers.get("Sec-WebSocket-Version") or str(WS_VERSION)
    )
    headers["Sec-WebSocket-Key"] = key
    for name, value in request.headers.iteritems():
        if name.lower() not in _UPGRADE_HEADERS:
            headers.add(name, value)

    lines = [f"GET {request.uri.request_uri} HTTP/1.1"]
    for name, value in headers.iteritems():
        _check_header(name, value)
        lines.append(f"{name}: {value}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


def parse_response_head(head: bytes) -> Response:
    """
    Parse the status line and headers of a handshake response.

    :raises ProtocolError: If the response head is malformed
    """
    line, _, rest = head.partition(b"\r\n")
    try:
        version, status, *reason = line.decode("latin-1").split(" ", 2)
        status_code = int(status)
    except ValueError as e:
        raise ProtocolError(f"Malformed status line {line!r}") from e

    if parse_http_version(version) < (1, 1):
        raise ProtocolError(f"Wrong HTTP version {version!r} in handshake response")

    try:
        message = http.client.parse_headers(io.BytesIO(rest))
    except http.client.HTTPException as e:
        raise ProtocolError(f"Malformed response headers: {e}") from e

    return Response(
        status=status_code,
        reason=reason[0] if reason else "",
        version=version,
        headers=HTTPHeaderDict(message.items()),
    )


class MidHandshake:
    """
    A client handshake in progress.

    Holds the pending request bytes and whatever part of the response has
    been read so far.
    """

    def __init__(
        self,
        stream: typing.Any,
        request: Request,
        config: WebSocketConfig | None,
        key: str,
    ) -> None:
        self.stream = stream
        self.request = request
        self.config = config
        self.key = key
        self._outgoing = memoryview(build_request_head(request, key))
        self._incoming = bytearray()

    def handshake(self) -> tuple[WebSocket, Response]:
        """
        Drive the handshake as far as the stream allows.

        :return: The WebSocket and the server's ``101`` response
        :raises HandshakeInterrupted: If the stream would block
        :raises WebSocketHandshakeError: If the server refused the upgrade;
            redirects end up here too, with the response attached
        :raises ProtocolError: If the response is not a valid upgrade
        :raises TransportError: If the stream fails
        """
        try:
            self._send_request()
            head_end = self._read_response_head()
        except _WOULD_BLOCK:
            raise HandshakeInterrupted(self)
        except OSError as e:
            raise TransportError(f"WebSocket handshake I/O error: {e}") from e

        head = bytes(self._incoming[:head_end])
        trailing = bytes(self._incoming[head_end:])
        response = parse_response_head(head)

        if response.status != 101:
            response.body = self._error_body(response, trailing)
            raise WebSocketHandshakeError(
                f"WebSocket handshake failed: {response.status} {response.reason}",
                response=response,
            )

        self._verify_response(response)
        log.debug("WebSocket handshake with %s complete", self.request.uri)

        websocket = WebSocket(self.stream, self.config, read_buffer=trailing)
        return websocket, response

    def _send_request(self) -> None:
        while self._outgoing:
            sent = self.stream.send(self._outgoing.tobytes())
            self._outgoing = self._outgoing[sent:]

    def _read_response_head(self) -> int:
        while True:
            end = self._incoming.find(b"\r\n\r\n")
            if end != -1:
                return end + 4
            if len(self._incoming) > MAX_HEAD_SIZE:
                raise ProtocolError("Handshake response head too large")
            data = self.stream.recv(READ_CHUNK_SIZE)
            if not data:
                raise ProtocolError("Connection closed before the handshake completed")
            self._incoming += data

    @staticmethod
    def _error_body(response: Response, trailing: bytes) -> bytes:
        length = response.headers.get("Content-Length")
        if length is not None and length.isdigit():
            return trailing[: int(length)]
        return trailing

    def _verify_response(self, response: Response) -> None:
        headers = response.headers
        if headers.get("Upgrade", "").lower() != "websocket":
            raise ProtocolError("No \"Upgrade: websocket\" in server reply")
        if not headers.has_token("Connection", "upgrade"):
            raise ProtocolError("No \"Connection: upgrade\" in server reply")
        if headers.get("Sec-WebSocket-Accept") != derive_accept_key(self.key):
            raise ProtocolError("Key mismatch in \"Sec-WebSocket-Accept\" header")

        selected = headers.get("Sec-WebSocket-Protocol")
        if selected is not None:
            offered = []
            for value in self.request.headers.getlist("Sec-WebSocket-Protocol"):
                offered.extend(p.strip() for p in value.split(","))
            if selected not in offered:
                raise ProtocolError(f"Server selected unsupported subprotocol {selected!r}")


class ClientHandshake:
    """Entry point for the client side of the opening handshake."""

    @staticmethod
    def start(
        stream: typing.Any,
        request: Request,
        config: WebSocketConfig | None = None,
    ) -> MidHandshake:
        """
        Validate ``request`` and prepare the upgrade exchange over ``stream``.

        Nothing is sent until :meth:`MidHandshake.handshake` is called.

        :raises ProtocolError: If the request is not a ``GET`` over HTTP/1.1
        :raises UrlError: If the URL has an unsupported scheme or no host
        """
        if request.method != "GET":
            raise ProtocolError(f"Wrong HTTP method {request.method!r}, expected GET")
        if parse_http_version(request.version) < (1, 1):
            raise ProtocolError(f"Wrong HTTP version {request.version!r}, expected HTTP/1.1")
        uri_mode(request.uri)
        if not request.uri.host:
            raise UrlError("No host name in the URL")

        key = request.headers.get("Sec-WebSocket-Key") or generate_key()
        return MidHandshake(stream, request, config, key)
