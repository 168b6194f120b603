"""
wsdial - blocking WebSocket client connections for Python.

wsdial takes care of everything between a WebSocket URL and an open
connection:

- Turning URLs, parsed URLs and raw request heads into one request type
- Resolving the host and trying each address until one connects
- TLS through the standard library ssl module or pyOpenSSL
- Running the opening handshake, resumable over non-blocking streams
- Following redirects, up to a limit

Usage::

    >>> import wsdial
    >>> ws, response = wsdial.connect("wss://echo.example.com/")
    >>> ws.send("hello")
    >>> ws.read().text
    'hello'

:license: MIT, see LICENSE for more details.
"""

from __future__ import annotations

# Set default logging handler to avoid "No handler found" warnings.
import logging
from logging import NullHandler

from . import exceptions
from ._collections import HTTPHeaderDict
from ._version import __version__
from .dial import (
    client,
    client_with_config,
    connect,
    connect_tls,
    connect_to_some,
    connect_with_config,
)
from .exceptions import (
    HandshakeInterrupted,
    InvalidHeader,
    LocationParseError,
    ProtocolError,
    TlsError,
    TransportError,
    UrlError,
    URLSchemeUnknown,
    WebSocketClosedError,
    WebSocketError,
    WebSocketHandshakeError,
    WebSocketProtocolError,
    WsDialError,
)
from .handshake import ClientHandshake, MidHandshake
from .protocol import WebSocket, WebSocketConfig, WebSocketMessage
from .request import Request, Response, into_client_request
from .stream import AutoStream, Mode, uri_mode
from .tls import TlsWrapper, default_wrapper
from .util.url import Url, parse_url

logging.getLogger(__name__).addHandler(NullHandler())

__all__ = (
    "AutoStream",
    "ClientHandshake",
    "HTTPHeaderDict",
    "HandshakeInterrupted",
    "InvalidHeader",
    "LocationParseError",
    "MidHandshake",
    "Mode",
    "ProtocolError",
    "Request",
    "Response",
    "TlsError",
    "TlsWrapper",
    "TransportError",
    "URLSchemeUnknown",
    "Url",
    "UrlError",
    "WebSocket",
    "WebSocketClosedError",
    "WebSocketConfig",
    "WebSocketError",
    "WebSocketHandshakeError",
    "WebSocketMessage",
    "WebSocketProtocolError",
    "WsDialError",
    "__version__",
    "add_stderr_logger",
    "client",
    "client_with_config",
    "connect",
    "connect_tls",
    "connect_to_some",
    "connect_with_config",
    "default_wrapper",
    "exceptions",
    "into_client_request",
    "parse_url",
    "uri_mode",
)


def add_stderr_logger(level: int = logging.DEBUG) -> logging.StreamHandler:  # type: ignore[type-arg]
    """
    Helper for quickly adding a StreamHandler to the logger. Useful for
    debugging.

    Returns the handler after adding it.
    """
    # This method needs to be in this __init__.py to get the __name__ correct
    logger = logging.getLogger(__name__)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.debug("Added a stderr logging handler to logger: %s", __name__)
    return handler
