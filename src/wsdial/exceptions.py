"""
Exceptions for wsdial.

This module contains all exceptions raised by wsdial.
"""

from __future__ import annotations

import typing

if typing.TYPE_CHECKING:
    from .handshake import MidHandshake
    from .request import Response


class WsDialError(Exception):
    """Base exception used by this module."""
    pass


class UrlError(WsDialError, ValueError):
    """Raised when there is something wrong with a given URL input."""
    pass


class LocationParseError(UrlError):
    """Raised when parse_url or similar fails to parse the URL input."""

    def __init__(self, location: object) -> None:
        message = f"Failed to parse: {location!r}"
        super().__init__(message)

        self.location = location


class URLSchemeUnknown(UrlError):
    """Raised when a URL input has an unsupported scheme."""

    def __init__(self, scheme: str | None) -> None:
        message = f"URL scheme not supported: {scheme!r}"
        super().__init__(message)

        self.scheme = scheme


class TransportError(WsDialError):
    """Raised when name resolution or socket I/O fails."""
    pass


class TlsError(WsDialError):
    """Raised when a TLS session cannot be negotiated."""
    pass


class InvalidHeader(WsDialError):
    """The header provided was somehow invalid."""
    pass


class ProtocolError(WsDialError):
    """Raised when something unexpected happens mid-handshake."""
    pass


class HandshakeInterrupted(WsDialError):
    """
    Raised when a handshake over a non-blocking stream cannot make progress.

    The interrupted handshake is kept on ``mid_handshake``; call its
    ``handshake()`` method again once the stream is ready.
    """

    def __init__(self, mid_handshake: MidHandshake) -> None:
        super().__init__("WebSocket handshake interrupted, stream would block")
        self.mid_handshake = mid_handshake


class WebSocketError(WsDialError):
    """Base class for all WebSocket-related errors."""
    pass


class WebSocketHandshakeError(WebSocketError):
    """
    Raised when the server answers the upgrade request with anything but
    a valid ``101 Switching Protocols``.

    The full HTTP response is available as ``response``; redirects are
    reported through this exception too.
    """

    def __init__(self, message: str, response: Response | None = None) -> None:
        super().__init__(message)
        self.response = response


class WebSocketProtocolError(WebSocketError):
    """
    Raised when a WebSocket protocol error occurs.

    This can happen if invalid frames are received or if a configured
    size limit is exceeded.
    """
    pass


class WebSocketClosedError(WebSocketError):
    """
    Raised when trying to use a closed WebSocket connection.
    """

    def __init__(self, code: int = 1006, reason: str = "") -> None:
        message = f"WebSocket is closed (code={code}, reason={reason})"
        super().__init__(message)
        self.code = code
        self.reason = reason
