"""
Methods to connect to a WebSocket as a client.

:func:`connect` and :func:`connect_with_config` do everything: resolve the
host, connect to the first reachable address, apply TLS for ``wss://``,
run the opening handshake and follow redirects. :func:`client` and
:func:`client_with_config` only run the handshake, over a stream the
caller has already set up.
"""

from __future__ import annotations

import logging
import typing

from .exceptions import (
    HandshakeInterrupted,
    InvalidHeader,
    LocationParseError,
    UrlError,
    WebSocketHandshakeError,
    WsDialError,
)
from .handshake import ClientHandshake
from .protocol import WebSocket, WebSocketConfig
from .request import Request, Response, into_client_request
from .stream import AutoStream, Mode, uri_mode
from .tls import TlsWrapper, default_wrapper
from .util.connection import Address, create_connection, resolve_addresses
from .util.url import Url, join_url

log = logging.getLogger(__name__)

DEFAULT_MAX_REDIRECTS = 3


def connect_with_config(
    request: typing.Any,
    config: WebSocketConfig | None = None,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
    wrapper: TlsWrapper | None = None,
) -> tuple[WebSocket, Response]:
    """
    Connect to the given WebSocket in blocking mode.

    The URL may be either ``ws://`` or ``wss://``. Redirects answered to
    the upgrade request are followed up to ``max_redirects`` times, always
    with the original method, version and headers.

    This function "just works" for those who want a simple blocking
    solution similar to :func:`socket.create_connection`. If you want a
    non-blocking or other custom stream, call :func:`client` instead.

    :param request: A URL, :class:`~wsdial.util.url.Url`, :class:`Request`
        or anything else :func:`~wsdial.request.into_client_request` accepts
    :param config: Passed unchanged to the :class:`WebSocket`
    :param max_redirects: How many redirects to follow before giving up
    :param wrapper: The TLS backend to use, :func:`default_wrapper` if omitted
    :return: The WebSocket and the server's handshake response
    :raises UrlError: If the URL is invalid or no address could be reached
    :raises WebSocketHandshakeError: If the server refused the upgrade,
        including redirects beyond the limit; the response is attached
    :raises TransportError: If the host name cannot be resolved
    """
    if isinstance(max_redirects, bool) or not isinstance(max_redirects, int) or max_redirects < 0:
        raise ValueError(f"max_redirects must be a non-negative int, got {max_redirects!r}")
    if wrapper is None:
        wrapper = default_wrapper()

    original = into_client_request(request)
    uri = original.uri

    for attempt in range(max_redirects + 1):
        request = original.with_uri(uri)

        try:
            return _try_client_handshake(request, config, wrapper)
        except WebSocketHandshakeError as e:
            response = e.response
            if response is None or not response.is_redirect or attempt >= max_redirects:
                raise

            location = response.get_location()
            if location is None:
                log.warning("No `Location` found in redirect")
                raise

            uri = _redirect_target(uri, location)
            log.debug("Redirecting to %s", uri)

    raise AssertionError("Bug in a redirect handling logic")


def connect(request: typing.Any) -> tuple[WebSocket, Response]:
    """
    Connect to the given WebSocket in blocking mode.

    Same as :func:`connect_with_config` with the default configuration,
    at most 3 redirects and the default TLS backend.
    """
    return connect_with_config(request, None, DEFAULT_MAX_REDIRECTS)


def connect_tls(request: typing.Any, wrapper: TlsWrapper) -> tuple[WebSocket, Response]:
    """
    Connect to the given WebSocket in blocking mode, using the given TLS
    backend. Useful when more than one backend is installed::

        from wsdial.tls import PyOpenSSLWrapper

        ws, response = connect_tls("wss://example.com/socket", PyOpenSSLWrapper())
    """
    return connect_with_config(request, None, DEFAULT_MAX_REDIRECTS, wrapper)


def _redirect_target(current: Url, location: str) -> Url:
    if not location.strip():
        raise LocationParseError(location)
    if not location.isascii():
        raise InvalidHeader(f"Location header is not ASCII: {location!r}")
    return join_url(current, location)


def _try_client_handshake(
    request: Request,
    config: WebSocketConfig | None,
    wrapper: TlsWrapper,
) -> tuple[WebSocket, Response]:
    uri = request.uri
    mode = uri_mode(uri)
    host = uri.host
    if not host:
        raise UrlError("No host name in the URL")
    port = uri.port if uri.port is not None else mode.default_port

    addrs = resolve_addresses(host, port)
    stream = connect_to_some(addrs, uri, mode, wrapper)
    stream.set_nodelay(True)

    try:
        return client_with_config(request, stream, config)
    except HandshakeInterrupted:
        stream.close()
        raise AssertionError("Bug: blocking handshake not blocked")
    except BaseException:
        stream.close()
        raise


def connect_to_some(
    addrs: typing.Iterable[Address],
    uri: Url,
    mode: Mode,
    wrapper: TlsWrapper,
) -> AutoStream:
    """
    Try ``addrs`` in order and return a stream for the first one that
    accepts the TCP connection and, for :attr:`Mode.TLS`, completes the
    TLS handshake. Remaining addresses are left untouched.

    TLS is always verified against the host of ``uri``, whatever address
    is being tried.

    :raises UrlError: If none of the addresses worked
    """
    domain = uri.host
    if not domain:
        raise UrlError("No host name in the URL")

    for addr in addrs:
        log.debug("Trying to contact %s at %s...", uri, addr[1])
        try:
            raw_stream = create_connection(addr)
        except OSError as e:
            log.debug("Connection to %s failed: %s", addr[1], e)
            continue

        try:
            return wrapper.wrap_stream(raw_stream, domain, mode)
        except (WsDialError, OSError) as e:
            raw_stream.close()
            log.debug("Setting up %s stream to %s failed: %s", mode.value, addr[1], e)

    raise UrlError(f"Unable to connect to {uri}")


def client_with_config(
    request: typing.Any,
    stream: typing.Any,
    config: WebSocketConfig | None = None,
) -> tuple[WebSocket, Response]:
    """
    Do the client handshake over the given stream given a web socket
    configuration. Passing ``None`` as configuration is equal to calling
    :func:`client`.

    Use this function if you need a non-blocking handshake or want to use
    a custom stream, such as a socket secured by another TLS library. Any
    object with socket-style ``send`` and ``recv`` methods will do. No
    connecting, TLS or redirect handling happens here.

    :raises HandshakeInterrupted: If ``stream`` is non-blocking and not
        ready; resume with ``exc.mid_handshake.handshake()``
    """
    return ClientHandshake.start(stream, into_client_request(request), config).handshake()


def client(request: typing.Any, stream: typing.Any) -> tuple[WebSocket, Response]:
    """
    Do the client handshake over the given stream.

    See :func:`client_with_config`.
    """
    return client_with_config(request, stream, None)
