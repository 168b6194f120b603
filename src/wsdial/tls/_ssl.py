"""
TLS backend built on the standard library :mod:`ssl` module.
"""

from __future__ import annotations

import logging
import socket
import ssl
from dataclasses import dataclass

from ..exceptions import TlsError, TransportError
from ..stream import AutoStream, Mode
from ..util.ssl_ import server_hostname
from . import TlsWrapper

log = logging.getLogger(__name__)


def create_wsdial_context() -> ssl.SSLContext:
    """
    Creates the :class:`ssl.SSLContext` used for ``wss://`` connections.

    Certificates are checked against the system trust store and the server
    hostname must match; TLS 1.2 is the oldest protocol accepted.
    """
    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    # Disable compression to prevent CRIME attacks
    context.options |= getattr(ssl, "OP_NO_COMPRESSION", 0)
    return context


@dataclass(frozen=True)
class SslWrapper(TlsWrapper):
    """
    A wrapper around a plain TCP socket that utilizes the :mod:`ssl` module
    to apply TLS to it.

    :param ssl_context:
        A pre-made :class:`ssl.SSLContext`. If none is provided, one will
        be created using :func:`create_wsdial_context` for each connection.
    """

    name = "ssl"

    ssl_context: ssl.SSLContext | None = None

    def wrap_stream(self, sock: socket.socket, domain: str, mode: Mode) -> AutoStream:
        if mode is Mode.PLAIN:
            return AutoStream.plain(sock)

        context = self.ssl_context or create_wsdial_context()
        try:
            tls_sock = context.wrap_socket(sock, server_hostname=server_hostname(domain))
        except (ssl.SSLWantReadError, ssl.SSLWantWriteError):
            raise AssertionError("Bug: TLS handshake not blocked")
        except ssl.SSLError as e:
            raise TlsError(f"TLS handshake with {domain!r} failed: {e}") from e
        except OSError as e:
            raise TransportError(f"Connection lost during TLS handshake: {e}") from e

        log.debug("TLS established with %s using %s", domain, tls_sock.version())
        # wrap_socket() detached ``sock``; the SSLSocket now owns the descriptor.
        return AutoStream.tls(tls_sock, tls_sock, self.name)
