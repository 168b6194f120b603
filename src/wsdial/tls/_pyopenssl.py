"""
TLS backend built on pyOpenSSL.

Unlike :mod:`wsdial.tls._ssl`, this backend never looks at the system trust
store: the roots come from an explicit PEM bundle, :mod:`certifi` unless
told otherwise. Hostname checking is switched on directly in OpenSSL's
verification parameters, since pyOpenSSL does not do it on its own.
"""

from __future__ import annotations

import ipaddress
import logging
import select
import socket
from dataclasses import dataclass

import certifi
from OpenSSL import SSL

from ..exceptions import TlsError, TransportError
from ..stream import AutoStream, Mode
from ..util.ssl_ import encode_server_name
from . import TlsWrapper

log = logging.getLogger(__name__)

# Matching on the CN is disabled in browsers, so we disable it, too.
DEFAULT_HOSTFLAGS = (
    SSL._lib.X509_CHECK_FLAG_NO_PARTIAL_WILDCARDS  # type: ignore[attr-defined]
    | SSL._lib.X509_CHECK_FLAG_NEVER_CHECK_SUBJECT  # type: ignore[attr-defined]
)

SSL_DEFAULT_OPTIONS = SSL.OP_NO_SSLv2 | SSL.OP_NO_SSLv3 | SSL.OP_NO_COMPRESSION


def _verify_cert(conn: SSL.Connection, x509: object, errno: int, depth: int, ok: int) -> bool:
    if not ok:
        log.debug("Certificate verification failed at depth %d: error %d", depth, errno)
    return bool(ok)


def create_pyopenssl_context(ca_pemfile: str | None = None) -> SSL.Context:
    """
    Creates an SSL context that verifies the peer against ``ca_pemfile``.

    :param ca_pemfile: Path to a PEM formatted bundle of trusted root
        certificates, defaults to the bundle shipped with certifi
    """
    context = SSL.Context(SSL.TLS_CLIENT_METHOD)
    context.set_options(SSL_DEFAULT_OPTIONS)
    context.set_min_proto_version(SSL.TLS1_2_VERSION)
    context.set_verify(SSL.VERIFY_PEER, _verify_cert)
    try:
        context.load_verify_locations(ca_pemfile or certifi.where())
    except SSL.Error as e:
        raise TlsError(f"Unable to load trusted certificates: {e}") from e
    return context


def _wait_for(sock: socket.socket, *, read: bool, timeout: float) -> bool:
    rlist, wlist = ([sock], []) if read else ([], [sock])
    readable, writable, _ = select.select(rlist, wlist, [], timeout)
    return bool(readable or writable)


class PyOpenSSLStream:
    """
    Socket-like front for an established :class:`OpenSSL.SSL.Connection`.

    A clean TLS shutdown by the peer reads as end of stream. When the
    socket has a timeout, reads and writes wait for readiness instead of
    failing with pyOpenSSL's want-read/want-write errors; on a non-blocking
    socket those errors are passed through.
    """

    def __init__(self, connection: SSL.Connection, sock: socket.socket) -> None:
        self.connection = connection
        self.socket = sock

    def recv(self, bufsize: int) -> bytes:
        try:
            return self.connection.recv(bufsize)
        except SSL.ZeroReturnError:
            return b""
        except SSL.SysCallError as e:
            if e.args and e.args[0] in (-1, 0):
                # Peer went away without a close_notify
                return b""
            raise OSError(f"read error: {e!r}") from e
        except SSL.WantReadError:
            timeout = self.socket.gettimeout()
            if not timeout:
                raise
            if not _wait_for(self.socket, read=True, timeout=timeout):
                raise socket.timeout("The read operation timed out")
            return self.recv(bufsize)
        except SSL.Error as e:
            raise TlsError(f"read error: {e!r}") from e

    def send(self, data: bytes) -> int:
        while True:
            try:
                return self.connection.send(data)
            except SSL.WantWriteError:
                timeout = self.socket.gettimeout()
                if not timeout:
                    raise
                if not _wait_for(self.socket, read=False, timeout=timeout):
                    raise socket.timeout("The write operation timed out")
            except SSL.SysCallError as e:
                raise OSError(f"write error: {e!r}") from e
            except SSL.Error as e:
                raise TlsError(f"write error: {e!r}") from e

    def sendall(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            sent = self.send(view.tobytes())
            view = view[sent:]

    def settimeout(self, timeout: float | None) -> None:
        self.socket.settimeout(timeout)

    def gettimeout(self) -> float | None:
        return self.socket.gettimeout()

    def close(self) -> None:
        try:
            self.connection.shutdown()
        except SSL.Error:
            pass
        self.socket.close()


@dataclass(frozen=True)
class PyOpenSSLWrapper(TlsWrapper):
    """
    A wrapper around a plain TCP socket that utilizes pyOpenSSL to apply
    TLS to it.

    :param ca_pemfile:
        Path to a PEM bundle of trusted root certificates. Defaults to
        :func:`certifi.where`.
    """

    name = "pyopenssl"

    ca_pemfile: str | None = None

    def wrap_stream(self, sock: socket.socket, domain: str, mode: Mode) -> AutoStream:
        if mode is Mode.PLAIN:
            return AutoStream.plain(sock)

        context = create_pyopenssl_context(self.ca_pemfile)
        connection = SSL.Connection(context, sock)
        self._set_peer_identity(connection, domain)
        connection.set_connect_state()

        try:
            connection.do_handshake()
        except (SSL.WantReadError, SSL.WantWriteError):
            raise AssertionError("Bug: TLS handshake not blocked")
        except SSL.SysCallError as e:
            raise TransportError(f"Connection lost during TLS handshake: {e!r}") from e
        except SSL.Error as e:
            raise TlsError(f"TLS handshake with {domain!r} failed: {e!r}") from e

        log.debug(
            "TLS established with %s using %s",
            domain,
            connection.get_protocol_version_name(),
        )
        return AutoStream.tls(PyOpenSSLStream(connection, sock), sock, self.name)

    @staticmethod
    def _set_peer_identity(connection: SSL.Connection, domain: str) -> None:
        # https://wiki.openssl.org/index.php/Hostname_validation
        param = SSL._lib.SSL_get0_param(connection._ssl)  # type: ignore[attr-defined]
        SSL._lib.X509_VERIFY_PARAM_set_hostflags(param, DEFAULT_HOSTFLAGS)  # type: ignore[attr-defined]

        try:
            ip = ipaddress.ip_address(domain.split("%")[0]).packed
        except ValueError:
            host_name = encode_server_name(domain)
            connection.set_tlsext_host_name(host_name)
            ok = SSL._lib.X509_VERIFY_PARAM_set1_host(  # type: ignore[attr-defined]
                param, host_name, len(host_name)
            )
        else:
            # RFC 6066: Literal IPv4 and IPv6 addresses are not permitted in "HostName",
            # so we don't call set_tlsext_host_name.
            ok = SSL._lib.X509_VERIFY_PARAM_set1_ip(param, ip, len(ip))  # type: ignore[attr-defined]

        if ok != 1:
            raise TlsError(f"Unable to verify peer identity {domain!r}")
