"""
Backends for TLS connections for WebSocket clients.

Every backend implements :class:`TlsWrapper`: take a freshly connected TCP
socket and return an :class:`~wsdial.stream.AutoStream`, plain or secured
depending on the :class:`~wsdial.stream.Mode`. The connector and the
redirect driver only ever talk to this interface, so they never need to
know which TLS library produced the stream.

Two TLS backends ship with wsdial:

* ``"ssl"``: :class:`SslWrapper`, built on the standard library :mod:`ssl`
  module and the system trust store. This is the default.
* ``"pyopenssl"``: :class:`PyOpenSSLWrapper`, built on pyOpenSSL with an
  explicit root certificate bundle from :mod:`certifi`. Install with
  ``pip install wsdial[pyopenssl]``.

An interpreter built without :mod:`ssl` falls back to :class:`PlainWrapper`,
which only handles ``ws://`` URLs.
"""

from __future__ import annotations

import abc
import importlib.util
import logging
import socket
import typing

from ..exceptions import TlsError
from ..stream import AutoStream, Mode

log = logging.getLogger(__name__)

try:
    import ssl  # noqa: F401
except ImportError:  # Python built without OpenSSL
    HAS_SSL = False
else:
    HAS_SSL = True

HAS_PYOPENSSL = importlib.util.find_spec("OpenSSL") is not None


class TlsWrapper(abc.ABC):
    """
    A wrapper that takes a plain TCP stream and encapsulates it in a TLS
    stream.
    """

    #: Short backend name, also used as the :attr:`AutoStream.variant`.
    name: typing.ClassVar[str]

    @abc.abstractmethod
    def wrap_stream(self, sock: socket.socket, domain: str, mode: Mode) -> AutoStream:
        """
        Wrap the given socket with TLS, establishing a secured connection.

        If ``mode`` is :attr:`Mode.PLAIN` the returned stream simply forwards
        to ``sock`` and no TLS is applied. Otherwise the handshake runs to
        completion before returning, verifying the peer against ``domain``.

        :raises TlsError: If the TLS session cannot be negotiated
        :raises TransportError: If the socket fails during the handshake
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class PlainWrapper(TlsWrapper):
    """Passes plain connections through and refuses TLS."""

    name = "plain"

    def wrap_stream(self, sock: socket.socket, domain: str, mode: Mode) -> AutoStream:
        if mode is Mode.PLAIN:
            return AutoStream.plain(sock)
        raise TlsError("TLS support not compiled in.")


if HAS_SSL:
    from ._ssl import SslWrapper

if HAS_PYOPENSSL:
    from ._pyopenssl import PyOpenSSLWrapper


def available_wrappers() -> list[str]:
    """Names of the backends usable in this environment, default first."""
    names = []
    if HAS_SSL:
        names.append(SslWrapper.name)
        if HAS_PYOPENSSL:
            names.append(PyOpenSSLWrapper.name)
    names.append(PlainWrapper.name)
    return names


def get_wrapper(name: str) -> TlsWrapper:
    """
    Look a backend up by name.

    :raises ValueError: If no backend has that name
    :raises ImportError: If the backend's library is not installed
    """
    if name == PlainWrapper.name:
        return PlainWrapper()
    if name == "ssl":
        if not HAS_SSL:
            raise ImportError("The 'ssl' backend needs Python built with the ssl module")
        return SslWrapper()
    if name == "pyopenssl":
        if not (HAS_SSL and HAS_PYOPENSSL):
            raise ImportError(
                "The 'pyopenssl' backend needs pyOpenSSL, install wsdial[pyopenssl]"
            )
        return PyOpenSSLWrapper()
    raise ValueError(f"Unknown TLS backend {name!r}")


def default_wrapper() -> TlsWrapper:
    """The backend used when the caller does not pick one."""
    if HAS_SSL:
        return SslWrapper()
    log.debug("ssl module unavailable, wss:// URLs will be refused")
    return PlainWrapper()


__all__ = [
    "HAS_PYOPENSSL",
    "HAS_SSL",
    "PlainWrapper",
    "TlsWrapper",
    "available_wrappers",
    "default_wrapper",
    "get_wrapper",
]
if HAS_SSL:
    __all__.append("SslWrapper")
if HAS_PYOPENSSL:
    __all__.append("PyOpenSSLWrapper")
