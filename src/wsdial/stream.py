"""
Streams used by the WebSocket client.

:class:`AutoStream` is the one transport type handed to the handshake and
back to the caller, whether the connection is plain TCP or secured by one
of the TLS backends in :mod:`wsdial.tls`.
"""

from __future__ import annotations

import enum
import socket
import typing

from .exceptions import URLSchemeUnknown
from .util.connection import set_nodelay
from .util.url import Url, parse_url

if typing.TYPE_CHECKING:
    from types import TracebackType


class Mode(enum.Enum):
    """Whether a connection runs over plain TCP or over TLS."""

    PLAIN = "plain"
    TLS = "tls"

    @property
    def default_port(self) -> int:
        return 443 if self is Mode.TLS else 80


def uri_mode(uri: Url | str) -> Mode:
    """
    Get the mode of the given URL.

    ``ws`` maps to :attr:`Mode.PLAIN` and ``wss`` to :attr:`Mode.TLS`. This
    is useful on its own to callers building their own connectors.

    :raises URLSchemeUnknown: For any other scheme, or none at all
    """
    if isinstance(uri, str):
        uri = parse_url(uri)

    if uri.scheme == "ws":
        return Mode.PLAIN
    if uri.scheme == "wss":
        return Mode.TLS
    raise URLSchemeUnknown(uri.scheme)


class TransportStream(typing.Protocol):
    """The socket-like surface every :class:`AutoStream` variant provides."""

    def recv(self, bufsize: int) -> bytes: ...

    def send(self, data: bytes) -> int: ...

    def sendall(self, data: bytes) -> None: ...

    def settimeout(self, timeout: float | None) -> None: ...

    def gettimeout(self) -> float | None: ...

    def close(self) -> None: ...


class AutoStream:
    """
    TCP stream switcher (plain/TLS).

    Forwards reads and writes to whichever variant it was built with. The
    variant is chosen once, when the connection is established, and never
    changes afterwards.
    """

    PLAIN = "plain"

    __slots__ = ("_variant", "_stream", "_sock")

    def __init__(self, variant: str, stream: TransportStream, sock: socket.socket) -> None:
        self._variant = variant
        self._stream = stream
        self._sock = sock

    @classmethod
    def plain(cls, sock: socket.socket) -> AutoStream:
        """Use the TCP socket as is."""
        return cls(cls.PLAIN, sock, sock)

    @classmethod
    def tls(cls, stream: TransportStream, sock: socket.socket, backend: str) -> AutoStream:
        """
        Use a TLS stream layered on ``sock``. ``backend`` names the library
        that produced it and becomes the variant.
        """
        if backend == cls.PLAIN:
            raise ValueError("A TLS stream needs a backend name")
        return cls(backend, stream, sock)

    @property
    def variant(self) -> str:
        return self._variant

    @property
    def is_tls(self) -> bool:
        return self._variant != self.PLAIN

    def get_ref(self) -> socket.socket:
        """
        The underlying TCP socket. For the ``ssl`` backend this is the
        :class:`ssl.SSLSocket`, which took over the TCP socket's descriptor.
        """
        return self._sock

    def get_tls(self) -> TransportStream | None:
        """The backend's TLS stream, or ``None`` for plain connections."""
        if self.is_tls:
            return self._stream
        return None

    def recv(self, bufsize: int) -> bytes:
        return self._stream.recv(bufsize)

    read = recv

    def send(self, data: bytes) -> int:
        return self._stream.send(data)

    def sendall(self, data: bytes) -> None:
        self._stream.sendall(data)

    def write(self, data: bytes) -> int:
        self._stream.sendall(data)
        return len(data)

    def flush(self) -> None:
        # Sockets are unbuffered; every write has already been handed to the kernel.
        pass

    def set_nodelay(self, nodelay: bool = True) -> None:
        set_nodelay(self._sock, nodelay)

    def settimeout(self, timeout: float | None) -> None:
        self._stream.settimeout(timeout)

    def gettimeout(self) -> float | None:
        return self._stream.gettimeout()

    def setblocking(self, flag: bool) -> None:
        self._stream.settimeout(None if flag else 0.0)

    def fileno(self) -> int:
        return self._sock.fileno()

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> AutoStream:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"AutoStream.{self._variant}"
