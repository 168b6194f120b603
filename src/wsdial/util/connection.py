from __future__ import annotations

import socket
import typing

from ..exceptions import TransportError

# (family, sockaddr) as produced by getaddrinfo
Address = typing.Tuple[int, typing.Tuple[typing.Any, ...]]


def _has_ipv6() -> bool:
    """Returns True if the system can bind an IPv6 address."""
    if not socket.has_ipv6:
        return False
    sock = None
    try:
        sock = socket.socket(socket.AF_INET6)
        sock.bind(("::1", 0))
        return True
    except OSError:
        return False
    finally:
        if sock:
            sock.close()


HAS_IPV6 = _has_ipv6()


def allowed_gai_family() -> socket.AddressFamily:
    """This function is designed to work in the context of
    getaddrinfo, where family=socket.AF_UNSPEC is the default and
    will perform a DNS search for both IPv6 and IPv4 records."""

    family = socket.AF_INET
    if HAS_IPV6:
        family = socket.AF_UNSPEC
    return family


def resolve_addresses(host: str, port: int) -> list[Address]:
    """
    Resolve ``host`` and ``port`` to the TCP addresses to try, in the
    order the resolver returned them. Duplicates are dropped.
    """
    try:
        infos = socket.getaddrinfo(
            host, port, allowed_gai_family(), socket.SOCK_STREAM
        )
    except (socket.gaierror, UnicodeError) as e:
        raise TransportError(f"Failed to resolve {host!r}: {e}") from e

    addrs: list[Address] = []
    for family, _type, _proto, _canonname, sockaddr in infos:
        addr = (family, sockaddr)
        if addr not in addrs:
            addrs.append(addr)
    return addrs


def create_connection(address: Address) -> socket.socket:
    """
    Open a blocking TCP connection to a single resolved address.

    Raises :class:`OSError` when the connection cannot be established; the
    half-open socket is closed first.
    """
    family, sockaddr = address
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.connect(sockaddr)
    except BaseException:
        sock.close()
        raise
    return sock


def set_nodelay(sock: socket.socket, nodelay: bool = True) -> None:
    """Enable or disable Nagle's algorithm on a TCP socket."""
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, int(nodelay))
