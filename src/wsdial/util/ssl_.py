"""
SSL utilities for wsdial.
"""

from __future__ import annotations

import socket

import idna

from ..exceptions import TlsError


def is_ipaddress(hostname: str | bytes) -> bool:
    """
    Detects whether the hostname given is an IP address.

    Args:
        hostname: The hostname to check.

    Returns:
        True if the hostname is an IP address, False otherwise.
    """
    if isinstance(hostname, bytes):
        # IDN A-label bytes are ASCII compatible.
        hostname = hostname.decode("ascii")

    # IPv6 addresses with zone IDs contain '%'
    if "%" in hostname:
        hostname = hostname.split("%")[0]

    for family in (socket.AF_INET, socket.AF_INET6):
        try:
            socket.inet_pton(family, hostname)
            return True
        except (OSError, ValueError):
            continue
    return False


def encode_server_name(domain: str) -> bytes:
    """
    Encode ``domain`` for the TLS server-name extension.

    Internationalized names are converted to their IDNA A-label form; a
    name that cannot be encoded is reported as a :class:`TlsError`.
    """
    domain = domain.rstrip(".")
    try:
        return idna.encode(domain, uts46=True)
    except idna.IDNAError as e:
        raise TlsError(f"Invalid server name {domain!r}: {e}") from e


def server_hostname(domain: str) -> str:
    """
    The ``server_hostname`` to hand to :meth:`ssl.SSLContext.wrap_socket`.

    IP literals pass through untouched; the ssl module matches them against
    the certificate's IP entries and leaves SNI out for them.
    """
    if is_ipaddress(domain):
        return domain
    return encode_server_name(domain).decode("ascii")
