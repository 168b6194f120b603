"""
URL utilities for wsdial.
"""

from __future__ import annotations

import re
import typing
from urllib.parse import urljoin, urlsplit

from ..exceptions import LocationParseError
from .ssl_ import is_ipaddress

# Whitespace and control characters are never valid inside a request target.
_INVALID_CHARS_RE = re.compile(r"[\x00-\x20\x7f]")


class Url(
    typing.NamedTuple(
        "Url",
        [
            ("scheme", typing.Optional[str]),
            ("auth", typing.Optional[str]),
            ("host", typing.Optional[str]),
            ("port", typing.Optional[int]),
            ("path", typing.Optional[str]),
            ("query", typing.Optional[str]),
            ("fragment", typing.Optional[str]),
        ],
    )
):
    """
    Data structure for representing an HTTP or WebSocket URL. Used as a
    return value for :func:`parse_url`. Both the scheme and host are
    normalized as they are both case-insensitive according to RFC 3986.
    IPv6 hosts are stored without their brackets.
    """

    def __new__(  # type: ignore[no-untyped-def]
        cls,
        scheme: str | None = None,
        auth: str | None = None,
        host: str | None = None,
        port: int | None = None,
        path: str | None = None,
        query: str | None = None,
        fragment: str | None = None,
    ):
        if path and not path.startswith("/"):
            path = "/" + path
        if scheme is not None:
            scheme = scheme.lower()
        return super().__new__(cls, scheme, auth, host, port, path, query, fragment)

    @property
    def hostname(self) -> str | None:
        """For backwards-compatibility with urlparse. We're nice like that."""
        return self.host

    @property
    def request_uri(self) -> str:
        """Absolute path including the query string, as sent on the request line."""
        uri = self.path or "/"

        if self.query is not None:
            uri += "?" + self.query

        return uri

    @property
    def authority(self) -> str | None:
        """``host[:port]``, with IPv6 hosts re-bracketed."""
        if self.host is None:
            return None
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port is not None:
            return f"{host}:{self.port}"
        return host

    @property
    def netloc(self) -> str | None:
        """Network location including auth and port."""
        authority = self.authority
        if authority is None:
            return None
        if self.auth:
            return f"{self.auth}@{authority}"
        return authority

    @property
    def url(self) -> str:
        """
        Convert self into a url

        This function should more or less round-trip with :func:`.parse_url`.
        """
        scheme, auth, host, port, path, query, fragment = self
        url = ""

        # We use "is not None" we want things to happen with empty strings (or 0 port)
        if scheme is not None:
            url += scheme + "://"
        if host is not None:
            url += self.netloc or ""
        if path is not None:
            url += path
        if query is not None:
            url += "?" + query
        if fragment is not None:
            url += "#" + fragment

        return url

    def __str__(self) -> str:
        return self.url


def parse_url(url: str) -> Url:
    """
    Given a url, return a parsed :class:`.Url` namedtuple.

    Raises :class:`~wsdial.exceptions.LocationParseError` for empty input,
    embedded whitespace or control characters, a bracketed host that is
    not a valid IPv6 address, or a non-numeric or out-of-range port.

    Example::

        >>> parse_url('wss://example.com:8443/chat?room=1')
        Url(scheme='wss', auth=None, host='example.com', port=8443, ...)
    """
    if not url or _INVALID_CHARS_RE.search(url):
        raise LocationParseError(url)

    try:
        split = urlsplit(url)
        port = split.port
    except ValueError as e:
        raise LocationParseError(url) from e

    host = split.hostname
    if split.netloc and not host:
        raise LocationParseError(url)
    if host and "[" in split.netloc and not is_ipaddress(host):
        raise LocationParseError(url)

    auth = None
    if "@" in split.netloc:
        auth = split.netloc.rsplit("@", 1)[0]

    return Url(
        scheme=split.scheme or None,
        auth=auth,
        host=host,
        port=port,
        path=split.path or None,
        query=split.query if "?" in url.split("#", 1)[0] else None,
        fragment=split.fragment if "#" in url else None,
    )


def join_url(base: Url, reference: str) -> Url:
    """
    Resolve ``reference`` against ``base`` and parse the result.

    Absolute references replace the base entirely; relative ones keep the
    base scheme and authority.
    """
    if _INVALID_CHARS_RE.search(reference):
        raise LocationParseError(reference)
    return parse_url(urljoin(base.url, reference))
