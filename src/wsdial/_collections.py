"""
Collections for wsdial.

This module provides specialized container datatypes.
"""

from __future__ import annotations

import typing
from collections.abc import Mapping, MutableMapping

_HeaderSource = typing.Union[
    Mapping[str, str], typing.Iterable[typing.Tuple[str, str]], "HTTPHeaderDict"
]


class HTTPHeaderDict(MutableMapping[str, str]):
    """
    A case-insensitive multimap of HTTP headers.

    Lookups ignore case while the case of the first spelling of each name
    is preserved. Repeated headers are kept as separate values:
    ``headers["Set-Cookie"]`` joins them with ``", "`` while
    :meth:`getlist` and :meth:`iteritems` return them one by one.
    """

    def __init__(self, headers: _HeaderSource | None = None, **kwargs: str) -> None:
        self._container: dict[str, list[str]] = {}
        if headers is not None:
            if isinstance(headers, HTTPHeaderDict):
                self._copy_from(headers)
            else:
                self.extend(headers)
        if kwargs:
            self.extend(kwargs)

    def _copy_from(self, other: HTTPHeaderDict) -> None:
        for key_lower, values in other._container.items():
            self._container[key_lower] = list(values)

    def __getitem__(self, key: str) -> str:
        values = self._container[key.lower()]
        return ", ".join(values[1:])

    def __setitem__(self, key: str | bytes, value: str) -> None:
        if isinstance(key, bytes):
            key = key.decode("ascii")
        self._container[key.lower()] = [key, value]

    def __delitem__(self, key: str) -> None:
        del self._container[key.lower()]

    def __iter__(self) -> typing.Iterator[str]:
        return (values[0] for values in self._container.values())

    def __len__(self) -> int:
        return len(self._container)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return key.lower() in self._container

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mapping):
            return False
        if not isinstance(other, HTTPHeaderDict):
            other = HTTPHeaderDict(other)
        return dict(self.lower_items()) == dict(other.lower_items())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({dict(self.itermerged())})"

    def copy(self) -> HTTPHeaderDict:
        """Return a copy of this HTTPHeaderDict."""
        return HTTPHeaderDict(self)

    def add(self, key: str | bytes, value: str) -> None:
        """
        Add a header, keeping existing headers with the same name.

        :param key: The header name
        :param value: The header value
        """
        if isinstance(key, bytes):
            key = key.decode("ascii")

        values = self._container.setdefault(key.lower(), [key])
        values.append(value)

    def extend(self, headers: _HeaderSource | None = None, **kwargs: str) -> None:
        """
        Add headers from a mapping, another HTTPHeaderDict, or an iterable
        of ``(name, value)`` pairs.
        """
        if isinstance(headers, HTTPHeaderDict):
            for key, value in headers.iteritems():
                self.add(key, value)
        elif isinstance(headers, Mapping):
            for key, value in headers.items():
                self.add(key, value)
        elif headers is not None:
            for key, value in headers:
                self.add(key, value)

        for key, value in kwargs.items():
            self.add(key, value)

    def getlist(self, key: str) -> list[str]:
        """
        Get all values for a header as a list.

        :param key: The header name
        :return: List of values for the header, empty if absent
        """
        values = self._container.get(key.lower())
        if values is None:
            return []
        return values[1:]

    def discard(self, key: str) -> None:
        """
        Discard a header, if present.

        :param key: The header name
        """
        try:
            del self[key]
        except KeyError:
            pass

    def iteritems(self) -> typing.Iterator[tuple[str, str]]:
        """Iterate over all header lines, repeated names included."""
        for values in self._container.values():
            key = values[0]
            for value in values[1:]:
                yield key, value

    def itermerged(self) -> typing.Iterator[tuple[str, str]]:
        """Iterate over headers, joining repeated values."""
        for values in self._container.values():
            yield values[0], ", ".join(values[1:])

    def lower_items(self) -> typing.Iterator[tuple[str, str]]:
        """Get all headers as lowercase key-value pairs."""
        return ((key.lower(), value) for key, value in self.itermerged())

    def has_token(self, key: str, token: str) -> bool:
        """
        Check whether a comma-separated header contains ``token``,
        compared case-insensitively.
        """
        for value in self.getlist(key):
            for part in value.split(","):
                if part.strip().lower() == token.lower():
                    return True
        return False
