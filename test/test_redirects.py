"""
Tests for following redirects in connect().
"""

from __future__ import annotations

import logging
from unittest import mock

import pytest

from wsdial import dial
from wsdial._collections import HTTPHeaderDict
from wsdial.dial import connect, connect_tls, connect_with_config
from wsdial.exceptions import (
    HandshakeInterrupted,
    InvalidHeader,
    LocationParseError,
    UrlError,
    WebSocketHandshakeError,
)
from wsdial.handshake import parse_response_head
from wsdial.protocol import WebSocketConfig
from wsdial.request import Request, Response
from wsdial.tls import PlainWrapper
from wsdial.util.url import parse_url

SUCCESS = (mock.sentinel.websocket, mock.sentinel.response)


def refusal(status, location=None):
    headers = HTTPHeaderDict()
    if location is not None:
        headers["Location"] = location
    return WebSocketHandshakeError(
        f"WebSocket handshake failed: {status}", response=Response(status, headers=headers)
    )


@pytest.fixture
def attempt():
    """Replaces the single connection attempt with a scripted one."""
    with mock.patch.object(dial, "_try_client_handshake") as patched:
        yield patched


def requested_urls(attempt):
    return [str(c.args[0].uri) for c in attempt.call_args_list]


class TestRedirects:
    """Tests for the redirect loop."""

    def test_no_redirect(self, attempt):
        attempt.return_value = SUCCESS
        assert connect("ws://example.com/") == SUCCESS
        assert attempt.call_count == 1

    def test_follows_redirects(self, attempt):
        """Test that each Location is requested in turn."""
        attempt.side_effect = [
            refusal(301, "ws://one.example/"),
            refusal(307, "wss://two.example/chat"),
            SUCCESS,
        ]
        assert connect_with_config("ws://example.com/", max_redirects=3) == SUCCESS
        assert requested_urls(attempt) == [
            "ws://example.com/",
            "ws://one.example/",
            "wss://two.example/chat",
        ]

    @pytest.mark.parametrize("max_redirects", [0, 1, 2, 5])
    def test_redirect_limit(self, attempt, max_redirects):
        """Test that at most max_redirects + 1 attempts are made."""
        responses = [refusal(302, f"ws://example.com/{i}") for i in range(10)]
        attempt.side_effect = responses

        with pytest.raises(WebSocketHandshakeError) as e:
            connect_with_config("ws://example.com/", max_redirects=max_redirects)

        assert attempt.call_count == max_redirects + 1
        assert e.value is responses[max_redirects]

    def test_exactly_at_limit(self, attempt):
        """Test that the last allowed redirect is still followed."""
        attempt.side_effect = [refusal(302, "ws://a.example/"), refusal(302, "ws://b.example/"), SUCCESS]
        assert connect_with_config("ws://example.com/", max_redirects=2) == SUCCESS
        assert attempt.call_count == 3

    def test_connect_follows_three(self, attempt):
        """Test the default redirect limit of connect()."""
        attempt.side_effect = [refusal(302, f"ws://example.com/{i}") for i in range(10)]
        with pytest.raises(WebSocketHandshakeError):
            connect("ws://example.com/")
        assert attempt.call_count == 4

    def test_missing_location(self, attempt, caplog):
        """Test that a redirect without Location ends the loop with the original error."""
        error = refusal(302)
        attempt.side_effect = [error, SUCCESS]

        with caplog.at_level(logging.WARNING, logger="wsdial.dial"):
            with pytest.raises(WebSocketHandshakeError) as e:
                connect("ws://example.com/")

        assert e.value is error
        assert attempt.call_count == 1
        assert "No `Location` found in redirect" in caplog.text

    @pytest.mark.parametrize("status", [200, 400, 403, 404, 426, 500])
    def test_other_status_not_followed(self, attempt, status):
        attempt.side_effect = [refusal(status, "ws://example.com/next"), SUCCESS]
        with pytest.raises(WebSocketHandshakeError):
            connect("ws://example.com/")
        assert attempt.call_count == 1

    def test_other_errors_not_retried(self, attempt):
        attempt.side_effect = [UrlError("Unable to connect to ws://example.com/"), SUCCESS]
        with pytest.raises(UrlError):
            connect("ws://example.com/")
        assert attempt.call_count == 1

    def test_relative_location(self, attempt):
        """Test that a relative Location is resolved against the current URL."""
        attempt.side_effect = [
            refusal(302, "/moved?x=1"),
            refusal(302, "elsewhere"),
            SUCCESS,
        ]
        connect("wss://example.com:8443/old/path")
        assert requested_urls(attempt) == [
            "wss://example.com:8443/old/path",
            "wss://example.com:8443/moved?x=1",
            "wss://example.com:8443/elsewhere",
        ]

    def test_invalid_location(self, attempt):
        attempt.side_effect = [refusal(302, "ws://exa mple.com/"), SUCCESS]
        with pytest.raises(LocationParseError):
            connect("ws://example.com/")

    @pytest.mark.parametrize("location", ["", "   "])
    def test_empty_location(self, attempt, location):
        """Test that an empty Location is refused instead of re-requesting the same URL."""
        attempt.side_effect = [refusal(302, location), SUCCESS]
        with pytest.raises(LocationParseError):
            connect("ws://example.com/a")
        assert attempt.call_count == 1

    def test_repeated_location(self, attempt):
        """Test that the first of several Location headers is followed."""
        response = parse_response_head(
            b"HTTP/1.1 302 Found\r\n"
            b"Location: ws://one.example/\r\n"
            b"Location: ws://two.example/\r\n\r\n"
        )
        attempt.side_effect = [WebSocketHandshakeError("redirect", response=response), SUCCESS]

        assert connect("ws://example.com/") == SUCCESS
        assert requested_urls(attempt) == ["ws://example.com/", "ws://one.example/"]

    def test_non_ascii_location(self, attempt):
        attempt.side_effect = [refusal(302, "ws://bücher.example/"), SUCCESS]
        with pytest.raises(InvalidHeader):
            connect("ws://example.com/")

    def test_request_kept_across_redirects(self, attempt):
        """Test that method, version and headers survive a redirect."""
        attempt.side_effect = [refusal(302, "ws://other.example/"), SUCCESS]
        original = Request.get(
            "ws://example.com/", {"Origin": "https://example.com", "Sec-WebSocket-Protocol": "chat"}
        )
        config = WebSocketConfig(max_message_size=1024)

        connect_with_config(original, config)

        first, second = (c.args for c in attempt.call_args_list)
        assert first[0].uri == original.uri
        assert second[0].uri == parse_url("ws://other.example/")
        assert second[0].method == "GET"
        assert second[0].version == original.version
        assert second[0].headers == original.headers
        assert first[1] is config and second[1] is config

    def test_logs_redirect(self, attempt, caplog):
        attempt.side_effect = [refusal(308, "ws://other.example/"), SUCCESS]
        with caplog.at_level(logging.DEBUG, logger="wsdial.dial"):
            connect("ws://example.com/")
        assert "Redirecting to ws://other.example/" in caplog.text

    @pytest.mark.parametrize("max_redirects", [-1, 1.5, "3", True])
    def test_invalid_limit(self, attempt, max_redirects):
        with pytest.raises(ValueError):
            connect_with_config("ws://example.com/", max_redirects=max_redirects)
        attempt.assert_not_called()

    def test_connect_tls_uses_wrapper(self, attempt):
        attempt.return_value = SUCCESS
        wrapper = PlainWrapper()
        connect_tls("ws://example.com/", wrapper)
        assert attempt.call_args.args[2] is wrapper


class TestBlockingInvariant:
    """Tests for the trap on a handshake that would block in blocking mode."""

    def test_interrupted_handshake_is_a_bug(self):
        stream = mock.Mock()
        with mock.patch.object(dial, "resolve_addresses", return_value=[mock.sentinel.addr]), \
                mock.patch.object(dial, "connect_to_some", return_value=stream), \
                mock.patch.object(
                    dial,
                    "client_with_config",
                    side_effect=HandshakeInterrupted(mock.Mock()),
                ):
            with pytest.raises(AssertionError, match="Bug: blocking handshake not blocked"):
                connect("ws://example.com/")

        stream.close.assert_called_once_with()
