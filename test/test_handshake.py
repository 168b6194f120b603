"""
Tests for the client side of the opening handshake.
"""

from __future__ import annotations

import base64
import socket
from unittest import mock

import pytest

from wsdial.dial import client, client_with_config
from wsdial.exceptions import (
    HandshakeInterrupted,
    ProtocolError,
    TransportError,
    URLSchemeUnknown,
    UrlError,
    WebSocketHandshakeError,
)
from wsdial.handshake import (
    ClientHandshake,
    build_request_head,
    derive_accept_key,
    generate_key,
    parse_response_head,
)
from wsdial.protocol import WebSocket, WebSocketConfig, WebSocketFrameType
from wsdial.request import Request
from wsdial.util.url import Url, parse_url

from dummyserver import read_head, server_frame, upgrade_response

# The sample nonce from RFC 6455, section 1.3
KEY = "dGhlIHNhbXBsZSBub25jZQ=="
ACCEPT = "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


def keyed_request(url="ws://example.com/chat", **headers):
    return Request.get(url, {"Sec-WebSocket-Key": KEY, **headers})


def response_head(status_line="HTTP/1.1 101 Switching Protocols", **headers):
    lines = [status_line] + [f"{name.replace('_', '-')}: {value}" for name, value in headers.items()]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


def accepted(**extra):
    return response_head(
        Upgrade="websocket", Connection="Upgrade", Sec_WebSocket_Accept=ACCEPT, **extra
    )


class TestKeys:
    """Tests for the Sec-WebSocket-Key/Accept pair."""

    def test_derive_accept_key(self):
        assert derive_accept_key(KEY) == ACCEPT

    def test_generate_key(self):
        key = generate_key()
        assert len(base64.b64decode(key)) == 16
        assert generate_key() != key


class TestBuildRequestHead:
    """Tests for serializing the upgrade request."""

    def test_head(self):
        request = Request.get("ws://example.com:9001/chat?room=1", {"Origin": "https://example.com"})
        head = build_request_head(request, KEY).decode("latin-1")

        assert head.split("\r\n") == [
            "GET /chat?room=1 HTTP/1.1",
            "Host: example.com:9001",
            "Connection: Upgrade",
            "Upgrade: websocket",
            "Sec-WebSocket-Version: 13",
            f"Sec-WebSocket-Key: {KEY}",
            "Origin: https://example.com",
            "",
            "",
        ]

    def test_default_path_and_ipv6_host(self):
        head = build_request_head(Request.get("ws://[::1]:9001"), KEY).decode("latin-1")
        assert head.startswith("GET / HTTP/1.1\r\nHost: [::1]:9001\r\n")

    def test_caller_headers_win(self):
        """Test that upgrade headers the caller set are not duplicated."""
        request = Request.get("ws://example.com/", {"host": "proxy.example", "Sec-WebSocket-Version": "8"})
        head = build_request_head(request, KEY).decode("latin-1")

        assert "Host: proxy.example\r\n" in head
        assert "Sec-WebSocket-Version: 8\r\n" in head
        assert head.lower().count("host:") == 1

    def test_repeated_headers(self):
        request = Request.get(
            "ws://example.com/", [("Sec-WebSocket-Protocol", "chat"), ("Sec-WebSocket-Protocol", "superchat")]
        )
        head = build_request_head(request, KEY).decode("latin-1")
        assert "Sec-WebSocket-Protocol: chat\r\nSec-WebSocket-Protocol: superchat\r\n" in head

    @pytest.mark.parametrize(
        "headers",
        [{"X-Evil": "a\r\nInjected: yes"}, {"Bad Name": "x"}, {"X-Evil": "a\nb"}],
    )
    def test_header_injection(self, headers):
        with pytest.raises(ProtocolError):
            build_request_head(Request.get("ws://example.com/", headers), KEY)


class TestParseResponseHead:
    """Tests for parsing the handshake response."""

    def test_parse(self):
        response = parse_response_head(accepted(X_Extra="1"))
        assert response.status == 101
        assert response.reason == "Switching Protocols"
        assert response.version == "HTTP/1.1"
        assert response.headers["sec-websocket-accept"] == ACCEPT
        assert response.headers["X-Extra"] == "1"

    def test_no_reason(self):
        assert parse_response_head(b"HTTP/1.1 101\r\n\r\n").reason == ""

    @pytest.mark.parametrize(
        "head",
        [b"HTTP/1.0 101 Switching Protocols\r\n\r\n", b"garbage\r\n\r\n", b"HTTP/1.1 abc OK\r\n\r\n"],
    )
    def test_invalid(self, head):
        with pytest.raises(ProtocolError):
            parse_response_head(head)


class TestClientHandshakeStart:
    """Tests for validating the request before anything is sent."""

    def test_nothing_sent_yet(self):
        stream = mock.Mock()
        mid = ClientHandshake.start(stream, keyed_request())
        assert mid.key == KEY
        stream.send.assert_not_called()

    def test_generates_key(self):
        mid = ClientHandshake.start(mock.Mock(), Request.get("ws://example.com/"))
        assert len(base64.b64decode(mid.key)) == 16

    def test_wrong_method(self):
        request = Request(method="POST", uri=parse_url("ws://example.com/"))
        with pytest.raises(ProtocolError):
            ClientHandshake.start(mock.Mock(), request)

    def test_wrong_version(self):
        request = Request(method="GET", uri=parse_url("ws://example.com/"), version="HTTP/1.0")
        with pytest.raises(ProtocolError):
            ClientHandshake.start(mock.Mock(), request)

    def test_wrong_scheme(self):
        with pytest.raises(URLSchemeUnknown):
            ClientHandshake.start(mock.Mock(), Request.get("https://example.com/"))

    def test_no_host(self):
        with pytest.raises(UrlError):
            ClientHandshake.start(mock.Mock(), Request.get(Url("ws", path="/")))


class TestHandshake:
    """Tests for the handshake exchange over a real stream."""

    def test_success(self, socket_pair):
        client_sock, server_sock = socket_pair
        server_sock.sendall(accepted())

        ws, response = client(keyed_request(), client_sock)

        assert isinstance(ws, WebSocket)
        assert ws.get_ref() is client_sock
        assert response.status == 101
        head = read_head(server_sock)
        assert head.startswith(b"GET /chat HTTP/1.1\r\n")
        assert f"Sec-WebSocket-Key: {KEY}".encode() in head

    def test_data_after_head_is_kept(self, socket_pair):
        """Test that frames sent right after the 101 are not lost."""
        client_sock, server_sock = socket_pair
        server_sock.sendall(accepted() + server_frame(WebSocketFrameType.TEXT, b"welcome"))

        ws, _ = client(keyed_request(), client_sock)
        assert ws.read().text == "welcome"

    def test_config_passed_through(self, socket_pair):
        client_sock, server_sock = socket_pair
        server_sock.sendall(accepted())
        config = WebSocketConfig(max_frame_size=10)

        ws, _ = client_with_config(keyed_request(), client_sock, config)
        assert ws.config is config

    def test_against_loopback_server(self, loopback_server):
        """Test a handshake with a server computing its own accept key."""

        def handler(conn, server):
            head = read_head(conn)
            server.heads.append(head)
            conn.sendall(upgrade_response(head))

        server = loopback_server(handler)
        sock = socket.create_connection(("127.0.0.1", server.port), timeout=5)
        with sock:
            ws, response = client(server.url("/echo"), sock)
            assert response.status == 101
        assert server.heads[0].startswith(b"GET /echo HTTP/1.1\r\n")

    def test_refused(self, socket_pair):
        """Test that a non-101 status is reported with the response attached."""
        client_sock, server_sock = socket_pair
        server_sock.sendall(
            b"HTTP/1.1 302 Found\r\nLocation: ws://example.com/new\r\n"
            b"Content-Length: 5\r\n\r\nmovedEXTRA"
        )

        with pytest.raises(WebSocketHandshakeError) as e:
            client(keyed_request(), client_sock)

        response = e.value.response
        assert response.status == 302
        assert response.is_redirect
        assert response.get_location() == "ws://example.com/new"
        assert response.body == b"moved"

    @pytest.mark.parametrize(
        "head",
        [
            response_head(Connection="Upgrade", Sec_WebSocket_Accept=ACCEPT),
            response_head(Upgrade="websocket", Sec_WebSocket_Accept=ACCEPT),
            response_head(Upgrade="websocket", Connection="Upgrade", Sec_WebSocket_Accept="wrong"),
            response_head(Upgrade="websocket", Connection="Upgrade"),
            accepted(Sec_WebSocket_Protocol="chat"),
        ],
    )
    def test_invalid_upgrade(self, socket_pair, head):
        client_sock, server_sock = socket_pair
        server_sock.sendall(head)
        with pytest.raises(ProtocolError):
            client(keyed_request(), client_sock)

    def test_connection_token_list(self, socket_pair):
        client_sock, server_sock = socket_pair
        server_sock.sendall(
            response_head(Upgrade="WebSocket", Connection="keep-alive, Upgrade", Sec_WebSocket_Accept=ACCEPT)
        )
        _, response = client(keyed_request(), client_sock)
        assert response.status == 101

    def test_subprotocol_offered(self, socket_pair):
        client_sock, server_sock = socket_pair
        server_sock.sendall(accepted(Sec_WebSocket_Protocol="superchat"))
        request = keyed_request(**{"Sec-WebSocket-Protocol": "chat, superchat"})
        _, response = client(request, client_sock)
        assert response.headers["Sec-WebSocket-Protocol"] == "superchat"

    def test_connection_closed(self, socket_pair):
        client_sock, server_sock = socket_pair
        server_sock.sendall(b"HTTP/1.1 101 Switching")
        server_sock.shutdown(socket.SHUT_WR)
        with pytest.raises(ProtocolError):
            client(keyed_request(), client_sock)

    def test_io_error(self):
        stream = mock.Mock()
        stream.send.side_effect = ConnectionResetError()
        with pytest.raises(TransportError):
            client(keyed_request(), stream)


class TestNonBlockingHandshake:
    """Tests for resuming a handshake over a non-blocking stream."""

    def test_resume(self, socket_pair):
        client_sock, server_sock = socket_pair
        client_sock.setblocking(False)

        with pytest.raises(HandshakeInterrupted) as e:
            client(keyed_request(), client_sock)
        mid = e.value.mid_handshake

        # The request went out in full before the stream blocked
        assert read_head(server_sock).startswith(b"GET /chat HTTP/1.1\r\n")

        # Still nothing to read: interrupted again, same handshake
        with pytest.raises(HandshakeInterrupted) as e:
            mid.handshake()
        assert e.value.mid_handshake is mid

        head = accepted()
        server_sock.sendall(head[:20])
        with pytest.raises(HandshakeInterrupted):
            mid.handshake()

        server_sock.sendall(head[20:])
        ws, response = mid.handshake()
        assert response.status == 101
        assert ws.get_ref() is client_sock

    def test_partial_send(self):
        """Test that a stream accepting a few bytes at a time gets the whole request."""
        sent = []
        stream = mock.Mock()

        def send(data):
            if len(sent) % 2:
                sent.append(b"")
                raise BlockingIOError()
            sent.append(data[:7])
            return 7

        stream.send.side_effect = send
        stream.recv.side_effect = BlockingIOError()

        mid = ClientHandshake.start(stream, keyed_request())
        for _ in range(1000):
            try:
                mid.handshake()
            except HandshakeInterrupted:
                if not stream.recv.called:
                    continue
                break

        assert b"".join(sent) == build_request_head(keyed_request(), KEY)
