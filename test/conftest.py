from __future__ import annotations

import socket
import typing

import pytest

from dummyserver import LoopbackServer


@pytest.fixture
def loopback_server() -> typing.Iterator[typing.Callable[..., LoopbackServer]]:
    servers: list[LoopbackServer] = []

    def start(handler: typing.Callable[[socket.socket, LoopbackServer], None]) -> LoopbackServer:
        server = LoopbackServer(handler)
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.stop()


@pytest.fixture
def closed_port() -> int:
    """A loopback port nobody is listening on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def socket_pair() -> typing.Iterator[tuple[socket.socket, socket.socket]]:
    client_sock, server_sock = socket.socketpair()
    client_sock.settimeout(5)
    server_sock.settimeout(5)
    yield client_sock, server_sock
    client_sock.close()
    server_sock.close()
