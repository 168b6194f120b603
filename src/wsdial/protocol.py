"""
WebSocket protocol implementation for wsdial.

This module implements the client side of the WebSocket framing protocol
as defined in RFC 6455, on top of any blocking stream returned by the
handshake.
"""

from __future__ import annotations

import logging
import os
import struct
import typing
from dataclasses import dataclass
from enum import IntEnum

from .exceptions import WebSocketClosedError, WebSocketProtocolError

if typing.TYPE_CHECKING:
    from types import TracebackType

log = logging.getLogger(__name__)


class WebSocketFrameType(IntEnum):
    """WebSocket frame types as defined in RFC 6455."""

    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA

    @property
    def is_control(self) -> bool:
        return self >= 0x8


class WebSocketCloseCode(IntEnum):
    """WebSocket close codes as defined in RFC 6455."""

    NORMAL = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    UNSUPPORTED_DATA = 1003
    NO_STATUS = 1005
    ABNORMAL = 1006
    INVALID_PAYLOAD = 1007
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009
    EXTENSION_REQUIRED = 1010
    UNEXPECTED_CONDITION = 1011
    TLS_HANDSHAKE_FAILED = 1015


@dataclass(frozen=True)
class WebSocketConfig:
    """
    Tuning options for a :class:`WebSocket`.

    The connection layer passes this through untouched.

    :param max_message_size: Largest reassembled message accepted, in bytes
    :param max_frame_size: Largest single frame payload accepted, in bytes
    :param accept_masked_frames: Tolerate masked frames from the server,
        which RFC 6455 forbids
    :param read_buffer_size: How much to ask the stream for per read
    """

    max_message_size: int | None = 64 << 20
    max_frame_size: int | None = 16 << 20
    accept_masked_frames: bool = False
    read_buffer_size: int = 4096


@dataclass
class WebSocketFrame:
    """
    Represents a WebSocket frame.
    """

    opcode: WebSocketFrameType
    payload: bytes
    fin: bool = True
    rsv1: bool = False
    rsv2: bool = False
    rsv3: bool = False

    @classmethod
    def create_close(
        cls, code: int = WebSocketCloseCode.NORMAL, reason: str = ""
    ) -> WebSocketFrame:
        payload = struct.pack("!H", code) + reason.encode("utf-8")
        return cls(WebSocketFrameType.CLOSE, payload)


@dataclass
class WebSocketMessage:
    """
    Represents a complete WebSocket message.

    A WebSocket message can consist of multiple frames.
    """

    opcode: WebSocketFrameType
    data: bytes

    @property
    def is_text(self) -> bool:
        return self.opcode == WebSocketFrameType.TEXT

    @property
    def is_binary(self) -> bool:
        return self.opcode == WebSocketFrameType.BINARY

    @property
    def is_close(self) -> bool:
        return self.opcode == WebSocketFrameType.CLOSE

    @property
    def text(self) -> str:
        """
        Get the message data as text.

        :raises UnicodeDecodeError: If the data is not valid UTF-8
        """
        return self.data.decode("utf-8")

    @property
    def close_code(self) -> int:
        """
        Get the close code from a close message.

        :raises ValueError: If this is not a close message
        """
        if not self.is_close:
            raise ValueError("Not a close message")
        if len(self.data) < 2:
            return WebSocketCloseCode.NO_STATUS
        return struct.unpack("!H", self.data[:2])[0]

    @property
    def close_reason(self) -> str:
        if not self.is_close:
            raise ValueError("Not a close message")
        return self.data[2:].decode("utf-8", errors="replace")


def _apply_mask(data: bytes, mask_key: bytes) -> bytes:
    """
    Apply a WebSocket mask to data.

    :param data: The data to mask
    :param mask_key: The 4-byte mask key
    :return: The masked data
    """
    if not data:
        return data
    # XOR the whole payload at once, repeating the key to the payload length
    key = (mask_key * (len(data) // 4 + 1))[: len(data)]
    return (int.from_bytes(data, "big") ^ int.from_bytes(key, "big")).to_bytes(len(data), "big")


def encode_frame(frame: WebSocketFrame, mask: bool = True) -> bytes:
    """
    Encode a WebSocket frame to bytes. Client frames are always masked.
    """
    first_byte = (
        (0x80 if frame.fin else 0)
        | (0x40 if frame.rsv1 else 0)
        | (0x20 if frame.rsv2 else 0)
        | (0x10 if frame.rsv3 else 0)
        | (frame.opcode & 0x0F)
    )
    mask_bit = 0x80 if mask else 0

    payload_len = len(frame.payload)
    if payload_len < 126:
        header = struct.pack("!BB", first_byte, payload_len | mask_bit)
    elif payload_len < 65536:
        header = struct.pack("!BBH", first_byte, 126 | mask_bit, payload_len)
    else:
        header = struct.pack("!BBQ", first_byte, 127 | mask_bit, payload_len)

    if mask:
        mask_key = os.urandom(4)
        return header + mask_key + _apply_mask(frame.payload, mask_key)
    return header + frame.payload


def decode_frame(
    data: bytes | bytearray, config: WebSocketConfig
) -> tuple[WebSocketFrame, int] | None:
    """
    Decode one WebSocket frame from the start of ``data``.

    :return: The frame and the number of bytes consumed, or ``None`` if
        ``data`` does not hold a complete frame yet
    :raises WebSocketProtocolError: If the frame violates RFC 6455 or the
        configured limits
    """
    if len(data) < 2:
        return None

    first_byte, second_byte = data[0], data[1]
    if first_byte & 0x70:
        raise WebSocketProtocolError("Reserved bits set without a negotiated extension")
    try:
        opcode = WebSocketFrameType(first_byte & 0x0F)
    except ValueError:
        raise WebSocketProtocolError(f"Unknown opcode {first_byte & 0x0F:#x}")
    fin = bool(first_byte & 0x80)

    masked = bool(second_byte & 0x80)
    if masked and not config.accept_masked_frames:
        raise WebSocketProtocolError("Received a masked frame from the server")

    payload_len = second_byte & 0x7F
    header_len = 2
    if payload_len == 126:
        if len(data) < 4:
            return None
        payload_len = struct.unpack("!H", data[2:4])[0]
        header_len = 4
    elif payload_len == 127:
        if len(data) < 10:
            return None
        payload_len = struct.unpack("!Q", data[2:10])[0]
        header_len = 10

    if opcode.is_control and (payload_len > 125 or not fin):
        raise WebSocketProtocolError("Fragmented or oversized control frame")
    if config.max_frame_size is not None and payload_len > config.max_frame_size:
        raise WebSocketProtocolError(
            f"Frame of {payload_len} bytes exceeds the limit of {config.max_frame_size}"
        )

    mask_key = b""
    if masked:
        if len(data) < header_len + 4:
            return None
        mask_key = bytes(data[header_len : header_len + 4])
        header_len += 4

    if len(data) < header_len + payload_len:
        return None

    payload = bytes(data[header_len : header_len + payload_len])
    if masked:
        payload = _apply_mask(payload, mask_key)

    return WebSocketFrame(opcode=opcode, payload=payload, fin=fin), header_len + payload_len


class WebSocket:
    """
    A client WebSocket over an established, blocking stream.

    Returned by the handshake functions together with the server's
    response. Pings from the server are answered automatically.
    """

    def __init__(
        self,
        stream: typing.Any,
        config: WebSocketConfig | None = None,
        read_buffer: bytes = b"",
    ) -> None:
        self.stream = stream
        self.config = config or WebSocketConfig()
        self._buffer = bytearray(read_buffer)
        self._fragments: list[bytes] = []
        self._fragment_opcode: WebSocketFrameType | None = None
        self._close_sent = False
        self._close_received = False

    def get_ref(self) -> typing.Any:
        """The stream this WebSocket runs over."""
        return self.stream

    @property
    def closed(self) -> bool:
        return self._close_received or self._close_sent

    def send(self, data: str | bytes) -> None:
        """
        Send a text (``str``) or binary (``bytes``) message.

        :raises WebSocketClosedError: If a close frame was already sent
        """
        if isinstance(data, str):
            frame = WebSocketFrame(WebSocketFrameType.TEXT, data.encode("utf-8"))
        else:
            frame = WebSocketFrame(WebSocketFrameType.BINARY, bytes(data))
        self._send_frame(frame)

    def ping(self, data: bytes = b"") -> None:
        self._send_frame(WebSocketFrame(WebSocketFrameType.PING, data))

    def pong(self, data: bytes = b"") -> None:
        self._send_frame(WebSocketFrame(WebSocketFrameType.PONG, data))

    def read(self) -> WebSocketMessage:
        """
        Read the next data message, or the server's close message.

        Blocks until a full message has arrived.

        :raises WebSocketClosedError: If the connection is already closed
        :raises WebSocketProtocolError: If the server violates the protocol
        """
        if self._close_received:
            raise WebSocketClosedError(code=WebSocketCloseCode.NORMAL)

        while True:
            frame = self._read_frame()
            message = self._handle_frame(frame)
            if message is not None:
                return message

    def close(self, code: int = WebSocketCloseCode.NORMAL, reason: str = "") -> None:
        """
        Start (or complete) the closing handshake and close the stream.

        Data messages still in flight from the server are discarded while
        waiting for its close frame.
        """
        if not self._close_sent:
            self._send_frame(WebSocketFrame.create_close(code, reason))

        while not self._close_received:
            try:
                frame = self._read_frame()
            except WebSocketClosedError:
                break
            if frame.opcode == WebSocketFrameType.CLOSE:
                self._close_received = True

        self.stream.close()

    def _send_frame(self, frame: WebSocketFrame) -> None:
        if self._close_sent:
            raise WebSocketClosedError(code=WebSocketCloseCode.NORMAL)
        if frame.opcode == WebSocketFrameType.CLOSE:
            self._close_sent = True

        data = memoryview(encode_frame(frame))
        while data:
            sent = self.stream.send(data.tobytes())
            data = data[sent:]

    def _read_frame(self) -> WebSocketFrame:
        while True:
            decoded = decode_frame(self._buffer, self.config)
            if decoded is not None:
                frame, consumed = decoded
                del self._buffer[:consumed]
                return frame

            data = self.stream.recv(self.config.read_buffer_size)
            if not data:
                self._close_received = True
                raise WebSocketClosedError(code=WebSocketCloseCode.ABNORMAL)
            self._buffer += data

    def _handle_frame(self, frame: WebSocketFrame) -> WebSocketMessage | None:
        if frame.opcode == WebSocketFrameType.PING:
            if not self._close_sent:
                self.pong(frame.payload)
            return None

        if frame.opcode == WebSocketFrameType.PONG:
            return None

        if frame.opcode == WebSocketFrameType.CLOSE:
            self._close_received = True
            if not self._close_sent:
                # Echo the close code back, as RFC 6455 section 5.5.1 asks
                self._send_frame(WebSocketFrame(WebSocketFrameType.CLOSE, frame.payload[:2]))
            return WebSocketMessage(WebSocketFrameType.CLOSE, frame.payload)

        if frame.opcode == WebSocketFrameType.CONTINUATION:
            if self._fragment_opcode is None:
                raise WebSocketProtocolError("Continuation frame with no message to continue")
        elif self._fragment_opcode is not None:
            raise WebSocketProtocolError("New message started before the previous one ended")
        else:
            self._fragment_opcode = frame.opcode

        self._fragments.append(frame.payload)
        size = sum(len(f) for f in self._fragments)
        limit = self.config.max_message_size
        if limit is not None and size > limit:
            raise WebSocketProtocolError(
                f"Message of {size} bytes exceeds the limit of {limit}"
            )

        if not frame.fin:
            return None

        message = WebSocketMessage(self._fragment_opcode, b"".join(self._fragments))
        self._fragments = []
        self._fragment_opcode = None
        return message

    def __enter__(self) -> WebSocket:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if not self._close_sent:
            self.close()

    def __repr__(self) -> str:
        return f"WebSocket({self.stream!r})"
