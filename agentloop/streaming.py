"""Stream framing for vendor responses.

Two framers turn an arbitrarily chunked byte stream into complete frames:

* ``SSEFramer`` splits on a fixed delimiter (``\\n\\n`` for most vendors,
  ``\\r\\n\\r\\n`` for Gemini) and parses ``event:``/``data:`` fields.
* ``EventStreamFramer`` decodes the length-prefixed binary event stream used
  by Bedrock invoke endpoints (12-byte prelude, headers, payload, CRC).

Both keep the unconsumed tail in an internal buffer, so the frames produced
do not depend on how the input was split into chunks.
"""

import json
import struct
import zlib
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable, Union

from agentloop.exceptions import EventStreamError, StreamDecodeError

PRELUDE_LENGTH = 12
MESSAGE_CRC_LENGTH = 4
MIN_MESSAGE_LENGTH = PRELUDE_LENGTH + MESSAGE_CRC_LENGTH


@dataclass
class SSEFrame:
    """One server-sent event."""

    event: str | None = None
    data: str | None = None

    def json(self) -> dict[str, Any]:
        return load_event_json(self.data or "")


def load_event_json(raw: str | bytes) -> dict[str, Any]:
    """Decode one vendor event; anything but a JSON object is a stream error."""
    try:
        event = json.loads(raw)
    except ValueError as e:
        raise StreamDecodeError(f"Invalid stream event JSON: {e}") from e
    if not isinstance(event, dict):
        raise StreamDecodeError(f"Stream event must be a JSON object, got {type(event).__name__}")
    return event


def parse_sse_frame(raw: bytes) -> SSEFrame:
    """Parse one delimiter-separated block into an ``SSEFrame``."""
    frame = SSEFrame()
    data_lines: list[str] = []
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise StreamDecodeError(f"SSE frame is not valid UTF-8: {e}") from e
    for line in text.splitlines():
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            frame.event = value
        elif name == "data":
            data_lines.append(value)
    if data_lines:
        frame.data = "\n".join(data_lines)
    return frame


class SSEFramer:
    """Delimiter-based SSE framer."""

    def __init__(self, delimiter: bytes = b"\n\n"):
        if not delimiter:
            raise ValueError("delimiter must not be empty")
        self.delimiter = delimiter
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[SSEFrame]:
        self._buffer.extend(chunk)
        frames: list[SSEFrame] = []
        while True:
            index = self._buffer.find(self.delimiter)
            if index < 0:
                break
            raw = bytes(self._buffer[:index])
            del self._buffer[: index + len(self.delimiter)]
            frame = parse_sse_frame(raw)
            if frame.event is not None or frame.data is not None:
                frames.append(frame)
        return frames


@dataclass
class EventStreamMessage:
    """One decoded binary event-stream message."""

    headers: dict[str, Any] = field(default_factory=dict)
    payload: bytes = b""


def _decode_headers(raw: bytes) -> dict[str, Any]:
    headers: dict[str, Any] = {}
    offset = 0
    while offset < len(raw):
        name_length = raw[offset]
        offset += 1
        name = raw[offset : offset + name_length].decode("utf-8")
        offset += name_length
        value_type = raw[offset]
        offset += 1
        value: Any
        if value_type == 0:
            value = True
        elif value_type == 1:
            value = False
        elif value_type == 2:
            (value,) = struct.unpack_from(">b", raw, offset)
            offset += 1
        elif value_type == 3:
            (value,) = struct.unpack_from(">h", raw, offset)
            offset += 2
        elif value_type == 4:
            (value,) = struct.unpack_from(">i", raw, offset)
            offset += 4
        elif value_type in (5, 8):
            (value,) = struct.unpack_from(">q", raw, offset)
            offset += 8
        elif value_type in (6, 7):
            (length,) = struct.unpack_from(">H", raw, offset)
            offset += 2
            value = raw[offset : offset + length]
            if value_type == 7:
                value = value.decode("utf-8")
            offset += length
        elif value_type == 9:
            value = raw[offset : offset + 16]
            offset += 16
        else:
            raise EventStreamError(f"Unknown event stream header type: {value_type}")
        headers[name] = value
    return headers


class EventStreamFramer:
    """Length-prefixed binary framer (AWS event stream encoding)."""

    def __init__(self, verify_crc: bool = True):
        self.verify_crc = verify_crc
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[EventStreamMessage]:
        self._buffer.extend(chunk)
        messages: list[EventStreamMessage] = []
        while len(self._buffer) >= PRELUDE_LENGTH:
            total_length, headers_length, prelude_crc = struct.unpack_from(">III", self._buffer, 0)
            if total_length < MIN_MESSAGE_LENGTH + headers_length:
                raise EventStreamError(
                    f"Invalid event stream prelude: total={total_length}, headers={headers_length}"
                )
            if len(self._buffer) < total_length:
                break

            raw = bytes(self._buffer[:total_length])
            del self._buffer[:total_length]

            if self.verify_crc:
                if zlib.crc32(raw[:8]) != prelude_crc:
                    raise EventStreamError("Event stream prelude CRC mismatch")
                (message_crc,) = struct.unpack_from(">I", raw, total_length - MESSAGE_CRC_LENGTH)
                if zlib.crc32(raw[:-MESSAGE_CRC_LENGTH]) != message_crc:
                    raise EventStreamError("Event stream message CRC mismatch")

            payload_offset = PRELUDE_LENGTH + headers_length
            payload_length = total_length - headers_length - MIN_MESSAGE_LENGTH
            try:
                headers = _decode_headers(raw[PRELUDE_LENGTH:payload_offset])
            except (IndexError, struct.error, UnicodeDecodeError) as e:
                raise EventStreamError(f"Malformed event stream headers: {e}") from e
            messages.append(
                EventStreamMessage(
                    headers=headers,
                    payload=raw[payload_offset : payload_offset + payload_length],
                )
            )
        return messages


def encode_event_stream_message(payload: bytes, headers: dict[str, str] | None = None) -> bytes:
    """Encode one message with string headers; the inverse of ``EventStreamFramer``."""
    header_bytes = bytearray()
    for name, value in (headers or {}).items():
        encoded_name = name.encode("utf-8")
        encoded_value = value.encode("utf-8")
        header_bytes.append(len(encoded_name))
        header_bytes.extend(encoded_name)
        header_bytes.append(7)
        header_bytes.extend(struct.pack(">H", len(encoded_value)))
        header_bytes.extend(encoded_value)

    total_length = MIN_MESSAGE_LENGTH + len(header_bytes) + len(payload)
    prelude = struct.pack(">II", total_length, len(header_bytes))
    prelude += struct.pack(">I", zlib.crc32(prelude))
    body = prelude + bytes(header_bytes) + payload
    return body + struct.pack(">I", zlib.crc32(body))


Framer = Union[SSEFramer, EventStreamFramer]


async def aiter_frames(chunks: AsyncIterator[bytes], framer: Framer) -> AsyncIterator[Any]:
    """Pull byte chunks sequentially and yield every complete frame."""
    async for chunk in chunks:
        for frame in framer.feed(chunk):
            yield frame


def iter_frames(chunks: Iterable[bytes], framer: Framer) -> list[Any]:
    """Synchronous counterpart of ``aiter_frames`` for already-buffered bytes."""
    frames: list[Any] = []
    for chunk in chunks:
        frames.extend(framer.feed(chunk))
    return frames
