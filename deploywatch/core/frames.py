"""Decoder for the Docker multiplexed log stream.

Non-TTY containers write stdout and stderr into one byte stream made of
frames::

    [kind: 1 byte][0 0 0][length: 4 bytes big-endian][payload: length bytes]

where kind is 0 (stdin), 1 (stdout) or 2 (stderr).

Decoding is best effort. Malformed input degrades to raw text passthrough and
never raises. A partial payload is emitted as soon as it arrives rather than
held until the frame completes, so buffering stays bounded by one header.
The cost is that a single log line may be delivered in two pieces when a chunk
boundary falls inside it; consumers that split on newlines will see it as two
lines.
"""

import codecs
from dataclasses import dataclass
from enum import IntEnum

HEADER_SIZE = 8


class StreamKind(IntEnum):
    """Stream tag carried in byte 0 of a frame header."""

    STDIN = 0
    STDOUT = 1
    STDERR = 2


@dataclass(frozen=True)
class LogFrame:
    """One decoded unit of the multiplexed stream."""

    stream_kind: StreamKind
    payload: bytes


def _is_valid_header(header: bytes) -> bool:
    return header[0] in (0, 1, 2) and header[1:4] == b"\x00\x00\x00"


def strip_frame_headers(buf: bytes) -> str:
    """Decode a complete buffer in one pass.

    Used for bounded (non-follow) log fetches. Trailing bytes that do not
    form a full header are emitted as raw text, and a truncated final payload
    is emitted as far as it goes.
    """
    parts: list[bytes] = []
    offset = 0
    size = len(buf)

    while offset < size:
        if offset + HEADER_SIZE > size:
            parts.append(buf[offset:])
            break

        header = buf[offset : offset + HEADER_SIZE]
        if not _is_valid_header(header):
            # Unframed (TTY) output
            parts.append(buf[offset:])
            break

        length = int.from_bytes(header[4:8], "big")
        start = offset + HEADER_SIZE
        if start + length > size:
            parts.append(buf[start:])
            break

        parts.append(buf[start : start + length])
        offset = start + length

    return b"".join(parts).decode("utf-8", errors="replace")


class FrameDemultiplexer:
    """Streaming frame decoder for one follow-mode log session.

    State carried between chunks is limited to at most seven header bytes
    and the number of payload bytes still owed by the current frame. For any
    split of the same byte stream into chunks, the concatenation of
    ``decode()`` results followed by ``flush()`` is identical.

    Example:
        >>> demux = FrameDemultiplexer()
        >>> demux.decode(b"\\x01\\x00\\x00")
        ''
        >>> demux.decode(b"\\x00\\x00\\x00\\x00\\x03hi\\n")
        'hi\\n'
    """

    def __init__(self) -> None:
        self._header = bytearray()
        self._remaining = 0
        self._kind = StreamKind.STDOUT
        self._raw = False
        self._decoders = {
            kind: codecs.getincrementaldecoder("utf-8")(errors="replace")
            for kind in StreamKind
        }

    @property
    def passthrough(self) -> bool:
        """Whether the stream turned out to be unframed."""
        return self._raw

    def feed(self, chunk: bytes) -> list[LogFrame]:
        """Split a chunk into frames, carrying incomplete state forward."""
        frames: list[LogFrame] = []
        data = bytes(chunk)
        offset = 0
        size = len(data)

        while offset < size:
            if self._raw:
                frames.append(LogFrame(StreamKind.STDOUT, data[offset:]))
                break

            if self._remaining:
                take = min(self._remaining, size - offset)
                frames.append(LogFrame(self._kind, data[offset : offset + take]))
                self._remaining -= take
                offset += take
                continue

            needed = HEADER_SIZE - len(self._header)
            piece = data[offset : offset + needed]
            self._header.extend(piece)
            offset += len(piece)
            if len(self._header) < HEADER_SIZE:
                break

            header = bytes(self._header)
            self._header.clear()

            if not _is_valid_header(header):
                self._raw = True
                frames.append(LogFrame(StreamKind.STDOUT, header + data[offset:]))
                break

            self._kind = StreamKind(header[0])
            self._remaining = int.from_bytes(header[4:8], "big")

        return frames

    def decode(self, chunk: bytes) -> str:
        """Feed a chunk and return the text recovered so far."""
        return "".join(
            self._decoders[frame.stream_kind].decode(frame.payload)
            for frame in self.feed(chunk)
        )

    def flush(self) -> str:
        """Finish the stream, emitting any leftover bytes as raw text."""
        text = []
        if self._header:
            leftover = bytes(self._header)
            self._header.clear()
            text.append(self._decoders[StreamKind.STDOUT].decode(leftover))
        for decoder in self._decoders.values():
            text.append(decoder.decode(b"", final=True))
        self._remaining = 0
        return "".join(text)
