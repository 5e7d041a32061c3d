"""Demultiplexing of Docker attach streams.

A non-TTY exec session multiplexes stdout and stderr over one connection.
Each frame is an 8-byte header followed by its payload:

    [type: 1 byte][reserved: 3 bytes][length: uint32 big-endian][payload]

Frames are strictly sequential. Only per-channel order survives
demultiplexing; the interleaving between channels is lost.
"""

import io
import socket
import struct
from typing import BinaryIO, Iterator

from docker.utils import socket as socket_utils

from pgbox.errors import DemuxError
from pgbox.models import StreamFrame, StreamKind

HEADER_SIZE = 8
CHUNK_SIZE = 4096

_HEADER = struct.Struct(">BxxxL")


def _read(stream, n: int) -> bytes:
    if isinstance(stream, (socket.socket, socket.SocketIO)):
        return socket_utils.read(stream, n)
    return stream.read(n)


def _read_exactly(stream, n: int) -> bytes:
    """Read n bytes, or fewer only if the stream ends first."""
    data = b""
    while len(data) < n:
        chunk = _read(stream, n - len(data))
        if not chunk:
            break
        data += chunk
    return data


def parse_header(header: bytes) -> tuple[StreamKind, int]:
    if len(header) != HEADER_SIZE:
        raise DemuxError("demux", f"invalid frame header length: {len(header)}")

    stream_type, length = _HEADER.unpack(header)
    try:
        kind = StreamKind(stream_type)
    except ValueError:
        raise DemuxError("demux", f"unrecognized stream type: {stream_type}") from None
    return kind, length


def encode_frame(kind: StreamKind, payload: bytes) -> bytes:
    return _HEADER.pack(int(kind), len(payload)) + payload


def iter_frames(stream) -> Iterator[StreamFrame]:
    """Yield frames until the stream ends at a frame boundary."""
    while True:
        header = _read_exactly(stream, HEADER_SIZE)
        if not header:
            return
        if len(header) < HEADER_SIZE:
            raise DemuxError("demux", f"truncated frame header ({len(header)} bytes)")

        kind, length = parse_header(header)
        payload = _read_exactly(stream, length)
        if len(payload) < length:
            raise DemuxError(
                "demux", f"truncated frame payload ({len(payload)} of {length} bytes)"
            )
        yield StreamFrame(kind, payload)


def copy_frames(stream, stdout: BinaryIO, stderr: BinaryIO) -> tuple[int, int]:
    """Copy frame payloads into the two sinks.

    Returns the number of bytes written to stdout and stderr.
    """
    written_out = written_err = 0
    for frame in iter_frames(stream):
        if frame.kind in (StreamKind.STDIN, StreamKind.STDOUT):
            stdout.write(frame.payload)
            written_out += len(frame.payload)
        elif frame.kind is StreamKind.STDERR:
            stderr.write(frame.payload)
            written_err += len(frame.payload)
        else:
            message = frame.payload.decode("utf-8", errors="replace")
            raise DemuxError("demux", f"daemon reported an error: {message}")
    return written_out, written_err


def copy_raw(stream, sink: BinaryIO) -> int:
    """Copy an unframed (TTY) stream into a single sink."""
    written = 0
    while True:
        chunk = _read(stream, CHUNK_SIZE)
        if not chunk:
            return written
        sink.write(chunk)
        written += len(chunk)


def demux(stream) -> tuple[bytes, bytes]:
    out, err = io.BytesIO(), io.BytesIO()
    copy_frames(stream, out, err)
    return out.getvalue(), err.getvalue()
