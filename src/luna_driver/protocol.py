"""
Luna Wire Protocol - Frame Codec

Luna overlays a minimal line-oriented control protocol (RESP-style) with the
Arrow IPC streaming format used for result data. The two are told apart by the
first byte of a response:

Client -> Server:
- Command: '$' <N> CRLF <prefix><sql> CRLF, prefix 'q:' (query) or 'x:' (execute)

Server -> Client:
- '+' <message> CRLF          simple string (OK)
- '-' <message> CRLF          error
- ':' <integer> CRLF          integer
- '$' <N> CRLF <bytes> CRLF   bulk string ('$-1' is null)
- FF FF FF FF ...             Arrow IPC stream (continuation marker)

The Arrow continuation marker 0xFFFFFFFF never collides with the ASCII control
bytes, so one byte is enough to dispatch.
"""

import enum
from dataclasses import dataclass
from typing import BinaryIO, Union

import structlog

from .errors import BadConnectionError, ProtocolError

logger = structlog.get_logger()

# Command prefixes
CMD_QUERY = "q:"
CMD_EXECUTE = "x:"

# Response types
RESP_OK = b'+'
RESP_ERROR = b'-'
RESP_INTEGER = b':'
RESP_BULK = b'$'
RESP_STREAM = b'\xff'

CRLF = b'\r\n'
NULL_BULK_LENGTH = -1

# Arrow IPC continuation marker (start of every stream message)
STREAM_MARKER = b'\xff\xff\xff\xff'


class CommandKind(enum.Enum):
    """Kind of command sent to Luna, with its wire prefix"""
    QUERY = CMD_QUERY
    EXECUTE = CMD_EXECUTE

    @property
    def prefix(self) -> str:
        return self.value


@dataclass(frozen=True)
class Command:
    """A single command; maps to exactly one wire frame"""
    kind: CommandKind
    text: str

    def encode(self) -> bytes:
        """
        Encode the command as a bulk string frame.

        Format: $<len(prefix+sql)>\\r\\n<prefix><sql>\\r\\n
        The length counts UTF-8 bytes and excludes the trailing CRLF.
        """
        return encode_bulk_string((self.kind.prefix + self.text).encode("utf-8"))


def encode_bulk_string(payload: bytes) -> bytes:
    """Build a '$' frame around an arbitrary payload"""
    return RESP_BULK + str(len(payload)).encode("ascii") + CRLF + payload + CRLF


def decode_command(frame: bytes) -> Command:
    """
    Parse a command frame as the server would.

    Used by test peers and debugging tools; the driver itself only encodes.
    """
    if not frame.startswith(RESP_BULK):
        raise ProtocolError(f"command frame must start with '$', got {frame[:1]!r}")

    header, sep, rest = frame[1:].partition(CRLF)
    if not sep:
        raise ProtocolError("command frame missing length terminator")
    try:
        length = int(header)
    except ValueError:
        raise ProtocolError(f"invalid length: {header!r}")

    body = rest[:length]
    if len(body) != length or rest[length:length + 2] != CRLF:
        raise ProtocolError("command frame truncated")

    message = body.decode("utf-8")
    for kind in CommandKind:
        if message.startswith(kind.prefix):
            return Command(kind, message[len(kind.prefix):])
    raise ProtocolError(f"unknown command prefix: {message[:2]!r}")


# ============================================================================
# Response Frames
# ============================================================================

@dataclass(frozen=True)
class OkFrame:
    message: str


@dataclass(frozen=True)
class ErrorFrame:
    message: str


@dataclass(frozen=True)
class IntegerFrame:
    value: int


@dataclass(frozen=True)
class NullFrame:
    pass


@dataclass(frozen=True)
class BulkFrame:
    payload: bytes


@dataclass(frozen=True)
class BatchStreamFrame:
    """
    Start of an Arrow IPC stream.

    The marker bytes were consumed while dispatching; the stream decoder
    re-prepends them so it sees a byte-exact stream.
    """
    prefix: bytes = STREAM_MARKER


ResponseFrame = Union[OkFrame, ErrorFrame, IntegerFrame, NullFrame, BulkFrame, BatchStreamFrame]


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    data = reader.read(size)
    if data is None or len(data) != size:
        raise BadConnectionError(
            f"connection closed by server (expected {size} bytes, got {len(data or b'')})"
        )
    return data


def _read_line(reader: BinaryIO) -> str:
    line = reader.readline()
    if not line.endswith(b'\n'):
        raise BadConnectionError("connection closed by server mid-line")
    return line.decode("utf-8", errors="replace").rstrip()


def read_response(reader: BinaryIO) -> ResponseFrame:
    """
    Read and decode one response frame.

    Blocks until enough bytes arrive. For an Arrow stream only the 4-byte
    marker is consumed; the caller hands the reader to the stream decoder.

    Args:
        reader: Buffered binary reader positioned at a frame boundary

    Returns:
        One of the ResponseFrame variants

    Raises:
        ProtocolError: Unknown leading byte or malformed frame
        BadConnectionError: Stream ended before the frame was complete
    """
    first = _read_exact(reader, 1)

    if first == RESP_STREAM:
        marker = _read_exact(reader, 3)
        if marker != STREAM_MARKER[1:]:
            raise ProtocolError(f"invalid continuation marker: {marker.hex(' ').upper()}")
        return BatchStreamFrame()

    if first == RESP_BULK:
        length_line = _read_line(reader)
        try:
            length = int(length_line)
        except ValueError:
            raise ProtocolError(f"invalid length: {length_line!r}")

        if length == NULL_BULK_LENGTH:
            return NullFrame()
        if length < 0:
            raise ProtocolError(f"invalid length: {length}")

        payload = _read_exact(reader, length)
        _read_exact(reader, 2)  # trailing \r\n
        return BulkFrame(payload)

    if first == RESP_OK:
        return OkFrame(_read_line(reader))

    if first == RESP_ERROR:
        return ErrorFrame(_read_line(reader))

    if first == RESP_INTEGER:
        text = _read_line(reader)
        try:
            return IntegerFrame(int(text))
        except ValueError:
            raise ProtocolError(f"invalid integer response: {text!r}")

    raise ProtocolError(f"unknown response type: {first!r}")


__all__ = [
    'CommandKind', 'Command', 'encode_bulk_string', 'decode_command',
    'OkFrame', 'ErrorFrame', 'IntegerFrame', 'NullFrame', 'BulkFrame',
    'BatchStreamFrame', 'ResponseFrame', 'read_response', 'STREAM_MARKER',
]
