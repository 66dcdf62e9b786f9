"""
Streaming Batch Decoder

Decodes the Arrow IPC stream that follows a BatchStreamFrame, one record batch
at a time, directly from the session's buffered reader. The stream is a schema
message, zero or more record batch messages, then the end-of-stream marker.
"""

from typing import BinaryIO, Iterator, List, Optional

import pyarrow as pa
import pyarrow.ipc
import structlog

from .errors import BadConnectionError, ProtocolError
from .protocol import STREAM_MARKER

logger = structlog.get_logger()


class PrefixedStream:
    """
    Read-only file object that replays already-consumed bytes before the
    underlying reader.

    Only reads as many bytes as requested so nothing belonging to the next
    response is pulled off the socket.
    """

    def __init__(self, prefix: bytes, reader: BinaryIO):
        self._prefix = prefix
        self._reader = reader
        self._position = 0
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            raise ValueError("unbounded read on a socket stream")

        chunk = self._prefix[:size]
        self._prefix = self._prefix[len(chunk):]
        remaining = size - len(chunk)
        if remaining:
            try:
                chunk += self._reader.read(remaining) or b''
            except OSError as e:
                raise BadConnectionError(f"failed to read result stream: {e}") from e
        self._position += len(chunk)
        return chunk

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def writable(self) -> bool:
        return False

    def tell(self) -> int:
        return self._position

    def close(self):
        # The session owns the underlying reader
        self.closed = True


def _stream_error(action: str, error: Exception) -> ProtocolError:
    # Socket failures are raised by PrefixedStream.read as BadConnectionError.
    # Errors from pyarrow itself, short-read OSError included, mean a malformed stream.
    return ProtocolError(f"failed to {action}: {error}")


class BatchStream:
    """
    Lazy, finite, non-restartable sequence of record batches.

    Creating the stream reads the schema message. Each iteration step decodes
    exactly one record batch. After a structural error the stream is finished;
    batches already returned stay valid.
    """

    def __init__(self, source):
        try:
            self._reader = pa.ipc.open_stream(source)
        except (pa.ArrowException, OSError) as e:
            raise _stream_error("create IPC reader", e) from e
        self._finished = False
        self.batches_read = 0

    @classmethod
    def from_reader(cls, reader: BinaryIO, prefix: bytes = STREAM_MARKER) -> "BatchStream":
        """Open a stream whose marker bytes were already consumed from reader"""
        return cls(PrefixedStream(prefix, reader))

    @property
    def schema(self) -> pa.Schema:
        return self._reader.schema

    @property
    def finished(self) -> bool:
        return self._finished

    def __iter__(self) -> Iterator[pa.RecordBatch]:
        return self

    def __next__(self) -> pa.RecordBatch:
        batch = self.read_next()
        if batch is None:
            raise StopIteration
        return batch

    def read_next(self) -> Optional[pa.RecordBatch]:
        """Decode the next batch, or return None at end of stream"""
        if self._finished:
            return None
        try:
            batch = self._reader.read_next_batch()
        except StopIteration:
            self._finished = True
            logger.debug("arrow stream complete", batches=self.batches_read)
            return None
        except BadConnectionError:
            self._finished = True
            raise
        except (pa.ArrowException, OSError) as e:
            self._finished = True
            raise _stream_error("read IPC record batch", e) from e

        self.batches_read += 1
        return batch

    def drain(self) -> int:
        """
        Read and discard all remaining batches.

        Returns:
            Number of batches discarded
        """
        discarded = 0
        while self.read_next() is not None:
            discarded += 1
        return discarded

    def read_all(self) -> List[pa.RecordBatch]:
        return list(self)


def open_bulk_stream(payload: bytes) -> Optional[BatchStream]:
    """
    Decode an Arrow stream carried inside a bulk string payload.

    Returns:
        BatchStream over the payload, or None for an empty payload
    """
    if not payload:
        return None
    return BatchStream(pa.BufferReader(payload))


__all__ = ['PrefixedStream', 'BatchStream', 'open_bulk_stream']
