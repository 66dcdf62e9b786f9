"""
Result Cursor

Rows walks the record batches of one query in order, one row at a time,
crossing batch boundaries transparently. Batches are decoded lazily from the
session's socket; while a Rows is open the session cannot send another
command. Exhausting or closing the Rows gives the session back.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, MutableSequence, Optional, Tuple

import pyarrow as pa
import structlog

from .arrow_stream import BatchStream
from .cells import CellDecoderRegistry, get_registry
from .errors import NotSupportedError

logger = structlog.get_logger()

# Called once when the Rows no longer needs the socket; receives the error that
# ended the stream early, or None
ReleaseCallback = Callable[[Optional[Exception]], None]


@dataclass(frozen=True)
class NamedValue:
    """Query argument with its 1-based position"""
    ordinal: int
    value: Any
    name: str = ""


@dataclass(frozen=True)
class ExecResult:
    """
    Result of an Exec.

    Luna never reports affected row counts, so rows_affected is always 0.
    """
    rows_affected: int = 0

    def last_insert_id(self) -> int:
        raise NotSupportedError("luna does not support LastInsertId")


class Rows:
    """
    Forward-only iterator over the rows of a query result.

    Examples:
        >>> rows = session.query("SELECT 1 AS id, NULL AS v")
        >>> rows.columns()
        ['id', 'v']
        >>> list(rows)
        [(1, None)]
    """

    def __init__(self, stream: Optional[BatchStream] = None,
                 batches: Optional[List[pa.RecordBatch]] = None,
                 registry: Optional[CellDecoderRegistry] = None,
                 release: Optional[ReleaseCallback] = None):
        self._stream = stream
        self._batches: List[pa.RecordBatch] = list(batches or [])
        self._registry = registry or get_registry()
        self._release = release
        self._batch_index = 0
        self._row_index = 0
        self._closed = False
        self._released = False
        self._error: Optional[Exception] = None

        # Nothing borrowed from the socket
        if self._stream is None:
            self._give_back(None)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[Exception]:
        """Error that ended decoding early, if any"""
        return self._error

    @property
    def batch_count(self) -> int:
        """Batches decoded so far"""
        return len(self._batches)

    def _give_back(self, error: Optional[Exception]):
        if self._released:
            return
        self._released = True
        if self._release is not None:
            self._release(error)

    def _stream_live(self) -> bool:
        return self._stream is not None and not self._stream.finished and self._error is None

    def _fetch_batch(self) -> bool:
        """Decode one more batch from the stream; False at end of data"""
        if not self._stream_live():
            return False
        try:
            batch = self._stream.read_next()
        except Exception as e:
            self._error = e
            self._give_back(e)
            raise

        if batch is None:
            self._give_back(None)
            return False
        self._batches.append(batch)
        return True

    def columns(self) -> List[str]:
        """Column names of the first batch; empty when there are no batches"""
        if not self._batches and not self._closed:
            self._fetch_batch()
        if not self._batches:
            return []
        return list(self._batches[0].schema.names)

    def fetch_row(self) -> Optional[Tuple[Any, ...]]:
        """
        Decode the current row and advance the cursor.

        Returns:
            Row values as a tuple, or None when all batches are exhausted
        """
        while not self._closed:
            if self._batch_index < len(self._batches):
                batch = self._batches[self._batch_index]
                if self._row_index < batch.num_rows:
                    row = self._registry.decode_row(batch, self._row_index)
                    self._row_index += 1
                    return tuple(row)
                self._batch_index += 1
                self._row_index = 0
                continue

            if not self._fetch_batch():
                self.close()
        return None

    def next(self, dest: MutableSequence[Any]) -> bool:
        """
        Fill dest positionally with the next row.

        Returns:
            True if a row was written, False at end of data
        """
        row = self.fetch_row()
        if row is None:
            return False
        for i, value in enumerate(row):
            dest[i] = value
        return True

    def __iter__(self) -> Iterator[Tuple[Any, ...]]:
        while True:
            row = self.fetch_row()
            if row is None:
                return
            yield row

    def close(self):
        """
        Release retained batches and give the socket back to the session.

        Unread batches are drained so the next command starts on a frame
        boundary. Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True

        error = None
        if self._stream_live():
            try:
                discarded = self._stream.drain()
                logger.debug("drained unread batches", batches=discarded)
            except Exception as e:
                error = e
                self._error = e

        self._batches = []
        self._stream = None
        self._give_back(error)
        if error is not None:
            raise error

    def abandon(self):
        """Drop batches without touching the socket (the session is going away)"""
        self._closed = True
        self._released = True
        self._batches = []
        self._stream = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


__all__ = ['NamedValue', 'ExecResult', 'Rows']
