"""
Unit Tests for the Result Cursor

Rows are driven from in-memory Arrow streams; the release callback stands in
for the session.
"""

import io

import pyarrow as pa
import pytest

from luna_driver.arrow_stream import BatchStream
from luna_driver.errors import NotSupportedError, ProtocolError
from luna_driver.rows import ExecResult, Rows


class ReleaseRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, error):
        self.calls.append(error)


def stream_from(data: bytes) -> BatchStream:
    return BatchStream(io.BytesIO(data))


class TestRowsIteration:
    """Test suite for cursor movement across batches"""

    def setup_method(self):
        self.release = ReleaseRecorder()

    def test_rows_across_batch_boundaries(self, stream_bytes, batch_of_ints):
        """Rows come in batch order then row order, none skipped or repeated"""
        data = stream_bytes(
            batch_of_ints("n", [1, 2, 3]),
            batch_of_ints("n", []),
            batch_of_ints("n", [4]),
            batch_of_ints("n", [5, 6]),
        )
        rows = Rows(stream=stream_from(data), release=self.release)

        assert [row[0] for row in rows] == [1, 2, 3, 4, 5, 6]
        assert rows.closed
        assert self.release.calls == [None]

    def test_thousand_rows_in_two_batches(self, stream_bytes, batch_of_ints):
        """Two blocks of 500 rows yield exactly 1000 rows"""
        data = stream_bytes(
            batch_of_ints("num", list(range(500))),
            batch_of_ints("num", list(range(500, 1000))),
        )
        rows = Rows(stream=stream_from(data), release=self.release)

        assert rows.columns() == ["num"]
        values = [row[0] for row in rows]
        assert values == list(range(1000))

    def test_next_fills_dest(self, stream_bytes):
        """next() writes cells positionally into caller slots"""
        batch = pa.record_batch([pa.array([1]), pa.array([None], type=pa.string())], names=["id", "v"])
        rows = Rows(stream=stream_from(stream_bytes(batch)), release=self.release)

        dest = [object(), object()]
        assert rows.next(dest) is True
        assert dest == [1, None]
        assert rows.next(dest) is False

    def test_columns_from_first_batch(self, stream_bytes):
        """Column names keep order and duplicates"""
        batch = pa.record_batch([pa.array([1]), pa.array([2])], names=["a", "a"])
        rows = Rows(stream=stream_from(stream_bytes(batch)), release=self.release)
        assert rows.columns() == ["a", "a"]
        assert rows.fetch_row() == (1, 2)

    def test_columns_empty_without_batches(self, stream_bytes):
        """Zero batches means no columns"""
        schema = pa.schema([("id", pa.int64())])
        rows = Rows(stream=stream_from(stream_bytes(schema=schema)), release=self.release)

        assert rows.columns() == []
        assert rows.fetch_row() is None
        assert self.release.calls == [None]

    def test_preloaded_batches(self, batch_of_ints):
        """Rows over already-decoded batches need no stream"""
        rows = Rows(batches=[batch_of_ints("n", [9])], release=self.release)
        assert self.release.calls == [None]
        assert list(rows) == [(9,)]

    def test_empty_rows(self):
        rows = Rows()
        assert rows.columns() == []
        assert rows.fetch_row() is None


class TestRowsClose:
    """Test suite for closing and releasing"""

    def setup_method(self):
        self.release = ReleaseRecorder()

    def test_close_after_partial_read_is_idempotent(self, stream_bytes, batch_of_ints):
        """Closing twice after partial consumption is a no-op the second time"""
        data = stream_bytes(batch_of_ints("n", [1, 2]), batch_of_ints("n", [3]))
        stream = stream_from(data)
        rows = Rows(stream=stream, release=self.release)

        assert rows.fetch_row() == (1,)
        rows.close()
        rows.close()

        assert stream.finished
        assert self.release.calls == [None]
        assert rows.fetch_row() is None
        assert rows.batch_count == 0

    def test_close_drains_unread_stream(self, stream_bytes, batch_of_ints):
        """Unread batches are consumed so the socket stays on a frame boundary"""
        reader = io.BytesIO(stream_bytes(batch_of_ints("n", [1]), batch_of_ints("n", [2])) + b"+OK\r\n")
        rows = Rows(stream=BatchStream(reader), release=self.release)

        rows.close()
        assert reader.read() == b"+OK\r\n"

    def test_context_manager(self, stream_bytes, batch_of_ints):
        with Rows(stream=stream_from(stream_bytes(batch_of_ints("n", [1]))), release=self.release) as rows:
            rows.fetch_row()
        assert rows.closed
        assert self.release.calls == [None]

    def test_abandon_skips_socket(self, stream_bytes, batch_of_ints):
        """Abandoned rows never read again and never call back"""
        stream = stream_from(stream_bytes(batch_of_ints("n", [1])))
        rows = Rows(stream=stream, release=self.release)
        rows.abandon()
        rows.close()

        assert not stream.finished
        assert self.release.calls == []

    def test_decode_failure_mid_stream(self, stream_bytes, batch_of_ints):
        """Rows already returned stay valid; the error reaches the session once"""
        data = stream_bytes(batch_of_ints("n", [1, 2]), batch_of_ints("n", list(range(100))))
        rows = Rows(stream=stream_from(data[:len(data) - 40]), release=self.release)

        first = rows.fetch_row()
        second = rows.fetch_row()
        with pytest.raises(ProtocolError):
            rows.fetch_row()

        assert (first, second) == ((1,), (2,))
        assert isinstance(rows.error, ProtocolError)
        assert len(self.release.calls) == 1
        rows.close()
        assert len(self.release.calls) == 1


class TestExecResult:
    """Test suite for Exec results"""

    def test_rows_affected_always_zero(self):
        assert ExecResult().rows_affected == 0

    def test_last_insert_id_not_supported(self):
        with pytest.raises(NotSupportedError):
            ExecResult().last_insert_id()
