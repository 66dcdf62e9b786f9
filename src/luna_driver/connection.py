"""
PEP 249 Connection and Cursor

Thin outward shims over a Session. Connection.close() is idempotent; the
Session does the protocol work.
"""

import re
from typing import Any, List, Optional, Sequence, Tuple

import structlog

from .errors import MisuseError
from .rows import ExecResult, Rows
from .session import Session
from .statement import Statement, values_to_named
from .transaction import Transaction

logger = structlog.get_logger()

# Statements routed to the query path by Cursor.execute
_ROW_RETURNING = re.compile(
    r'^\s*(?:\(\s*)*(SELECT|WITH|SHOW|DESCRIBE|DESC|EXPLAIN|VALUES|PRAGMA|FROM|TABLE)\b',
    re.IGNORECASE,
)
_LEADING_COMMENTS = re.compile(r'^\s*(?:--[^\n]*\n|/\*.*?\*/)\s*', re.DOTALL)


def returns_rows(sql: str) -> bool:
    """Guess whether a statement produces a result set"""
    stripped = sql
    while True:
        match = _LEADING_COMMENTS.match(stripped)
        if not match:
            break
        stripped = stripped[match.end():]
    return bool(_ROW_RETURNING.match(stripped))


class Connection:
    """
    Connection to a Luna server

    Examples:
        >>> conn = luna_driver.connect("localhost:7688")
        >>> rows = conn.query("SELECT 1+1")
        >>> rows.fetch_row()
        (2,)
        >>> conn.close()
    """

    def __init__(self, session: Session):
        """Internal constructor - use Connector.connect() or luna_driver.connect()"""
        self._session = session
        self._tx: Optional[Transaction] = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def closed(self) -> bool:
        return self._session.closed

    def _check_open(self):
        if self._session.closed:
            raise MisuseError("connection closed")

    def exec(self, sql: str, args: Optional[Sequence[Any]] = None) -> ExecResult:
        return self._session.exec(sql, values_to_named(args))

    def query(self, sql: str, args: Optional[Sequence[Any]] = None) -> Rows:
        return self._session.query(sql, values_to_named(args))

    def ping(self):
        self._session.ping()

    def prepare(self, sql: str) -> Statement:
        self._check_open()
        return Statement(self._session, sql)

    def begin(self) -> Transaction:
        """
        Send BEGIN TRANSACTION.

        Raises:
            MisuseError: A transaction is already open
        """
        self._session.begin()
        self._tx = Transaction(self._session)
        return self._tx

    def commit(self):
        """
        Commit the open transaction; no-op when none is open (PEP 249).

        The misuse check for a commit without begin lives on Transaction.commit()
        and Session.commit(), which raise MisuseError.
        """
        tx, self._tx = self._tx, None
        if tx is not None and tx.active:
            tx.commit()

    def rollback(self):
        """
        Roll back the open transaction; no-op when none is open (PEP 249).

        Transaction.rollback() and Session.rollback() raise MisuseError instead.
        """
        tx, self._tx = self._tx, None
        if tx is not None and tx.active:
            tx.rollback()

    def cursor(self) -> "Cursor":
        self._check_open()
        return Cursor(self)

    def close(self):
        self._tx = None
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class Cursor:
    """PEP 249 cursor over a Connection"""

    arraysize = 1

    def __init__(self, connection: Connection):
        self.connection = connection
        self._rows: Optional[Rows] = None
        self._description: Optional[List[Tuple]] = None
        self.rowcount = -1
        self.lastrowid = None
        self._closed = False

    @property
    def description(self) -> Optional[List[Tuple]]:
        return self._description

    def _check_open(self):
        if self._closed:
            raise MisuseError("cursor is closed")

    def _reset(self):
        if self._rows is not None:
            self._rows.close()
        self._rows = None
        self._description = None
        self.rowcount = -1

    def execute(self, operation: str, parameters: Optional[Sequence[Any]] = None) -> "Cursor":
        self._check_open()
        self._reset()

        if returns_rows(operation):
            self._rows = self.connection.query(operation, parameters)
            columns = self._rows.columns()
            self._description = [
                (name, None, None, None, None, None, None) for name in columns
            ] or None
        else:
            result = self.connection.exec(operation, parameters)
            self.rowcount = result.rows_affected
        return self

    def executemany(self, operation: str, seq_of_parameters: Sequence[Sequence[Any]]):
        self._check_open()
        for parameters in seq_of_parameters:
            self.execute(operation, parameters)
        self._reset()

    def fetchone(self) -> Optional[Tuple[Any, ...]]:
        self._check_open()
        if self._rows is None:
            raise MisuseError("no result set; execute a query first")
        return self._rows.fetch_row()

    def fetchmany(self, size: Optional[int] = None) -> List[Tuple[Any, ...]]:
        size = self.arraysize if size is None else size
        result = []
        while len(result) < size:
            row = self.fetchone()
            if row is None:
                break
            result.append(row)
        return result

    def fetchall(self) -> List[Tuple[Any, ...]]:
        result = []
        while True:
            row = self.fetchone()
            if row is None:
                return result
            result.append(row)

    def __iter__(self):
        while True:
            row = self.fetchone()
            if row is None:
                return
            yield row

    def setinputsizes(self, sizes):
        pass

    def setoutputsize(self, size, column=None):
        pass

    def close(self):
        if self._closed:
            return
        self._reset()
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


__all__ = ['Connection', 'Cursor', 'returns_rows']
