"""
Luna Session

One session owns one TCP socket and its buffered reader and speaks the
half-duplex request/response protocol:

    FRESH -> AUTHENTICATING -> READY <-> BUSY -> CLOSED
                     \\___________\\________\\___-> BROKEN

A command may only be written in READY. The session stays BUSY until the full
response has been read; for a query that returned an Arrow stream that means
until its Rows is exhausted or closed. Protocol and I/O errors move the session
to BROKEN, after which every operation fails fast with BadConnectionError.

Sessions are not thread-safe; concurrency comes from holding several sessions.
"""

import enum
import socket
from typing import Callable, List, Optional, TypeVar

import structlog

from .arrow_stream import BatchStream, open_bulk_stream
from .auth import authenticate
from .cells import CellDecoderRegistry, get_registry
from .errors import (
    AuthenticationError,
    BadConnectionError,
    DecodeError,
    MisuseError,
    ProtocolError,
    ServerError,
)
from .protocol import (
    BatchStreamFrame,
    BulkFrame,
    Command,
    CommandKind,
    ErrorFrame,
    ResponseFrame,
    read_response,
)
from .rows import ExecResult, NamedValue, Rows

logger = structlog.get_logger()

T = TypeVar('T')

PING_SQL = "SELECT 1"
BEGIN_SQL = "BEGIN TRANSACTION"
COMMIT_SQL = "COMMIT TRANSACTION"
ROLLBACK_SQL = "ROLLBACK"


class SessionState(enum.Enum):
    FRESH = "fresh"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    BUSY = "busy"
    CLOSED = "closed"
    BROKEN = "broken"


class Session:
    """
    Protocol state machine over one socket

    Args:
        sock: Connected, blocking socket; the session takes ownership
        password: Password for the auth handshake, None to skip it
        registry: Cell decoder registry for query results
    """

    def __init__(self, sock: socket.socket, password: Optional[str] = None,
                 registry: Optional[CellDecoderRegistry] = None):
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._password = password
        self._registry = registry or get_registry()
        self._rows: Optional[Rows] = None
        self.state = SessionState.FRESH
        self.in_transaction = False

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    def handshake(self):
        """
        Authenticate if a password is configured, then become READY.

        Raises:
            AuthenticationError: Handshake failed; the socket is closed
        """
        if self.state != SessionState.FRESH:
            raise MisuseError(f"handshake on a {self.state.value} session")

        self.state = SessionState.AUTHENTICATING
        try:
            authenticate(self._sock, self._reader, self._password)
        except AuthenticationError:
            self._break("authentication failed")
            raise
        except Exception as e:
            self._break(f"handshake failed: {e}")
            raise
        self.state = SessionState.READY

    # ------------------------------------------------------------------
    # State guards
    # ------------------------------------------------------------------

    def _require_ready(self):
        if self.state in (SessionState.CLOSED, SessionState.BROKEN):
            raise BadConnectionError(f"session is {self.state.value}")
        if self.state == SessionState.BUSY:
            raise MisuseError("previous result set must be closed before sending another command")
        if self.state != SessionState.READY:
            raise MisuseError(f"session is {self.state.value}")

    def _break(self, reason: str):
        logger.warning("session broken", reason=reason)
        self.state = SessionState.BROKEN
        if self._rows is not None:
            self._rows.abandon()
            self._rows = None
        self._close_socket()

    def _guard(self, fn: Callable[[], T]) -> T:
        """Run a wire operation; protocol and I/O failures break the session"""
        try:
            return fn()
        except OSError as e:
            self._break(str(e))
            raise BadConnectionError(str(e)) from e
        except (ProtocolError, BadConnectionError) as e:
            self._break(e.message)
            raise

    def _send(self, command: Command) -> ResponseFrame:
        self._require_ready()
        self.state = SessionState.BUSY
        logger.debug("sending command", kind=command.kind.name, sql=command.text)

        def roundtrip():
            self._sock.sendall(command.encode())
            return read_response(self._reader)

        return self._guard(roundtrip)

    def _open_stream(self, frame: BatchStreamFrame) -> BatchStream:
        return self._guard(lambda: BatchStream.from_reader(self._reader, frame.prefix))

    def _release_rows(self, error: Optional[Exception]):
        """Called by Rows once it has finished reading from the socket"""
        self._rows = None
        if self.state != SessionState.BUSY:
            return
        if error is None or isinstance(error, (ServerError, DecodeError)):
            self.state = SessionState.READY
        else:
            self._break(str(error))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def exec(self, sql: str, args: Optional[List[NamedValue]] = None) -> ExecResult:
        """
        Execute a statement that returns no rows (DDL/DML).

        Arguments are accepted for interface compatibility; they are not sent.
        An Arrow stream in the response is read and discarded.

        Raises:
            ServerError: Server answered with an error frame
            BadConnectionError: Session closed, broken, or the socket failed
            MisuseError: A result set is still open
        """
        frame = self._send(Command(CommandKind.EXECUTE, sql))

        if isinstance(frame, BatchStreamFrame):
            stream = self._open_stream(frame)
            discarded = self._guard(stream.drain)
            logger.debug("discarded exec result batches", batches=discarded)

        self.state = SessionState.READY

        if isinstance(frame, ErrorFrame):
            raise ServerError(frame.message)
        return ExecResult(rows_affected=0)

    def query(self, sql: str, args: Optional[List[NamedValue]] = None) -> Rows:
        """
        Execute a query and return its rows.

        The returned Rows decodes batches lazily from the socket; the session
        accepts no other command until the Rows is exhausted or closed.

        Raises:
            ServerError: Server answered with an error frame
            DecodeError: A result column has an unsupported type
            ProtocolError: Malformed response; the session is broken
            BadConnectionError: Session closed, broken, or the socket failed
            MisuseError: A result set is still open
        """
        frame = self._send(Command(CommandKind.QUERY, sql))

        if isinstance(frame, ErrorFrame):
            self.state = SessionState.READY
            raise ServerError(frame.message)

        if isinstance(frame, BatchStreamFrame):
            stream = self._open_stream(frame)
            try:
                self._registry.validate_schema(stream.schema)
            except DecodeError:
                self._guard(stream.drain)
                self.state = SessionState.READY
                raise
            self._rows = Rows(stream=stream, registry=self._registry, release=self._release_rows)
            return self._rows

        # Everything below is fully read already
        self.state = SessionState.READY

        if isinstance(frame, BulkFrame):
            stream = open_bulk_stream(frame.payload)
            if stream is None:
                return Rows(registry=self._registry)
            self._registry.validate_schema(stream.schema)
            return Rows(batches=stream.read_all(), registry=self._registry)

        # OK / integer / null: degenerate zero-row result
        logger.debug("query returned no result set", frame=type(frame).__name__)
        return Rows(registry=self._registry)

    def ping(self):
        """Verify the server answers a trivial query"""
        if self.state in (SessionState.CLOSED, SessionState.BROKEN):
            raise BadConnectionError(f"session is {self.state.value}")
        self.query(PING_SQL).close()

    # ------------------------------------------------------------------
    # Transactions (literal commands, no atomicity)
    # ------------------------------------------------------------------

    def begin(self):
        if self.in_transaction:
            raise MisuseError("there is already an open transaction")
        self.exec(BEGIN_SQL)
        self.in_transaction = True

    def commit(self):
        if not self.in_transaction:
            raise MisuseError("extra Commit")
        self.in_transaction = False
        self.exec(COMMIT_SQL)

    def rollback(self):
        if not self.in_transaction:
            raise MisuseError("extra Rollback")
        self.in_transaction = False
        self.exec(ROLLBACK_SQL)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _close_socket(self):
        for resource in (self._reader, self._sock):
            try:
                resource.close()
            except OSError as e:
                logger.debug("error closing socket", error=str(e))

    def close(self):
        """Close the socket. Closing an already closed session is a no-op."""
        if self.state == SessionState.CLOSED:
            return

        if self._rows is not None:
            self._rows.abandon()
            self._rows = None

        previous = self.state
        self.state = SessionState.CLOSED
        if previous != SessionState.BROKEN:
            self._close_socket()
        logger.debug("session closed", previous_state=previous.value)


__all__ = ['Session', 'SessionState']
