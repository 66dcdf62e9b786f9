"""
Connector and Driver

A Connector holds the parameters for one Luna server and opens new
connections on demand. Luna sends no greeting; the auth handshake only runs
when a password is configured.
"""

import socket
from typing import Callable, Optional, TYPE_CHECKING

import structlog

from .config import ConnectorConfig
from .errors import BadConnectionError, MisuseError
from .session import Session

if TYPE_CHECKING:
    from .connection import Connection

logger = structlog.get_logger()

# Extra initialization run on each new connection (e.g. SET statements)
ConnInitFn = Callable[['Connection'], None]


class Connector:
    """
    Produces connections to one Luna server

    Args:
        dsn: Connection string, or None when config is given
        conn_init_fn: Called with each new Connection before it is returned
        config: Pre-built configuration (overrides dsn)
    """

    def __init__(self, dsn: Optional[str] = None, conn_init_fn: Optional[ConnInitFn] = None,
                 config: Optional[ConnectorConfig] = None):
        if config is None:
            config = ConnectorConfig.from_dsn(dsn or "")
        self.config = config
        self._conn_init_fn = conn_init_fn
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def driver(self) -> "Driver":
        return Driver()

    def _dial(self, timeout: Optional[float]) -> socket.socket:
        try:
            sock = socket.create_connection(self.config.address, timeout=timeout)
        except socket.timeout as e:
            raise BadConnectionError(
                f"dial {self.config.display_address} timed out after {timeout}s"
            ) from e
        except OSError as e:
            raise BadConnectionError(f"dial {self.config.display_address}: {e}") from e

        # The timeout bounds the dial only
        sock.settimeout(None)
        return sock

    def connect(self, timeout: Optional[float] = None) -> "Connection":
        """
        Dial the server and return a ready connection.

        Args:
            timeout: Dial deadline in seconds (defaults to config.dial_timeout)

        Raises:
            BadConnectionError: Dial failed or timed out
            AuthenticationError: Handshake failed
            MisuseError: Connector was closed
        """
        from .connection import Connection

        if self._closed:
            raise MisuseError("connector is closed")

        if timeout is None:
            timeout = self.config.dial_timeout

        logger.info("connecting", host=self.config.display_address)
        sock = self._dial(timeout)

        session = Session(sock, password=self.config.password)
        session.handshake()
        connection = Connection(session)

        if self._conn_init_fn is not None:
            try:
                self._conn_init_fn(connection)
            except Exception:
                connection.close()
                raise

        return connection

    def close(self):
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class Driver:
    """Entry point handed to a DriverRegistry"""

    def open(self, dsn: str, timeout: Optional[float] = None) -> "Connection":
        return self.open_connector(dsn).connect(timeout)

    def open_connector(self, dsn: str, conn_init_fn: Optional[ConnInitFn] = None) -> Connector:
        return Connector(dsn, conn_init_fn)

    def __eq__(self, other):
        return isinstance(other, Driver)

    def __hash__(self):
        return hash(Driver)


__all__ = ['Connector', 'Driver']
