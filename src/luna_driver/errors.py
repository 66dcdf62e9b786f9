"""
Error types for the Luna driver

Follows the PEP 249 exception hierarchy. Driver-specific kinds subclass the
PEP 249 class that matches how a caller (or a connection pool) should react:

- BadConnectionError: discard the connection and redial
- ProtocolError: the byte stream is unsynchronized, the connection is dead
- ServerError: the server rejected the command, connection still usable
- MisuseError: caller bug (closed statement, double commit, ...)
"""


class Warning(Exception):  # noqa: A001 - name mandated by PEP 249
    """Important warnings such as data truncation"""


class Error(Exception):
    """Base exception for all Luna driver errors"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InterfaceError(Error):
    """Errors related to the driver itself rather than the database"""


class DatabaseError(Error):
    """Errors related to the database"""


class DataError(DatabaseError):
    """Problems with the processed data"""


class OperationalError(DatabaseError):
    """Errors related to the database's operation, not under caller control"""


class IntegrityError(DatabaseError):
    """Relational integrity affected"""


class InternalError(DatabaseError):
    """Database internal error"""


class ProgrammingError(DatabaseError):
    """Caller programming errors"""


class NotSupportedError(DatabaseError):
    """Method or API not supported by Luna"""


class BadConnectionError(OperationalError):
    """
    Connection is unusable (dial failure, broken socket, closed session).

    Pools should discard the connection and open a new one instead of
    retrying on the same session.
    """

    def __init__(self, message: str = "bad connection"):
        super().__init__(f"Connection error: {message}")


class AuthenticationError(OperationalError):
    """Challenge/response handshake failed"""

    def __init__(self, message: str):
        super().__init__(f"Authentication failed: {message}")


class ProtocolError(InterfaceError):
    """Unexpected bytes on the wire; the session must be closed"""

    def __init__(self, message: str):
        super().__init__(f"Protocol error: {message}")


class ServerError(DatabaseError):
    """Error reported by the server in a '-' frame"""

    def __init__(self, server_message: str):
        self.server_message = server_message
        super().__init__(f"luna error: {server_message}")


class DecodeError(DataError):
    """Result column could not be decoded"""

    def __init__(self, message: str):
        super().__init__(f"Decode error: {message}")


class MisuseError(ProgrammingError):
    """Driver object used in a way its lifecycle does not allow"""

    def __init__(self, message: str):
        super().__init__(f"misuse of luna driver: {message}")


__all__ = [
    "Warning",
    "Error",
    "InterfaceError",
    "DatabaseError",
    "DataError",
    "OperationalError",
    "IntegrityError",
    "InternalError",
    "ProgrammingError",
    "NotSupportedError",
    "BadConnectionError",
    "AuthenticationError",
    "ProtocolError",
    "ServerError",
    "DecodeError",
    "MisuseError",
]
