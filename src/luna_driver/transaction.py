"""
Transaction shim

BEGIN TRANSACTION / COMMIT TRANSACTION / ROLLBACK are sent as literal
commands. Luna keeps no state between commands, so a transaction gives no
atomicity; the object only enforces begin/commit/rollback ordering.
"""

from typing import TYPE_CHECKING, Optional

import structlog

from .errors import Error, MisuseError

if TYPE_CHECKING:
    from .session import Session

logger = structlog.get_logger()


class Transaction:
    """
    An open transaction on a session

    Can be used as a context manager; if neither commit() nor rollback() was
    called when the block exits, the transaction is rolled back.

    Examples:
        >>> with conn.begin() as tx:
        ...     conn.exec("INSERT INTO t VALUES (1)")
        ...     tx.commit()
    """

    def __init__(self, session: 'Session'):
        """Internal constructor - use Connection.begin() instead"""
        self._session: Optional['Session'] = session

    @property
    def active(self) -> bool:
        return self._session is not None and self._session.in_transaction

    def commit(self):
        if not self.active:
            raise MisuseError("extra Commit")
        session, self._session = self._session, None
        session.commit()

    def rollback(self):
        if not self.active:
            raise MisuseError("extra Rollback")
        session, self._session = self._session, None
        session.rollback()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.active:
            return False
        if exc_type is None:
            self.rollback()
            return False
        try:
            self.rollback()
        except Error as e:
            # The exception from the block propagates
            logger.warning("rollback after error failed", error=e.message)
        return False


__all__ = ['Transaction']
