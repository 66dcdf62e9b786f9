"""
Prepared statement shim

Luna has no server-side prepare; a Statement just binds SQL text to a session.
Arguments are passed through untouched (no client-side interpolation).
"""

from typing import Any, List, Optional, Sequence, TYPE_CHECKING

from .errors import MisuseError
from .rows import ExecResult, NamedValue, Rows

if TYPE_CHECKING:
    from .session import Session


def values_to_named(values: Optional[Sequence[Any]]) -> List[NamedValue]:
    """Convert positional values to NamedValues with 1-based ordinals"""
    return [NamedValue(ordinal=n + 1, value=value) for n, value in enumerate(values or ())]


class Statement:
    """SQL text bound to a session"""

    def __init__(self, session: 'Session', query: str):
        self._session = session
        self.query_text = query
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        if self._closed:
            raise MisuseError("statement already closed")
        self._closed = True

    def num_input(self) -> int:
        """-1: the driver cannot know how many placeholders the SQL has"""
        if self._closed:
            raise MisuseError("NumInput after Close")
        return -1

    def exec(self, args: Optional[Sequence[Any]] = None) -> ExecResult:
        if self._closed:
            raise MisuseError("statement is closed")
        return self._session.exec(self.query_text, values_to_named(args))

    def query(self, args: Optional[Sequence[Any]] = None) -> Rows:
        if self._closed:
            raise MisuseError("statement is closed")
        return self._session.query(self.query_text, values_to_named(args))


__all__ = ['Statement', 'values_to_named']
