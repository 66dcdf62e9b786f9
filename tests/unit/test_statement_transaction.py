"""
Unit Tests for the Statement and Transaction shims

The session is mocked; these shims only forward and enforce lifecycle rules.
"""

from unittest.mock import MagicMock

import pytest

from luna_driver.errors import MisuseError, ServerError
from luna_driver.rows import ExecResult, NamedValue
from luna_driver.statement import Statement, values_to_named
from luna_driver.transaction import Transaction


def make_session():
    session = MagicMock()
    session.in_transaction = True

    def finish():
        session.in_transaction = False

    session.commit.side_effect = finish
    session.rollback.side_effect = finish
    return session


class TestValuesToNamed:
    def test_ordinals_are_one_based(self):
        assert values_to_named(["a", None]) == [NamedValue(1, "a"), NamedValue(2, None)]

    def test_no_values(self):
        assert values_to_named(None) == []


class TestStatement:
    """Test suite for prepared statement shim"""

    def setup_method(self):
        self.session = MagicMock()
        self.statement = Statement(self.session, "SELECT * FROM t WHERE id = ?")

    def test_num_input_unknown(self):
        assert self.statement.num_input() == -1

    def test_exec_forwards_sql_and_args(self):
        self.session.exec.return_value = ExecResult()
        result = self.statement.exec([5])

        self.session.exec.assert_called_once_with("SELECT * FROM t WHERE id = ?", [NamedValue(1, 5)])
        assert result.rows_affected == 0

    def test_query_forwards(self):
        self.statement.query()
        self.session.query.assert_called_once_with("SELECT * FROM t WHERE id = ?", [])

    def test_use_after_close(self):
        """Closed statements report misuse instead of aborting"""
        self.statement.close()
        with pytest.raises(MisuseError):
            self.statement.exec()
        with pytest.raises(MisuseError):
            self.statement.query()
        with pytest.raises(MisuseError):
            self.statement.num_input()
        self.session.exec.assert_not_called()

    def test_double_close(self):
        self.statement.close()
        with pytest.raises(MisuseError, match="already closed"):
            self.statement.close()


class TestTransaction:
    """Test suite for transaction shim"""

    def setup_method(self):
        self.session = make_session()
        self.tx = Transaction(self.session)

    def test_commit(self):
        self.tx.commit()
        self.session.commit.assert_called_once_with()
        assert not self.tx.active

    def test_rollback(self):
        self.tx.rollback()
        self.session.rollback.assert_called_once_with()

    def test_double_commit(self):
        self.tx.commit()
        with pytest.raises(MisuseError, match="extra Commit"):
            self.tx.commit()

    def test_rollback_after_commit(self):
        self.tx.commit()
        with pytest.raises(MisuseError, match="extra Rollback"):
            self.tx.rollback()

    def test_context_manager_rolls_back_uncommitted(self):
        with self.tx:
            pass
        self.session.rollback.assert_called_once_with()

    def test_context_manager_after_commit(self):
        with self.tx as tx:
            tx.commit()
        self.session.rollback.assert_not_called()

    def test_context_manager_keeps_original_error(self):
        """A failing rollback does not hide the error that ended the block"""
        self.session.rollback.side_effect = ServerError("rollback failed")
        with pytest.raises(ValueError, match="boom"):
            with self.tx:
                raise ValueError("boom")
