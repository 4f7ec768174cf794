"""
Transaction context: owns one transaction's commit-or-rollback decision.

A context is handed out by `Session.create_transaction` and owns the
connection the transaction runs on. Sessions that bind commands to it borrow
that connection and never close it themselves.

Examples
    tx = create_session(params).create_transaction()
    try:
        await create_session(params).create_command('delete from t', tx).execute_delete()
        await create_session(params).create_command('insert into t ...', tx).execute_insert()
        tx.complete()
    finally:
        tx.dispose()

or, equivalently, `with tx: ...; tx.complete()`. Leaving the block without
`complete()` rolls the transaction back.
"""
import logging
from typing import Any, Self

from fluentdb.driver.base import Connection, DbTransaction
from fluentdb.exceptions import ExecutionError, TransactionStateError
from fluentdb.types import TransactionState

__all__ = ['TransactionContext']

logger = logging.getLogger(__name__)


class TransactionContext:
    """Wraps one active transaction.

    State moves exactly once, from ACTIVE to COMPLETED (`complete()`) or to
    ROLLED_BACK (`dispose()` without a prior `complete()`). Either way the
    connection is closed.
    """

    def __init__(self, transaction: DbTransaction) -> None:
        self._transaction = transaction
        self._connection: Connection = transaction.connection
        self._state = TransactionState.ACTIVE

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def transaction(self) -> DbTransaction | None:
        """The live transaction, None once the context left ACTIVE."""
        if self._state is TransactionState.ACTIVE:
            return self._transaction
        return None

    @property
    def connection(self) -> Connection | None:
        if self._state is TransactionState.ACTIVE:
            return self._connection
        return None

    @property
    def id(self) -> int:
        return self._transaction.id

    def complete(self) -> None:
        """Commit the transaction and close its connection.

        Raises
            TransactionStateError: The context already completed or rolled back
            ExecutionError: The commit failed; the transaction is rolled back
        """
        if self._state is not TransactionState.ACTIVE:
            raise TransactionStateError(f'Transaction {self.id} already {self._state.name.lower()}.')

        try:
            self._transaction.commit()
        except Exception as exc:
            logger.error(f'Commit failed for transaction {self.id}: {exc}')
            self._state = TransactionState.ROLLED_BACK
            try:
                self._transaction.rollback()
            except Exception as rollback_exc:
                logger.warning(f'Rollback after failed commit also failed: {rollback_exc}')
            finally:
                self._close()
            raise ExecutionError('Error while committing transaction.') from exc

        self._state = TransactionState.COMPLETED
        logger.debug(f'Transaction {self.id} completed')
        self._close()

    def dispose(self) -> None:
        """Roll back unless completed, then close the connection. Safe to repeat."""
        if self._state is not TransactionState.ACTIVE:
            return

        self._state = TransactionState.ROLLED_BACK
        logger.warning(f'Rolling back transaction {self.id}')
        try:
            self._transaction.rollback()
        except Exception as exc:
            raise ExecutionError('Error while rolling back transaction.') from exc
        finally:
            self._close()

    def _close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        if exc_type is None:
            self.dispose()
            return
        # the exception leaving the block wins over a failed rollback
        try:
            self.dispose()
        except ExecutionError as exc:
            logger.error(f'Rollback of transaction {self.id} failed while handling '
                         f'{exc_type.__name__}: {exc.__cause__}')

    def __repr__(self) -> str:
        return f'TransactionContext(id={self.id}, state={self._state.name})'
