"""
Transaction contexts and sessions that borrow their connection.
"""
import pytest
from fluentdb import ExecutionError, TransactionContext, TransactionStateError
from fluentdb.types import ConnectionState, SessionState, TransactionState


@pytest.fixture
def tx(session):
    return session.create_transaction()


class TestTransactionContext:

    def test_begin(self, session, fake_driver):
        messages = []
        context = session.create_transaction(log=messages.append)
        [connection] = fake_driver.connections
        [transaction] = connection.transactions

        assert isinstance(context, TransactionContext)
        assert context.state is TransactionState.ACTIVE
        assert context.transaction is transaction
        assert messages == [f'Transaction: {transaction.id} - Begin']
        # the session no longer holds the connection
        assert session.connection is None
        assert connection.state is ConnectionState.OPEN

    def test_complete_commits_and_closes(self, tx, fake_driver):
        [connection] = fake_driver.connections
        tx.complete()
        assert connection.transactions[0].commits == 1
        assert connection.close_calls == 1
        assert tx.state is TransactionState.COMPLETED
        assert tx.transaction is None

    def test_complete_twice(self, tx):
        tx.complete()
        with pytest.raises(TransactionStateError):
            tx.complete()

    def test_dispose_after_complete_is_noop(self, tx, fake_driver):
        [connection] = fake_driver.connections
        tx.complete()
        tx.dispose()
        tx.dispose()
        assert connection.transactions[0].rollbacks == 0
        assert connection.close_calls == 1

    def test_dispose_rolls_back_once(self, tx, fake_driver):
        [connection] = fake_driver.connections
        tx.dispose()
        tx.dispose()
        assert connection.transactions[0].rollbacks == 1
        assert connection.close_calls == 1
        assert tx.state is TransactionState.ROLLED_BACK
        with pytest.raises(TransactionStateError):
            tx.complete()

    def test_context_manager_rolls_back_without_complete(self, tx, fake_driver):
        [connection] = fake_driver.connections
        with tx:
            pass
        assert connection.transactions[0].rollbacks == 1
        assert tx.state is TransactionState.ROLLED_BACK

    def test_context_manager_after_complete(self, tx, fake_driver):
        [connection] = fake_driver.connections
        with tx:
            tx.complete()
        assert connection.transactions[0].rollbacks == 0
        assert tx.state is TransactionState.COMPLETED

    def test_commit_failure_rolls_back(self, tx, fake_driver):
        fake_driver.fail_commit = True
        [connection] = fake_driver.connections
        with pytest.raises(ExecutionError, match='committing'):
            tx.complete()
        assert connection.transactions[0].rollbacks == 1
        assert connection.close_calls == 1
        assert tx.state is TransactionState.ROLLED_BACK

    def test_rollback_failure_raised_from_dispose(self, tx, fake_driver):
        fake_driver.fail_rollback = True
        [connection] = fake_driver.connections
        with pytest.raises(ExecutionError, match='rolling back'):
            tx.dispose()
        assert connection.close_calls == 1
        assert tx.state is TransactionState.ROLLED_BACK

    def test_rollback_failure_keeps_block_exception(self, tx, fake_driver):
        fake_driver.fail_rollback = True
        [connection] = fake_driver.connections
        with pytest.raises(KeyError, match='missing'), tx:
            raise KeyError('missing')
        assert connection.transactions[0].rollbacks == 1
        assert connection.close_calls == 1
        assert tx.state is TransactionState.ROLLED_BACK

    def test_rollback_failure_without_block_exception(self, tx, fake_driver):
        fake_driver.fail_rollback = True
        with pytest.raises(ExecutionError), tx:
            pass


class TestSessionInTransaction:

    @pytest.mark.asyncio
    async def test_connection_kept_open(self, tx, new_session, fake_driver):
        """A command bound to a transaction never closes its connection"""
        [connection] = fake_driver.connections
        messages = []

        count = await (new_session()
                       .create_command('UPDATE t SET x=@x', tx)
                       .add_parameter('x', 1)
                       .execute_update(log=messages.append))

        assert count == 1
        assert len(fake_driver.connections) == 1
        assert connection.close_calls == 0
        assert connection.state is ConnectionState.OPEN
        assert messages == [f'Transaction: {tx.id} - UPDATE t SET x=1']
        assert fake_driver.executed[0].transaction is None  # disposed afterwards

        tx.complete()
        assert connection.close_calls == 1

    @pytest.mark.asyncio
    async def test_commands_share_transaction(self, tx, new_session, fake_driver):
        first, second = new_session(), new_session()
        await first.create_command('delete from t', tx).execute_delete()
        await second.create_command('insert into t values (1)', tx).execute_insert()
        tx.complete()

        [connection] = fake_driver.connections
        assert connection.transactions[0].commits == 1
        assert connection.close_calls == 1

    @pytest.mark.asyncio
    async def test_failure_scenario(self, tx, new_session, fake_driver):
        """Driver failure inside a transaction: one rollback, one close"""
        fake_driver.fail_execute = True
        [connection] = fake_driver.connections
        session = new_session()

        with pytest.raises(ExecutionError):
            await session.create_command('UPDATE t SET x=1', tx).execute_update()

        assert connection.close_calls == 0
        tx.dispose()
        assert connection.transactions[0].rollbacks == 1
        assert connection.close_calls == 1

    def test_session_dispose_keeps_borrowed_connection(self, tx, new_session, fake_driver):
        session = new_session().create_command('select 1', tx)
        session.dispose()
        assert fake_driver.connections[0].close_calls == 0
        assert session.state is SessionState.DISPOSED

    def test_finished_transaction_not_borrowed(self, tx, new_session, fake_driver):
        tx.complete()
        session = new_session().create_command('select 1', tx)
        assert len(fake_driver.connections) == 2
        assert session.command.transaction is None
        assert session.connection is fake_driver.connections[1]


if __name__ == '__main__':
    __import__('pytest').main([__file__])
