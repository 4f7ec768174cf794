"""
Fluent database session.

A session couples one resolved provider with at most one connection and at
most one live command. Builder methods return the session itself; terminal
operations are coroutines that run the driver call on a worker thread, report
the rendered SQL to an optional `log` callback and dispose the session.

Examples
    session = create_session(params)
    count = await (session
                   .create_command('insert into t(x) values (@x)')
                   .add_parameter('x', 5)
                   .execute_insert(log=print))

    rows = await (create_session(params)
                  .create_command('select x from t where x > @lo')
                  .add_parameter('lo', 1)
                  .execute_data_reader(lambda r: r['x']))

The connection is acquired lazily and closed after every terminal operation,
unless the command was bound to a `TransactionContext`; that connection
belongs to the transaction and only its completion or rollback closes it.

A session is single-owner: it holds mutable connection and command state
without locking, so one caller drives it at a time.
"""
import asyncio
import logging
from collections.abc import Callable
from typing import Any, Self, TypeVar

from fluentdb.driver.base import Command, Connection, DataRecord, DataSet
from fluentdb.driver.base import DriverFactory, Parameter
from fluentdb.exceptions import ConnectionError, DatabaseSessionError
from fluentdb.exceptions import ExecutionError, ParameterCreationError
from fluentdb.exceptions import SessionStateError
from fluentdb.options import ConnectionParameters, connection_parameters
from fluentdb.provider import ProviderDescriptor, ProviderRegistry
from fluentdb.provider import default_registry
from fluentdb.render import to_command_string
from fluentdb.transaction import TransactionContext
from fluentdb.types import CommandType, DbType, ParameterDirection
from fluentdb.types import SessionState, TypeConverter

__all__ = ['Session', 'RecordStream', 'create_session']

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Leave the provider's default command timeout unchanged
KEEP_TIMEOUT = -1

_DONE = object()


def create_session(parameters: ConnectionParameters | dict[str, Any] | str,
                   registry: ProviderRegistry | None = None,
                   config: Any | None = None) -> 'Session':
    """Entry point: resolve the provider and return an unconnected session.

    Args:
        parameters: ConnectionParameters, or anything `connection_parameters`
            accepts (a dict, or a connection name looked up in `config`)
        registry: Provider registry, defaults to the package registry
        config: Configuration module holding named connections

    Returns
        Session in the UNCONNECTED state; no connection is opened here

    Raises
        ProviderResolutionError: No provider is registered under `parameters.provider`
        ConnectionError: The provider could not build a connection string
    """
    parameters = connection_parameters(parameters, config)
    registry = registry if registry is not None else default_registry
    provider = registry.resolve(parameters.provider)

    try:
        connection_string = provider.build_connection_string(parameters)
    except Exception as exc:
        raise ConnectionError(f'Unable to build a connection string for {parameters.name}.') from exc

    factory = provider.driver_factory(parameters)
    logger.debug(f'Created session for {parameters.name} using {provider!r}')
    return Session(provider, connection_string, factory)


def _log_message(command: Command) -> str:
    text = to_command_string(command)
    if command.transaction is not None:
        return f'Transaction: {command.transaction.id} - {text}'
    return text


async def _in_worker(func: Callable[..., T], *args: Any, on_cancel: Callable[[], None]) -> T:
    """Run `func` on a worker thread.

    The thread cannot be interrupted, so when the awaiting task is cancelled
    `on_cancel` runs once the thread has finished and the cancellation is
    re-raised.
    """
    worker = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(worker)
    except asyncio.CancelledError:
        def finished(task: asyncio.Future) -> None:
            if not task.cancelled() and task.exception() is not None:
                logger.debug(f'Worker failed after cancellation: {task.exception()}')
            on_cancel()

        logger.warning('Caller cancelled while the driver call was running; disposing once it returns')
        worker.add_done_callback(finished)
        raise


class Session:
    """Connection + at most one live command, driven through a fluent API.
    """

    def __init__(self, provider: ProviderDescriptor, connection_string: str,
                 factory: DriverFactory) -> None:
        self.provider = provider
        self.connection_string = connection_string
        self.factory = factory
        self._connection: Connection | None = None
        self._owns_connection = False
        self._command: Command | None = None
        self._state = SessionState.UNCONNECTED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def command(self) -> Command | None:
        return self._command

    # == connection

    def connect(self, transaction_context: TransactionContext | None = None) -> Self:
        """Make sure the session has an open connection.

        A live transaction lends its connection; otherwise the session keeps
        its own open connection or obtains a new one from the driver factory.

        Raises
            ConnectionError: No connection could be created or opened. The
                session is disposed first.
        """
        if transaction_context is not None and transaction_context.transaction is not None:
            if self._connection is not transaction_context.connection:
                self._release_connection()
                self._connection = transaction_context.connection
                self._owns_connection = False
                logger.debug(f'Borrowed connection of transaction {transaction_context.id}')
            self._advance(SessionState.CONNECTED)
            return self

        if self._connection is not None and self._owns_connection and self._connection.is_open:
            return self

        self._release_connection()
        try:
            connection = self.factory.create_connection()
            if connection is None:
                raise ConnectionError(f'Unable to create a connection using {type(self.factory).__name__}')
            self._connection = connection
            self._owns_connection = True
            connection.connection_string = self.connection_string
            if not connection.is_open:
                connection.open()
            if not connection.is_open:
                raise ConnectionError('Unable to open connection successfully')
        except DatabaseSessionError:
            self.dispose()
            raise
        except Exception as exc:
            self.dispose()
            raise ConnectionError('Error while opening connection.') from exc

        self._advance(SessionState.CONNECTED)
        return self

    def create_transaction(self, log: Callable[[str], None] | None = None) -> TransactionContext:
        """Begin a transaction on a new connection and hand both to a context.

        The session forgets the connection: from now on it belongs to the
        returned context. Any command bound to the session is disposed.
        """
        self._dispose_command()
        try:
            self.connect()
            transaction = self._connection.begin_transaction()
            if transaction is None:
                raise ConnectionError('Unable to begin a transaction on the connection')
        except DatabaseSessionError:
            self.dispose()
            raise
        except Exception as exc:
            self.dispose()
            raise ExecutionError('Error while beginning transaction.') from exc

        context = TransactionContext(transaction)
        self._connection = None
        self._owns_connection = False
        self._state = SessionState.UNCONNECTED

        message = f'Transaction: {context.id} - Begin'
        logger.debug(message)
        if log is not None:
            log(message)
        return context

    # == command building

    def create_command(self, sql: str, transaction_context: TransactionContext | None = None) -> Self:
        """Bind a new command, disposing the previous one.

        Args:
            sql: Command text, parameters written with the provider prefix
            transaction_context: Run the command inside this transaction

        Returns
            The session itself
        """
        self._dispose_command()
        self.connect(transaction_context)

        command = None
        try:
            command = self._connection.create_command()
            if command is None:
                raise ExecutionError('Unable to create a command on the connection', sql)
            command.text = sql
            self.provider.decorate_command(command)
            if transaction_context is not None and transaction_context.transaction is not None:
                command.transaction = transaction_context.transaction
        except DatabaseSessionError:
            self.dispose()
            raise
        except Exception as exc:
            text = to_command_string(command) if command is not None else sql
            self.dispose()
            raise ExecutionError('Error while creating command.', text) from exc

        self._command = command
        self._state = SessionState.COMMAND_BOUND
        logger.debug(f'Created command: {sql}')
        return self

    def set_command_timeout(self, seconds: int) -> Self:
        """Override the driver command timeout; -1 keeps the provider default."""
        command = self._require_command('set_command_timeout')
        if seconds == KEEP_TIMEOUT:
            return self
        if seconds < 0:
            raise ValueError(f'Command timeout must be -1 or non-negative, got {seconds}')
        command.timeout = seconds
        return self

    def add_parameter(self, name: str, value: Any,
                      db_type: DbType | None = None,
                      direction: ParameterDirection | None = None,
                      size: int | None = None,
                      prefixed: bool = True) -> Self:
        """Bind a parameter to the current command.

        Args:
            name: Parameter name; a name already carrying the provider prefix
                is used unchanged
            value: Parameter value; None, NaN and NaT bind NULL
            db_type: Generic type, mapped through the provider; None infers it
            direction: Defaults to INPUT
            size: Size for variable-length types
            prefixed: Prepend the provider prefix to unprefixed names

        Raises
            SessionStateError: No command is bound
            ParameterCreationError: The driver could not manufacture or bind
                the parameter. The session is disposed first.
        """
        command = self._require_command('add_parameter')

        try:
            parameter: Parameter = self.factory.create_parameter()
            if parameter is None:
                raise ParameterCreationError(
                    f'Unable to create a database parameter named {name} with the value {value} '
                    f'using {type(self.factory).__name__}', to_command_string(command))

            prefix = self.provider.parameter_prefix
            if name.startswith(prefix):
                parameter.name = name
            else:
                parameter.name = f'{prefix}{name}' if prefixed else name
            parameter.value = TypeConverter.convert_value(value)
            if db_type is not None:
                parameter.db_type = db_type
                parameter.provider_type = self.provider.map_parameter_type(db_type)
            if direction is not None:
                parameter.direction = direction
            if size is not None:
                parameter.size = size
            command.parameters.add(parameter)
        except DatabaseSessionError:
            self.dispose()
            raise
        except Exception as exc:
            text = to_command_string(command)
            self.dispose()
            raise ParameterCreationError(
                f'Error while creating parameter. ParameterName: {name} - ParameterValue: {value}.',
                text) from exc

        logger.debug(f'Bound parameter {parameter.name}')
        return self

    def add_parameter_if(self, condition: Callable[[], bool] | bool, name: str, value: Any,
                         db_type: DbType | None = None,
                         direction: ParameterDirection | None = None,
                         size: int | None = None,
                         prefixed: bool = True) -> Self:
        """Bind the parameter only when `condition` (or `condition()`) holds."""
        if callable(condition):
            condition = condition()
        if not condition:
            self._require_command('add_parameter_if')
            return self
        return self.add_parameter(name, value, db_type, direction, size, prefixed)

    # == terminal operations

    async def execute_scalar(self, cast: Callable[[Any], T] | None = None,
                             log: Callable[[str], None] | None = None) -> T | Any:
        """Return the first column of the first row, optionally cast.

        NULL (or no row) returns None without casting.
        """
        command = self._require_command('execute_scalar')

        def scalar(cmd: Command) -> Any:
            value = cmd.execute_scalar()
            if value is None or cast is None:
                return value
            return cast(value)

        return await self._run(command, 'scalar', scalar, log)

    async def execute_data_reader(self, project: Callable[[DataRecord], T],
                                  log: Callable[[str], None] | None = None) -> list[T]:
        """Read every row, apply `project` to each and return the list."""
        command = self._require_command('execute_data_reader')
        self._require_projection(command, project)

        def read(cmd: Command) -> list[T]:
            with cmd.execute_reader() as reader:
                return [project(record) for record in reader]

        return await self._run(command, 'data reader', read, log)

    def execute_data_reader_stream(self, project: Callable[[DataRecord], T],
                                   log: Callable[[str], None] | None = None) -> 'RecordStream':
        """Return a lazy single-pass stream of projected rows.

        The command runs on first iteration. The stream disposes the session
        when exhausted, closed, exited as a context manager or on error:

            with session.execute_data_reader_stream(project) as rows:
                for row in rows:
                    ...
        """
        command = self._require_command('execute_data_reader_stream')
        self._require_projection(command, project)
        return RecordStream(self, command, project, log)

    async def execute_stored_procedure(self, log: Callable[[str], None] | None = None) -> list[Parameter]:
        """Call the bound procedure and return its output-capable parameters.

        OUTPUT, INPUT_OUTPUT and RETURN_VALUE parameters are returned with the
        values the procedure produced.
        """
        command = self._require_command('execute_stored_procedure')
        command.command_type = CommandType.STORED_PROCEDURE

        def call(cmd: Command) -> list[Parameter]:
            cmd.execute_non_query()
            return cmd.parameters.output_parameters()

        return await self._run(command, 'stored procedure', call, log)

    async def execute_stored_procedure_row_count(self, log: Callable[[str], None] | None = None) -> int:
        command = self._require_command('execute_stored_procedure_row_count')
        command.command_type = CommandType.STORED_PROCEDURE
        return await self._run(command, 'stored procedure row count', _non_query, log)

    async def execute_update(self, log: Callable[[str], None] | None = None) -> int:
        command = self._require_command('execute_update')
        return await self._run(command, 'update', _non_query, log)

    async def execute_insert(self, log: Callable[[str], None] | None = None) -> int:
        command = self._require_command('execute_insert')
        return await self._run(command, 'insert', _non_query, log)

    async def execute_delete(self, log: Callable[[str], None] | None = None) -> int:
        command = self._require_command('execute_delete')
        return await self._run(command, 'delete', _non_query, log)

    async def get_data_set(self, log: Callable[[str], None] | None = None) -> DataSet:
        """Fill a DataSet (one DataFrame per result set) from the bound command."""
        command = self._require_command('get_data_set')

        def fill(cmd: Command) -> DataSet:
            adapter = self.factory.create_data_adapter()
            if adapter is None:
                raise ExecutionError(
                    f'Unable to create a database adapter using {type(self.factory).__name__}')
            adapter.select_command = cmd
            return adapter.fill()

        return await self._run(command, 'get data set', fill, log)

    async def _run(self, command: Command, operation: str,
                   call: Callable[[Command], T], log: Callable[[str], None] | None) -> T:
        """Run `call` off the event loop, report it and dispose the session.

        A cancelled caller leaves the disposal to the worker thread finishing.
        """
        message = _log_message(command)
        try:
            result = await _in_worker(call, command, on_cancel=self.dispose)
        except DatabaseSessionError as exc:
            if exc.command_text is None:
                exc.command_text = to_command_string(command)
            self.dispose()
            raise
        except Exception as exc:
            text = to_command_string(command)
            logger.error(f'Error while executing {operation}: {exc}')
            self.dispose()
            raise ExecutionError(f'Error while executing {operation}.', text) from exc

        try:
            if log is not None:
                log(message)
        finally:
            self._finish()
        return result

    # == disposal

    def dispose(self) -> None:
        """Dispose the command and, unless a transaction owns it, the connection.

        Safe to call repeatedly. A disposed session can bind a new command,
        which acquires a fresh connection.
        """
        self._dispose_command()
        self._release_connection()
        self._state = SessionState.DISPOSED

    def _finish(self) -> None:
        self.dispose()
        self._state = SessionState.EXECUTED

    def _dispose_command(self) -> None:
        command, self._command = self._command, None
        if command is not None:
            command.dispose()
            if self._state is SessionState.COMMAND_BOUND:
                self._state = SessionState.CONNECTED

    def _release_connection(self) -> None:
        connection, owned = self._connection, self._owns_connection
        self._connection = None
        self._owns_connection = False
        if connection is not None and owned:
            connection.close()

    def _require_command(self, operation: str) -> Command:
        if self._command is None:
            self.dispose()
            raise SessionStateError(
                f'A database command must be created before {operation} can be called.')
        return self._command

    def _require_projection(self, command: Command, project: Any) -> None:
        if project is None or not callable(project):
            text = to_command_string(command)
            self.dispose()
            raise SessionStateError(
                'A callable projection must be supplied in order to retrieve data from the reader.', text)

    def _advance(self, state: SessionState) -> None:
        if self._state is not SessionState.COMMAND_BOUND:
            self._state = state

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return f'Session(provider={self.provider!r}, state={self._state.name})'


def _non_query(command: Command) -> int:
    return command.execute_non_query()


class RecordStream:
    """Lazy, forward-only, single-pass sequence of projected rows.

    Supports both `for` and `async for`. The session is disposed exactly once,
    on exhaustion, `close()`, context exit or the first error. The `log`
    callback fires when a stream that ran its command closes without error.
    """

    def __init__(self, session: Session, command: Command,
                 project: Callable[[DataRecord], Any],
                 log: Callable[[str], None] | None = None) -> None:
        self._session = session
        self._command = command
        self._project = project
        self._log = log
        self._message = _log_message(command)
        self._reader = None
        self._failed = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _advance(self) -> Any:
        if self._closed:
            return _DONE
        try:
            if self._reader is None:
                owns = self._session._owns_connection
                self._reader = self._command.execute_reader(close_connection=owns)
            record = self._reader.read()
            if record is None:
                self.close()
                return _DONE
            return self._project(record)
        except DatabaseSessionError:
            self._failed = True
            self.close()
            raise
        except Exception as exc:
            text = to_command_string(self._command)
            logger.error(f'Error while streaming data reader: {exc}')
            self._failed = True
            self.close()
            raise ExecutionError('Error while executing data reader stream.', text) from exc

    def __iter__(self) -> Self:
        return self

    def __next__(self) -> Any:
        item = self._advance()
        if item is _DONE:
            raise StopIteration
        return item

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> Any:
        item = await _in_worker(self._advance, on_cancel=self._abandon)
        if item is _DONE:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        """Close the reader and dispose the session. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        reader, self._reader = self._reader, None
        try:
            if reader is not None:
                reader.close()
                if self._log is not None and not self._failed:
                    self._log(self._message)
        finally:
            self._session._finish()

    def _abandon(self) -> None:
        self._failed = True
        self.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        if exc_type is not None:
            self._failed = True
        self.close()
