"""
DB-API 2.0 (PEP-249) implementation of the driver capability.

Raw DBAPI connections come from a SQLAlchemy engine per connection URL.
Everything vendor specific (autocommit switching, paramstyles, command
timeouts, stored procedure calls) is delegated to the owning provider.

Connections run in autocommit mode until a transaction is begun, so a
command without a transaction is durable as soon as it returns.
"""
import logging
import time
from functools import wraps
from typing import TYPE_CHECKING, Any

from fluentdb.driver.base import Command, Connection, DataAdapter, DataReader
from fluentdb.driver.base import DataRecord, DataSet, DbTransaction
from fluentdb.driver.base import DriverFactory, Parameter, build_ordinals
from fluentdb.sql import CompiledQuery, compile_parameters, strip_prefix
from fluentdb.types import CommandType, ConnectionState, TypeConverter
from fluentdb.types import columns_from_cursor_description
from fluentdb.utils.connection_utils import check_connection, get_engine

if TYPE_CHECKING:
    from fluentdb.options import ConnectionParameters
    from fluentdb.provider.base import DbApiProvider

logger = logging.getLogger(__name__)

FETCH_SIZE = 5000


def dumpsql(func):
    """Decorator for logging SQL queries and parameters."""
    @wraps(func)
    def wrapper(self, query: CompiledQuery, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{query.sql}\nargs: {query.params}')
        try:
            return func(self, query, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{query.sql}\nargs: {query.params}')
            raise
        finally:
            elapsed = time.time() - start
            self.connection.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class DbApiFactory(DriverFactory):
    """Driver factory for a DB-API provider."""

    def __init__(self, provider: 'DbApiProvider',
                 parameters: 'ConnectionParameters | None' = None,
                 sleep_func=time.sleep) -> None:
        self.provider = provider
        self.connect_retries = parameters.connect_retries if parameters else 3
        self.connect_retry_delay = parameters.connect_retry_delay if parameters else 1
        self.data_loader = parameters.data_loader if parameters else None
        self.sleep_func = sleep_func

    def create_connection(self) -> 'DbApiConnection':
        return DbApiConnection(self)

    def create_parameter(self) -> Parameter:
        return Parameter()

    def create_data_adapter(self) -> 'DbApiDataAdapter':
        if self.data_loader is None:
            from fluentdb.loaders import pandas_numpy_data_loader
            return DbApiDataAdapter(pandas_numpy_data_loader)
        return DbApiDataAdapter(self.data_loader)


class DbApiConnection(Connection):
    """Wraps a raw DBAPI connection and tracks calls and execution time."""

    def __init__(self, factory: DbApiFactory) -> None:
        super().__init__()
        self.factory = factory
        self.dbapi_connection: Any = None
        self.calls = 0
        self.time = 0

    @property
    def provider(self) -> 'DbApiProvider':
        return self.factory.provider

    @property
    def driver_connection(self) -> Any:
        """The vendor connection underneath SQLAlchemy's pool proxy."""
        return getattr(self.dbapi_connection, 'driver_connection', self.dbapi_connection)

    def open(self) -> None:
        if self.state is ConnectionState.OPEN:
            return
        if not self.connection_string:
            raise ValueError('A connection string must be assigned before opening')

        engine = get_engine(self.connection_string, **self.provider.engine_kwargs())
        connect = check_connection(max_retries=self.factory.connect_retries,
                                   retry_delay=self.factory.connect_retry_delay,
                                   sleep_func=self.factory.sleep_func)(engine.raw_connection)
        try:
            self.dbapi_connection = connect()
            self.provider.configure_connection(self.driver_connection)
            self.provider.enable_autocommit(self.driver_connection)
        except Exception:
            self.state = ConnectionState.BROKEN
            self.close()
            raise
        self.state = ConnectionState.OPEN
        logger.debug(f'Opened {self.provider.identifier} connection {id(self)}')

    def create_command(self) -> 'DbApiCommand':
        return DbApiCommand(self)

    def begin_transaction(self) -> 'DbApiTransaction':
        if self.state is not ConnectionState.OPEN:
            raise ValueError('A transaction requires an open connection')
        self.provider.disable_autocommit(self.driver_connection)
        return DbApiTransaction(self)

    def addcall(self, elapsed: float) -> None:
        self.time += elapsed
        self.calls += 1

    def close(self) -> None:
        if self.dbapi_connection is None:
            self.state = ConnectionState.CLOSED
            return
        try:
            self.dbapi_connection.close()
        finally:
            self.dbapi_connection = None
            self.state = ConnectionState.CLOSED
            logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                         f'(avg: {self.time/max(1, self.calls):.3f}s per query)')


class DbApiTransaction(DbTransaction):
    """Transaction on a DBAPI connection with autocommit switched off."""

    def commit(self) -> None:
        self.connection.dbapi_connection.commit()
        self.connection.provider.enable_autocommit(self.connection.driver_connection)
        logger.debug(f'Committed transaction {self.id}')

    def rollback(self) -> None:
        self.connection.dbapi_connection.rollback()
        self.connection.provider.enable_autocommit(self.connection.driver_connection)
        logger.debug(f'Rolled back transaction {self.id}')


class DbApiCommand(Command):
    """Command executed through a DBAPI cursor."""

    @property
    def provider(self) -> 'DbApiProvider':
        return self.connection.provider

    def _driver_value(self, parameter: Parameter) -> Any:
        value = TypeConverter.convert_value(parameter.value)
        if value is not None and callable(parameter.provider_type):
            value = parameter.provider_type(value)
        return value

    def compile(self) -> CompiledQuery:
        """Return the driver-ready statement for the current text and parameters."""
        provider = self.provider
        prefix = provider.parameter_prefix

        if self.command_type is CommandType.STORED_PROCEDURE:
            arguments = [(p, self._driver_value(p)) for p in self.parameters]
            return provider.procedure_call(self.text, arguments)

        values = {}
        for parameter in self.parameters:
            name = parameter.name if parameter.name.startswith(prefix) else prefix + parameter.name
            values[name] = self._driver_value(parameter)

        paramstyle = provider.named_paramstyle if self.bind_by_name else provider.positional_paramstyle
        return compile_parameters(self.text, values, paramstyle, prefix)

    @dumpsql
    def _execute(self, query: CompiledQuery) -> Any:
        with self.provider.command_timeout(self.connection.driver_connection, self.timeout):
            cursor = self.connection.dbapi_connection.cursor()
            try:
                if query.params is None:
                    cursor.execute(query.sql)
                else:
                    cursor.execute(query.sql, query.params)
            except Exception:
                cursor.close()
                raise
        return cursor

    def execute_non_query(self) -> int:
        cursor = self._execute(self.compile())
        try:
            rowcount = cursor.rowcount
            if self.command_type is CommandType.STORED_PROCEDURE:
                self._assign_output_values(cursor)
            return rowcount
        finally:
            cursor.close()

    def execute_scalar(self) -> Any:
        cursor = self._execute(self.compile())
        try:
            if cursor.description is None:
                return None
            row = cursor.fetchone()
            return row[0] if row is not None else None
        finally:
            cursor.close()

    def execute_reader(self, close_connection: bool = False) -> 'DbApiDataReader':
        cursor = self._execute(self.compile())
        return DbApiDataReader(cursor, self.connection if close_connection else None)

    def _assign_output_values(self, cursor: Any) -> None:
        """Copy the last result row returned by a procedure call into output parameters.

        Columns are matched to parameters by unprefixed name (case-insensitive).
        """
        outputs = self.parameters.output_parameters()
        if not outputs:
            return

        row, columns = None, []
        while True:
            if cursor.description is not None:
                fetched = cursor.fetchall()
                if fetched:
                    row, columns = fetched[-1], [d[0] for d in cursor.description]
            nextset = getattr(cursor, 'nextset', None)
            if nextset is None or not nextset():
                break

        if row is None:
            logger.debug('Procedure returned no output row')
            return

        by_name = {str(c).lower(): v for c, v in zip(columns, row)}
        prefix = self.provider.parameter_prefix
        for parameter in outputs:
            key = strip_prefix(parameter.name, prefix).lower()
            if key in by_name:
                parameter.value = by_name[key]


class DbApiDataReader(DataReader):
    """Reader over an executed cursor, fetching in chunks."""

    def __init__(self, cursor: Any, owned_connection: DbApiConnection | None = None) -> None:
        self.cursor = cursor
        self.owned_connection = owned_connection
        description = cursor.description or []
        self._columns = [str(d[0]) for d in description]
        self._ordinals = build_ordinals(self._columns)
        self._buffer: list = []
        self._exhausted = cursor.description is None
        self._closed = False

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self) -> DataRecord | None:
        if self._closed:
            raise ValueError('Reader is closed')
        if not self._buffer and not self._exhausted:
            self._buffer = list(self.cursor.fetchmany(FETCH_SIZE))
            self._buffer.reverse()
            self._exhausted = not self._buffer
        if not self._buffer:
            return None
        return DataRecord(tuple(self._buffer.pop()), self._columns, self._ordinals)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.cursor.close()
        finally:
            if self.owned_connection is not None:
                self.owned_connection.close()


class DbApiDataAdapter(DataAdapter):
    """Loads every result set of the select command into a DataFrame."""

    def __init__(self, data_loader) -> None:
        super().__init__()
        self.data_loader = data_loader

    def fill(self) -> DataSet:
        if self.select_command is None:
            raise ValueError('select_command must be set before fill')

        command = self.select_command
        cursor = command._execute(command.compile())
        tables = []
        try:
            while True:
                if cursor.description is not None:
                    columns = columns_from_cursor_description(cursor)
                    tables.append(self.data_loader(cursor.fetchall(), columns))
                nextset = getattr(cursor, 'nextset', None)
                if nextset is None or not nextset():
                    break
        finally:
            cursor.close()

        logger.debug(f'Filled data set with {len(tables)} table(s)')
        return DataSet(tables)
