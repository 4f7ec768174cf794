"""
Driver capability interface.

A provider hands the session a ``DriverFactory``; everything the session does
to a database goes through the objects it manufactures:

    DriverFactory ─┬─ create_connection() → Connection ─┬─ create_command() → Command
                   │                                    └─ begin_transaction() → DbTransaction
                   ├─ create_parameter()  → Parameter
                   └─ create_data_adapter() → DataAdapter

Any ``create_*`` may return None when the driver cannot manufacture the
object; the session turns that into the matching session error.
"""
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from typing import Any, Self

import pandas as pd
from fluentdb.types import CommandType, ConnectionState, DbType
from fluentdb.types import ParameterDirection

from libb import attrdict

__all__ = [
    'DriverFactory',
    'Connection',
    'Command',
    'DbTransaction',
    'Parameter',
    'ParameterCollection',
    'DataRecord',
    'DataReader',
    'DataAdapter',
    'DataSet',
]


class Parameter:
    """A parameter bound to a command.

    `db_type` is the generic type (None means inferred from the value) and
    `provider_type` whatever the provider mapped it to. Output-capable
    parameters receive their value from the driver after execution.
    """

    def __init__(self, name: str | None = None, value: Any = None,
                 db_type: DbType | None = None,
                 direction: ParameterDirection = ParameterDirection.INPUT,
                 size: int = 0) -> None:
        self.name = name
        self.value = value
        self.db_type = db_type
        self.provider_type: Any = db_type
        self.direction = direction
        self.size = size

    @property
    def is_output(self) -> bool:
        return self.direction.is_output

    def __repr__(self) -> str:
        return (f'Parameter(name={self.name!r}, value={self.value!r}, '
                f'db_type={self.db_type}, direction={self.direction.name})')


class ParameterCollection:
    """Ordered parameters of one command, addressable by position or name."""

    def __init__(self) -> None:
        self._items: list[Parameter] = []

    def add(self, parameter: Parameter) -> Parameter:
        self._items.append(parameter)
        return parameter

    def clear(self) -> None:
        self._items.clear()

    def output_parameters(self) -> list[Parameter]:
        """Parameters whose direction receives a value back from the driver."""
        return [p for p in self._items if p.is_output]

    def __getitem__(self, key: int | str) -> Parameter:
        if isinstance(key, int):
            return self._items[key]
        for parameter in self._items:
            if parameter.name == key:
                return parameter
        raise KeyError(key)

    def __contains__(self, name: str) -> bool:
        return any(p.name == name for p in self._items)

    def __iter__(self) -> Iterator[Parameter]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f'ParameterCollection({self._items!r})'


class DataRecord:
    """One row of a result set.

    Values are reachable by position or by column name; names are matched
    exactly first and then case-insensitively.
    """

    __slots__ = ('_values', '_columns', '_ordinals')

    def __init__(self, values: tuple, columns: list[str],
                 ordinals: dict[str, int] | None = None) -> None:
        self._values = tuple(values)
        self._columns = columns
        self._ordinals = ordinals if ordinals is not None else build_ordinals(columns)

    def get_ordinal(self, name: str) -> int:
        if name in self._ordinals:
            return self._ordinals[name]
        lowered = name.lower()
        if lowered in self._ordinals:
            return self._ordinals[lowered]
        raise IndexError(f'Column: {name}')

    def get_value(self, name: str, cast: Callable[[Any], Any] | None = None,
                  default: Any = None) -> Any:
        """Return the value of a column, `default` for NULL.

        A failing `cast` raises TypeError naming the column and the value type.
        """
        value = self._values[self.get_ordinal(name)]
        if value is None:
            return default
        if cast is None:
            return value
        try:
            return cast(value)
        except (TypeError, ValueError) as exc:
            raise TypeError(f'Column: {name} - Type: {type(value).__name__}') from exc

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self[name]
        except IndexError:
            return default

    def keys(self) -> list[str]:
        return list(self._columns)

    def values(self) -> tuple:
        return self._values

    @property
    def field_count(self) -> int:
        return len(self._values)

    def to_dict(self) -> dict[str, Any]:
        return dict(zip(self._columns, self._values))

    def to_attrdict(self) -> attrdict:
        return attrdict(self.to_dict())

    def __getitem__(self, key: int | str) -> Any:
        if isinstance(key, int):
            return self._values[key]
        return self._values[self.get_ordinal(key)]

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __repr__(self) -> str:
        return f'DataRecord({self.to_dict()!r})'


def build_ordinals(columns: list[str]) -> dict[str, int]:
    """Map column names (and their lowercase form) to positions; first wins."""
    ordinals: dict[str, int] = {}
    for i, name in enumerate(columns):
        ordinals.setdefault(name, i)
        ordinals.setdefault(name.lower(), i)
    return ordinals


class DataSet:
    """In-memory result sets, one pandas DataFrame per result set."""

    def __init__(self, tables: list[pd.DataFrame] | None = None) -> None:
        self.tables = tables or []

    @property
    def table(self) -> pd.DataFrame | None:
        """The first result set, or None when the command returned none."""
        return self.tables[0] if self.tables else None

    def __getitem__(self, index: int) -> pd.DataFrame:
        return self.tables[index]

    def __len__(self) -> int:
        return len(self.tables)

    def __iter__(self) -> Iterator[pd.DataFrame]:
        return iter(self.tables)

    def __repr__(self) -> str:
        return f'DataSet(tables={len(self.tables)})'


class DataReader(ABC):
    """Forward-only, single-pass row cursor."""

    @property
    @abstractmethod
    def columns(self) -> list[str]:
        """Column names of the current result set."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once the reader was closed."""

    @abstractmethod
    def read(self) -> DataRecord | None:
        """Return the next record, or None when the result set is exhausted."""

    @abstractmethod
    def close(self) -> None:
        """Release the cursor (and the connection when the reader owns it)."""

    def __iter__(self) -> Iterator[DataRecord]:
        while (record := self.read()) is not None:
            yield record

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class DbTransaction(ABC):
    """A driver transaction borrowed from its connection."""

    def __init__(self, connection: 'Connection') -> None:
        self.connection = connection

    @property
    def id(self) -> int:
        """Identifier used in log messages."""
        return id(self)

    @abstractmethod
    def commit(self) -> None:
        """Commit the transaction."""

    @abstractmethod
    def rollback(self) -> None:
        """Roll the transaction back."""


class Command(ABC):
    """A statement bound to a connection, pending execution."""

    def __init__(self, connection: 'Connection') -> None:
        self.connection = connection
        self.text: str | None = None
        self.command_type = CommandType.TEXT
        self.timeout: int | None = None
        self.parameters = ParameterCollection()
        self.transaction: DbTransaction | None = None
        self.bind_by_name = False
        self.disposed = False

    @abstractmethod
    def execute_non_query(self) -> int:
        """Execute and return the affected row count."""

    @abstractmethod
    def execute_scalar(self) -> Any:
        """Execute and return the first column of the first row (None if no row)."""

    @abstractmethod
    def execute_reader(self, close_connection: bool = False) -> DataReader:
        """Execute and return a reader over the result."""

    def dispose(self) -> None:
        """Detach the command from its parameters, transaction and connection."""
        self.parameters.clear()
        self.transaction = None
        self.connection = None
        self.disposed = True


class Connection(ABC):
    """A database connection."""

    def __init__(self) -> None:
        self.connection_string: str | None = None
        self.state = ConnectionState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @abstractmethod
    def open(self) -> None:
        """Open the connection using `connection_string`."""

    @abstractmethod
    def create_command(self) -> Command:
        """Create a command bound to this connection."""

    @abstractmethod
    def begin_transaction(self) -> DbTransaction:
        """Begin a transaction on this (open) connection."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection. Safe to call more than once."""


class DataAdapter(ABC):
    """Fills a DataSet from a select command."""

    def __init__(self) -> None:
        self.select_command: Command | None = None

    @abstractmethod
    def fill(self) -> DataSet:
        """Execute `select_command` and load every result set."""


class DriverFactory(ABC):
    """Manufactures the driver objects a session works with."""

    @abstractmethod
    def create_connection(self) -> Connection | None:
        """Return a new, closed connection."""

    @abstractmethod
    def create_parameter(self) -> Parameter | None:
        """Return a new, unbound parameter."""

    @abstractmethod
    def create_data_adapter(self) -> DataAdapter | None:
        """Return a new data adapter."""
