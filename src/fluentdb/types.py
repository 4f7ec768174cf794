"""
Type vocabulary shared by sessions, drivers and providers.

This module provides:
- Enumerations for parameter types/directions, command kinds and the
  connection, session and transaction state machines
- TypeConverter: coerce Python/NumPy/Pandas values into driver values,
  mapping every flavour of "missing" to None (the driver NULL marker)
- infer_db_type: the generic type a bound value implies
- Column: column metadata from cursor descriptions
- SQLite converters for ISO-8601 dates
"""
import datetime
import decimal
import math
import uuid
from enum import Enum, auto
from typing import Any, Self

import dateutil.parser
import numpy as np
import pandas as pd


class DbType(Enum):
    """Generic (provider independent) parameter types."""
    ANSI_STRING = auto()
    ANSI_STRING_FIXED_LENGTH = auto()
    STRING = auto()
    STRING_FIXED_LENGTH = auto()
    BINARY = auto()
    BOOLEAN = auto()
    BYTE = auto()
    INT16 = auto()
    INT32 = auto()
    INT64 = auto()
    SINGLE = auto()
    DOUBLE = auto()
    DECIMAL = auto()
    CURRENCY = auto()
    DATE = auto()
    DATETIME = auto()
    TIME = auto()
    GUID = auto()
    JSON = auto()
    OBJECT = auto()


# Rendered as quoted literals in diagnostic SQL
QUOTED_DB_TYPES = frozenset({
    DbType.ANSI_STRING,
    DbType.ANSI_STRING_FIXED_LENGTH,
    DbType.STRING,
    DbType.STRING_FIXED_LENGTH,
    DbType.DATE,
    DbType.DATETIME,
    DbType.TIME,
    DbType.GUID,
    DbType.JSON,
})


class ParameterDirection(Enum):
    INPUT = auto()
    OUTPUT = auto()
    INPUT_OUTPUT = auto()
    RETURN_VALUE = auto()

    @property
    def is_output(self) -> bool:
        """True for every direction that receives a value back from the driver."""
        return self is not ParameterDirection.INPUT


class CommandType(Enum):
    TEXT = auto()
    STORED_PROCEDURE = auto()


class ConnectionState(Enum):
    CLOSED = auto()
    OPEN = auto()
    BROKEN = auto()


class SessionState(Enum):
    UNCONNECTED = auto()
    CONNECTED = auto()
    COMMAND_BOUND = auto()
    EXECUTED = auto()
    DISPOSED = auto()


class TransactionState(Enum):
    ACTIVE = auto()
    COMPLETED = auto()
    ROLLED_BACK = auto()


# Type Converter - Handles Python -> Database value conversion

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)


def _convert_numpy_value(val: Any) -> float | int | bool | datetime.datetime | None:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64) and np.isnat(val):
        return None

    if isinstance(val, (np.floating, np.integer, np.unsignedinteger, np.bool_)):
        return val.item()

    if isinstance(val, np.datetime64):
        return pd.Timestamp(val).to_pydatetime()

    return val


class TypeConverter:
    """Coerce bound values into something every DB-API driver accepts.

    NaN, NaT, ``pd.NA`` and None all become None, which drivers send as NULL.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a database-compatible format."""
        if value is None:
            return None

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if value is pd.NaT or value is pd.NA:
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.bool_, np.datetime64)):
            return _convert_numpy_value(value)

        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()

        return value


def infer_db_type(value: Any) -> DbType:
    """Return the generic type implied by a Python value.

    Order matters: bool before int, datetime before date.
    """
    if isinstance(value, bool | np.bool_):
        return DbType.BOOLEAN
    if isinstance(value, int | np.integer):
        return DbType.INT64 if abs(int(value)) > 2**31 - 1 else DbType.INT32
    if isinstance(value, float | np.floating):
        return DbType.DOUBLE
    if isinstance(value, decimal.Decimal):
        return DbType.DECIMAL
    if isinstance(value, str):
        return DbType.STRING
    if isinstance(value, datetime.datetime):
        return DbType.DATETIME
    if isinstance(value, datetime.date):
        return DbType.DATE
    if isinstance(value, datetime.time):
        return DbType.TIME
    if isinstance(value, uuid.UUID):
        return DbType.GUID
    if isinstance(value, bytes | bytearray | memoryview):
        return DbType.BINARY
    if isinstance(value, dict | list):
        return DbType.JSON
    return DbType.OBJECT


# Column - Metadata from cursor descriptions

class Column:
    """Database column metadata."""

    def __init__(self, name: str, type_code: Any = None,
                 display_size: int | None = None,
                 internal_size: int | None = None,
                 precision: int | None = None,
                 scale: int | None = None,
                 nullable: bool | None = None):
        self.name = name
        self.type_code = type_code
        self.display_size = display_size
        self.internal_size = internal_size
        self.precision = precision
        self.scale = scale
        self.nullable = nullable

    @classmethod
    def from_cursor_description(cls, item: Any) -> Self:
        """Create a Column from one PEP-249 cursor description entry.

        Entries are 7-sequences; psycopg additionally exposes them as
        attributes, which is handled by the positional access as well.
        """
        values = list(item) + [None] * (7 - len(item))
        nullable = values[6]
        return cls(
            name=str(values[0]),
            type_code=values[1],
            display_size=values[2],
            internal_size=values[3],
            precision=values[4],
            scale=values[5],
            nullable=None if nullable is None else bool(nullable),
        )

    def __repr__(self) -> str:
        return f'Column(name={self.name!r}, type_code={self.type_code!r})'

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'type_code': self.type_code,
            'display_size': self.display_size,
            'internal_size': self.internal_size,
            'precision': self.precision,
            'scale': self.scale,
            'nullable': self.nullable
        }

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]

    @staticmethod
    def get_column_types_dict(columns: list[Self]) -> dict[str, dict]:
        return {col.name: col.to_dict() for col in columns}


def columns_from_cursor_description(cursor: Any) -> list[Column]:
    """Create Column objects from cursor description."""
    if cursor.description is None:
        return []
    return [Column.from_cursor_description(desc) for desc in cursor.description]


# SQLite Adapters - Database value converters

def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())
