"""
SQL Server provider (pyodbc).

Connection strings are either SQLAlchemy URLs (`mssql+pyodbc://...`) or raw
ODBC strings (`Driver={ODBC Driver 18 for SQL Server};Server=...;PWD=...`).
Parameters are written `@name`; pyodbc only binds positionally (`?`).

Stored procedures run as one T-SQL batch: output parameters are declared as
local variables, passed with OUTPUT, and selected back as the final row.
"""
import datetime
import logging
import struct
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from fluentdb.driver.base import Parameter
from fluentdb.provider.base import DbApiProvider
from fluentdb.sql import CompiledQuery, strip_prefix
from fluentdb.types import DbType, ParameterDirection, infer_db_type

if TYPE_CHECKING:
    from fluentdb.options import ConnectionParameters

logger = logging.getLogger(__name__)

# ODBC type code for datetimeoffset
SQL_SS_TIMESTAMPOFFSET = -155

_PASSWORD_KEYS = {'pwd', 'password'}

_TSQL_TYPES: dict[DbType, str] = {
    DbType.ANSI_STRING: 'varchar',
    DbType.ANSI_STRING_FIXED_LENGTH: 'char',
    DbType.STRING: 'nvarchar',
    DbType.STRING_FIXED_LENGTH: 'nchar',
    DbType.BINARY: 'varbinary',
    DbType.BOOLEAN: 'bit',
    DbType.BYTE: 'tinyint',
    DbType.INT16: 'smallint',
    DbType.INT32: 'int',
    DbType.INT64: 'bigint',
    DbType.SINGLE: 'real',
    DbType.DOUBLE: 'float',
    DbType.DECIMAL: 'decimal(38, 10)',
    DbType.CURRENCY: 'money',
    DbType.DATE: 'date',
    DbType.DATETIME: 'datetime2',
    DbType.TIME: 'time',
    DbType.GUID: 'uniqueidentifier',
    DbType.JSON: 'nvarchar',
    DbType.OBJECT: 'sql_variant',
}

# Types declared with a length, `max` when the parameter has no size
_SIZED_TYPES = {'varchar', 'char', 'nvarchar', 'nchar', 'varbinary'}


def split_odbc(connection_string: str) -> list[tuple[str, str]]:
    """Split an ODBC connection string into (key, value) pairs.

    Values wrapped in braces may contain `;`.

    >>> split_odbc('Driver={ODBC Driver 18 for SQL Server};Server=db;PWD={a;b}')
    [('Driver', '{ODBC Driver 18 for SQL Server}'), ('Server', 'db'), ('PWD', '{a;b}')]
    """
    pairs = []
    i, n = 0, len(connection_string)
    while i < n:
        eq = connection_string.find('=', i)
        if eq == -1:
            break
        key = connection_string[i:eq].strip()
        j = eq + 1
        if j < n and connection_string[j] == '{':
            close = connection_string.find('}', j)
            while close != -1 and connection_string[close + 1:close + 2] == '}':
                close = connection_string.find('}', close + 2)
            if close == -1:
                raise ValueError('Unterminated brace in ODBC connection string')
            value = connection_string[j:close + 1]
            end = connection_string.find(';', close)
        else:
            end = connection_string.find(';', j)
            value = connection_string[j:end if end != -1 else n].strip()
        if key:
            pairs.append((key, value))
        i = n if end == -1 else end + 1
    return pairs


def _unbrace(value: str) -> str:
    if value.startswith('{') and value.endswith('}'):
        return value[1:-1].replace('}}', '}')
    return value


def _brace(value: str) -> str:
    if any(c in value for c in ';{}='):
        return '{' + value.replace('}', '}}') + '}'
    return value


def _handle_datetimeoffset(dto_value: bytes) -> datetime.datetime:
    """Convert the raw datetimeoffset struct into an aware datetime."""
    tup = struct.unpack('<6hI2h', dto_value)
    tz = datetime.timezone(datetime.timedelta(hours=tup[7], minutes=tup[8]))
    return datetime.datetime(*tup[:6], tup[6] // 1000, tzinfo=tz)


class SQLServerProvider(DbApiProvider):
    """SQL Server-specific behaviour.
    """

    drivername = 'mssql+pyodbc'
    positional_paramstyle = 'qmark'
    named_paramstyle = None

    @property
    def identifier(self) -> str:
        return 'mssql'

    @property
    def parameter_prefix(self) -> str:
        return '@'

    def build_connection_string(self, parameters: 'ConnectionParameters') -> str:
        """Accept a SQLAlchemy URL or a raw ODBC connection string.

        The password (`PWD`/`Password`) of an ODBC string is decrypted and
        the string is passed through SQLAlchemy as `odbc_connect`.
        """
        if '://' in parameters.connection_string:
            return super().build_connection_string(parameters)

        parts = []
        for key, value in split_odbc(parameters.connection_string):
            if key.lower() in _PASSWORD_KEYS:
                value = _brace(parameters.decrypt(_unbrace(value)))
            parts.append(f'{key}={value}')
        if not parts:
            raise ValueError('Empty ODBC connection string')
        url = sa.URL.create(self.drivername, query={'odbc_connect': ';'.join(parts)})
        return url.render_as_string(hide_password=False)

    def configure_connection(self, raw_conn: Any) -> None:
        """Register the datetimeoffset converter on a new pyodbc connection."""
        try:
            raw_conn.add_output_converter(SQL_SS_TIMESTAMPOFFSET, _handle_datetimeoffset)
        except AttributeError:
            logger.warning('Could not register datetimeoffset converter - pyodbc may be outdated')

    def map_parameter_type(self, db_type: DbType) -> str:
        """Return the T-SQL type name used when the parameter is declared."""
        return _TSQL_TYPES.get(db_type, 'sql_variant')

    @contextmanager
    def command_timeout(self, raw_conn: Any, seconds: int | None):
        """Set the pyodbc query timeout for cursors created inside the block."""
        if seconds is None:
            yield
            return

        previous = raw_conn.timeout
        raw_conn.timeout = int(seconds)
        try:
            yield
        finally:
            raw_conn.timeout = previous

    def _declared_type(self, parameter: Parameter, value: Any) -> str:
        if isinstance(parameter.provider_type, str):
            type_name = parameter.provider_type
        elif value is not None:
            type_name = self.map_parameter_type(infer_db_type(value))
        else:
            type_name = 'sql_variant'
        if type_name in _SIZED_TYPES:
            type_name = f'{type_name}({parameter.size or "max"})'
        return type_name

    def procedure_call(self, name: str, arguments: list[tuple[Parameter, Any]]) -> CompiledQuery:
        """Build a DECLARE/EXEC/SELECT batch for procedure `name`.

        >>> p = Parameter('@total', None, DbType.INT32, ParameterDirection.OUTPUT)
        >>> p.provider_type = 'int'
        >>> q = SQLServerProvider().procedure_call('dbo.sp_total', [(Parameter('@id', 5), 5), (p, None)])
        >>> print(q.sql)
        SET NOCOUNT ON;
        DECLARE @__p1 int;
        EXEC dbo.sp_total @id = ?, @total = @__p1 OUTPUT;
        SELECT @__p1 AS [total];
        >>> q.params
        (5,)
        """
        declares, declare_params = [], []
        args, arg_params = [], []
        selects = []
        return_variable = None

        for i, (parameter, value) in enumerate(arguments):
            bare = strip_prefix(parameter.name, self.parameter_prefix)
            if parameter.direction is ParameterDirection.INPUT:
                args.append(f'@{bare} = ?')
                arg_params.append(value)
                continue

            variable = f'@__p{i}'
            declare = f'DECLARE {variable} {self._declared_type(parameter, value)}'
            if parameter.direction is ParameterDirection.INPUT_OUTPUT:
                declare += ' = ?'
                declare_params.append(value)
            declares.append(declare + ';')
            selects.append(f'{variable} AS [{bare}]')

            if parameter.direction is ParameterDirection.RETURN_VALUE:
                return_variable = variable
            else:
                args.append(f'@{bare} = {variable} OUTPUT')

        call = f'EXEC {return_variable} = {name}' if return_variable else f'EXEC {name}'
        if args:
            call += ' ' + ', '.join(args)
        lines = ['SET NOCOUNT ON;', *declares, call + ';']
        if selects:
            lines.append(f'SELECT {", ".join(selects)};')

        params = tuple(declare_params + arg_params)
        return CompiledQuery('\n'.join(lines), params or None)


if __name__ == '__main__':
    __import__('doctest').testmod(optionflags=4 | 8 | 32)
