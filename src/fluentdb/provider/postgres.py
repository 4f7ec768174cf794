"""
PostgreSQL provider (psycopg 3).

Connection strings are SQLAlchemy URLs; any `postgresql://` URL is routed to
the psycopg driver. Parameters are written `@name` and bound by name
(`%(name)s`). Generic parameter types map to psycopg's dumper wrappers so the
server sees the intended type instead of guessing from the Python value.
"""
import decimal
import logging
from contextlib import contextmanager
from typing import Any

from fluentdb.driver.base import Parameter
from fluentdb.provider.base import DbApiProvider
from fluentdb.sql import CompiledQuery, strip_prefix
from fluentdb.types import DbType, ParameterDirection
from psycopg.pq import TransactionStatus
from psycopg.types.json import Jsonb
from psycopg.types.numeric import Float4, Float8, Int2, Int4, Int8

logger = logging.getLogger(__name__)

_PSYCOPG_TYPES: dict[DbType, Any] = {
    DbType.BYTE: Int2,
    DbType.INT16: Int2,
    DbType.INT32: Int4,
    DbType.INT64: Int8,
    DbType.SINGLE: Float4,
    DbType.DOUBLE: Float8,
    DbType.DECIMAL: decimal.Decimal,
    DbType.CURRENCY: decimal.Decimal,
    DbType.JSON: Jsonb,
}


class PostgresProvider(DbApiProvider):
    """PostgreSQL-specific behaviour.
    """

    drivername = 'postgresql+psycopg'
    positional_paramstyle = 'format'
    named_paramstyle = 'pyformat'

    @property
    def identifier(self) -> str:
        return 'postgresql'

    @property
    def parameter_prefix(self) -> str:
        return '@'

    def configure_connection(self, raw_conn: Any) -> None:
        """Leave the connection idle so autocommit can be switched on."""
        if raw_conn.info.transaction_status != TransactionStatus.IDLE:
            raw_conn.rollback()

    def map_parameter_type(self, db_type: DbType) -> Any:
        """Map a generic type to a psycopg wrapper; unmapped types pass through."""
        return _PSYCOPG_TYPES.get(db_type, db_type)

    @contextmanager
    def command_timeout(self, raw_conn: Any, seconds: int | None):
        """Apply `statement_timeout` for one execution (0 means no limit)."""
        if seconds is None:
            yield
            return

        raw_conn.execute(f'SET statement_timeout = {int(seconds * 1000)}')
        try:
            yield
        finally:
            try:
                raw_conn.execute('RESET statement_timeout')
            except Exception as e:
                # an aborted transaction restores the setting on rollback
                logger.debug(f'Could not reset statement_timeout: {e}')

    def procedure_call(self, name: str, arguments: list[tuple[Parameter, Any]]) -> CompiledQuery:
        """Call a procedure with named notation: ``CALL name(a => %(a)s)``.

        OUT and INOUT values come back as the single row CALL returns.
        Return values do not exist for procedures and are not passed.
        """
        args = []
        params = {}
        for parameter, value in arguments:
            if parameter.direction is ParameterDirection.RETURN_VALUE:
                continue
            bare = strip_prefix(parameter.name, self.parameter_prefix)
            args.append(f'{bare} => %({bare})s')
            params[bare] = value
        return CompiledQuery(f'CALL {name}({", ".join(args)})', params)
