"""
Fluent, provider-agnostic database sessions for SQLite, PostgreSQL and SQL Server.

    from fluentdb import create_session

    params = {'provider': 'sqlite', 'connection_string': 'sqlite:///app.db'}
    rows = await (create_session(params)
                  .create_command('select name from users where id = :id')
                  .add_parameter('id', 1)
                  .execute_data_reader(lambda r: r['name']))

Providers are looked up in `registry`; register additional ones there or pass
a separate `ProviderRegistry` to `create_session`.
"""
__version__ = '0.1.0'

from fluentdb.driver import DataRecord, DataSet, Parameter
from fluentdb.exceptions import ConnectionError, DatabaseSessionError
from fluentdb.exceptions import ExecutionError, ParameterCreationError
from fluentdb.exceptions import ProviderResolutionError, SessionStateError
from fluentdb.exceptions import TransactionStateError
from fluentdb.loaders import pandas_numpy_data_loader, pandas_pyarrow_data_loader
from fluentdb.options import ConnectionParameters, connection_parameters
from fluentdb.provider import DbApiProvider, ProviderDescriptor
from fluentdb.provider import ProviderRegistry, create_default_registry
from fluentdb.provider import default_registry as registry
from fluentdb.render import render_command
from fluentdb.session import RecordStream, Session, create_session
from fluentdb.transaction import TransactionContext
from fluentdb.types import CommandType, DbType, ParameterDirection
from fluentdb.types import SessionState, TransactionState

__all__ = [
    'create_session',
    'registry',
    'create_default_registry',
    'ProviderRegistry',
    'ProviderDescriptor',
    'DbApiProvider',
    'Session',
    'RecordStream',
    'TransactionContext',
    'ConnectionParameters',
    'connection_parameters',
    'render_command',
    'Parameter',
    'DataRecord',
    'DataSet',
    'DbType',
    'ParameterDirection',
    'CommandType',
    'SessionState',
    'TransactionState',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'DatabaseSessionError',
    'ProviderResolutionError',
    'ConnectionError',
    'SessionStateError',
    'ParameterCreationError',
    'ExecutionError',
    'TransactionStateError',
]
