"""
Database providers and their registry.
"""
from fluentdb.provider.base import DbApiProvider as DbApiProvider
from fluentdb.provider.base import ProviderDescriptor as ProviderDescriptor
from fluentdb.provider.base import ProviderRegistry as ProviderRegistry
from fluentdb.provider.postgres import PostgresProvider as PostgresProvider
from fluentdb.provider.sqlite import SQLiteProvider as SQLiteProvider
from fluentdb.provider.sqlserver import SQLServerProvider as SQLServerProvider


def create_default_registry() -> ProviderRegistry:
    """Return a registry holding the bundled providers.

    Registered identifiers: `sqlite`, `postgresql` (alias `postgres`) and
    `mssql` (alias `sqlserver`).
    """
    registry = ProviderRegistry()
    postgres = PostgresProvider()
    sqlserver = SQLServerProvider()
    registry.register('sqlite', SQLiteProvider())
    registry.register('postgresql', postgres)
    registry.register('postgres', postgres)
    registry.register('mssql', sqlserver)
    registry.register('sqlserver', sqlserver)
    return registry


# Registry used by `create_session` when none is passed
default_registry = create_default_registry()
