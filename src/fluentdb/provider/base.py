"""
Provider interface and registry.

A provider couples a vendor-specific connection string policy, parameter
prefix, command decoration and parameter type mapping with the driver
factory that manufactures connections for it. Providers are registered
explicitly in a ``ProviderRegistry`` and looked up by identifier:

    registry = ProviderRegistry()
    registry.register('sqlite', SQLiteProvider())
    registry.resolve('sqlite')
"""
import logging
from abc import ABC, abstractmethod
from contextlib import nullcontext
from typing import TYPE_CHECKING, Any, ContextManager

import sqlalchemy as sa
from fluentdb.driver.base import Command, DriverFactory, Parameter
from fluentdb.driver.dbapi import DbApiFactory
from fluentdb.exceptions import ExecutionError, ProviderResolutionError
from fluentdb.sql import CompiledQuery
from fluentdb.types import DbType

if TYPE_CHECKING:
    from fluentdb.options import ConnectionParameters

logger = logging.getLogger(__name__)


class ProviderDescriptor(ABC):
    """Base class for provider implementations.
    """

    @property
    @abstractmethod
    def identifier(self) -> str:
        """Return the identifier the provider is usually registered under."""

    @property
    @abstractmethod
    def parameter_prefix(self) -> str:
        """Return the prefix marking parameter names in command text (`@`, `:`)."""

    @abstractmethod
    def build_connection_string(self, parameters: 'ConnectionParameters') -> str:
        """Build the driver connection string.

        Args:
            parameters: ConnectionParameters; its `decrypt` callback turns the
                stored secret into the plaintext password

        Returns
            Connection string handed to every connection of the session
        """

    @abstractmethod
    def decorate_command(self, command: Command) -> None:
        """Apply vendor-specific flags to a freshly created command.

        Args:
            command: Command whose text has just been set
        """

    def map_parameter_type(self, db_type: DbType) -> Any:
        """Map a generic parameter type to the provider-specific one.

        The default passes the generic type through unchanged.
        """
        return db_type

    @abstractmethod
    def driver_factory(self, parameters: 'ConnectionParameters') -> DriverFactory:
        """Return the driver factory a session uses to reach the database.
        """

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.identifier!r})'


class DbApiProvider(ProviderDescriptor):
    """Provider backed by a PEP-249 driver reached through SQLAlchemy.

    Subclasses set `drivername` (SQLAlchemy driver, e.g. `postgresql+psycopg`)
    and the paramstyles the driver accepts. When `named_paramstyle` is set,
    commands bind parameters by name.
    """

    drivername: str = None
    positional_paramstyle: str = 'qmark'
    named_paramstyle: str | None = None

    def build_connection_string(self, parameters: 'ConnectionParameters') -> str:
        """Parse a SQLAlchemy URL, force the driver and decrypt the password."""
        url = sa.make_url(parameters.connection_string)
        if self.drivername and url.drivername != self.drivername:
            if url.get_backend_name() != self.drivername.split('+')[0]:
                raise ValueError(f'{self.identifier} cannot use a {url.get_backend_name()} connection string')
            url = url.set(drivername=self.drivername)
        if url.password:
            url = url.set(password=parameters.decrypt(url.password))
        return url.render_as_string(hide_password=False)

    def decorate_command(self, command: Command) -> None:
        command.bind_by_name = self.named_paramstyle is not None

    def driver_factory(self, parameters: 'ConnectionParameters') -> DriverFactory:
        return DbApiFactory(self, parameters)

    def engine_kwargs(self) -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this provider."""
        return {}

    def configure_connection(self, raw_conn: Any) -> None:
        """Configure a freshly opened driver connection.

        Args:
            raw_conn: The raw DBAPI connection (not wrapped)
        """

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode on a raw database connection."""
        raw_conn.autocommit = True

    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode on a raw database connection."""
        raw_conn.autocommit = False

    def command_timeout(self, raw_conn: Any, seconds: int | None) -> ContextManager:
        """Return a context enforcing `seconds` around one execution.

        None means the driver default; the base implementation enforces nothing.
        """
        return nullcontext()

    def procedure_call(self, name: str, arguments: list[tuple[Parameter, Any]]) -> CompiledQuery:
        """Build the statement calling stored procedure `name`.

        Args:
            name: Procedure name as given in the command text
            arguments: (parameter, driver value) pairs in binding order

        Returns
            Driver-ready CompiledQuery; output values must come back as the
            columns of the last result row, named like the parameters

        Raises
            ExecutionError: The provider has no stored procedures (the default)
        """
        raise ExecutionError(f'{self.identifier} does not support stored procedures.')


class ProviderRegistry:
    """Identifier → provider table.

    Built once at startup; reads take no lock, so registration is expected to
    finish before sessions are created from other threads.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderDescriptor] = {}

    def register(self, identifier: str, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        """Register `descriptor` under `identifier`; the last registration wins."""
        if identifier in self._providers and self._providers[identifier] is not descriptor:
            logger.debug(f'Replacing provider {identifier}: {self._providers[identifier]!r} -> {descriptor!r}')
        self._providers[identifier] = descriptor
        return descriptor

    def resolve(self, identifier: str) -> ProviderDescriptor:
        """Return the provider registered under `identifier`.

        Raises
            ProviderResolutionError: If nothing is registered under it
        """
        try:
            return self._providers[identifier]
        except KeyError:
            available = list(self._providers)
            raise ProviderResolutionError(
                f'Unsupported provider: {identifier}. Available: {available}') from None

    def unregister(self, identifier: str) -> None:
        self._providers.pop(identifier, None)

    def clear(self) -> None:
        self._providers.clear()

    def identifiers(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._providers

    def __len__(self) -> int:
        return len(self._providers)
