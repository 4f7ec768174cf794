"""
Connection parameters and the configuration collaborator.

The session engine only ever consumes a finished ``ConnectionParameters``
value. ``connection_parameters`` turns a logical connection name, a dict or
an existing instance into one, using libb's option loading so that named
connections can live in a config module:

    # config.py
    from libb import Setting

    Setting.unlock()
    reporting = Setting()
    reporting.provider = 'postgresql'
    reporting.connection_string = 'postgresql://app:secret@db/reporting'
    Setting.lock()

    params = connection_parameters('reporting', config=config)
"""
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fluentdb.loaders import pandas_numpy_data_loader

from libb import ConfigOptions, load_options

__all__ = [
    'ConnectionParameters',
    'connection_parameters',
]


def _no_decryption(secret: str) -> str:
    return secret


@dataclass
class ConnectionParameters(ConfigOptions):
    """Options

    - name: logical connection name, informational
    - provider: registered provider identifier (`sqlite`, `postgresql`, `mssql`, ...)
    - connection_string: provider-specific connection string
    - decrypt: callback turning the stored secret into the plaintext password

    Treated as immutable once a session has been created from it.
    """
    name: str = None
    provider: str = None
    connection_string: str = None
    decrypt: Callable[[str], str] | None = None
    data_loader: Callable[..., Any] | None = None
    connect_retries: int = 3
    connect_retry_delay: float = 1

    def __post_init__(self):
        if not self.provider:
            raise ValueError('provider must be supplied')
        if not self.connection_string:
            raise ValueError('connection_string must be supplied')
        if self.connect_retries < 1:
            raise ValueError('connect_retries must be at least 1')
        self.name = self.name or self.provider
        if self.decrypt is None:
            self.decrypt = _no_decryption
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader


def connection_parameters(options: ConnectionParameters | dict[str, Any] | str,
                          config: Any | None = None,
                          **kw: Any) -> ConnectionParameters:
    """Build ConnectionParameters from a name, a dict or an instance.

    Args:
        options: Can be:
                - ConnectionParameters object (returned as is)
                - Name of a connection in the config module
                - Dictionary of options
        config: Configuration module/object holding named connections
        **kw: Additional keyword arguments to override options

    Returns
        ConnectionParameters ready for `create_session`
    """
    if isinstance(options, ConnectionParameters):
        return options
    options_func = load_options(cls=ConnectionParameters)(lambda o, c: o)
    return options_func(options, config, **kw)
