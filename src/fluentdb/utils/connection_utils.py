"""
Connection utilities with SQLAlchemy integration.

This module provides:
1. Engine creation and management through a thread-safe registry
2. A retry decorator for transient connection failures

SQLAlchemy is only used to turn a connection URL into raw DBAPI
connections. Engines use NullPool, so pooling stays with the driver.
"""
import atexit
import logging
import threading
import time
from functools import wraps

import sqlalchemy as sa
from fluentdb.exceptions import is_retryable_error
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'check_connection',
    'get_engine',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

# Thread-safe engine registry
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def check_connection(func=None, *, max_retries=3, retry_delay=1,
                     retry_backoff=1.5, sleep_func=time.sleep):
    """Connection retry decorator with backoff

    Retries the decorated call while it raises errors that
    `is_retryable_error` classifies as transient. Any other error, or the
    last transient one, propagates unchanged.

    Supports both @check_connection and @check_connection() syntax

    Args:
        func: The function to decorate
        max_retries: Maximum number of attempts
        retry_delay: Initial delay between retries in seconds
        retry_backoff: Multiplier for delay between retries (exponential backoff)
        sleep_func: Function to use for delay between retries (default: time.sleep)

    Returns
        Decorated function with retry logic
    """
    def decorator(f):
        @wraps(f)
        def inner(*args, **kwargs):
            tries = 0
            delay = retry_delay
            while True:
                try:
                    return f(*args, **kwargs)
                except Exception as err:
                    tries += 1
                    if not is_retryable_error(err):
                        raise
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Connection error (attempt {tries}/{max_retries}): {err}')
                    sleep_func(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def get_engine(url: str, engine_factory=sa.create_engine, **kwargs) -> Engine:
    """Get or create a SQLAlchemy engine for a connection URL.

    Args:
        url: SQLAlchemy URL string (password already decrypted)
        engine_factory: Function to create engines (defaults to sqlalchemy.create_engine)
        **kwargs: Additional arguments passed to engine factory

    Returns
        sqlalchemy.engine.Engine: SQLAlchemy engine
    """
    key = f'{url}_{sorted((k, repr(v)) for k, v in kwargs.items())}'

    with _engine_registry_lock:
        if key in _engine_registry:
            return _engine_registry[key]

        engine_kwargs = {'echo': False, 'poolclass': NullPool}
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)
        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {engine.dialect.name}')

        return engine


def dispose_all_engines():
    """Dispose all engines in the registry."""
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


# Register cleanup function to run at program exit
atexit.register(dispose_all_engines)
