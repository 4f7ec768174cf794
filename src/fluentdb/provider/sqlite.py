"""
SQLite provider.

Connection strings are SQLAlchemy URLs (`sqlite:///path/to.db`). Parameters
are written `:name` and bound by name. SQLite has no stored procedures and no
statement timeout; a command timeout is enforced by a progress handler that
interrupts the statement once the deadline passes.
"""
import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from typing import Any

from fluentdb.provider.base import DbApiProvider
from fluentdb.types import convert_date, convert_datetime

logger = logging.getLogger(__name__)

# Virtual machine instructions between progress handler calls
PROGRESS_STEPS = 1000


class SQLiteProvider(DbApiProvider):
    """SQLite-specific behaviour.
    """

    drivername = 'sqlite'
    positional_paramstyle = 'qmark'
    named_paramstyle = 'named'

    @property
    def identifier(self) -> str:
        return 'sqlite'

    @property
    def parameter_prefix(self) -> str:
        return ':'

    def engine_kwargs(self) -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite.

        Commands execute on worker threads, so the connection must not be
        pinned to the thread that opened it.
        """
        return {
            'connect_args': {
                'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
                'check_same_thread': False,
            }
        }

    def configure_connection(self, raw_conn: Any) -> None:
        """Configure connection settings for SQLite.

        Registers adapters for dict/list (stored as JSON) and ISO-8601
        date/datetime converters.
        """
        sqlite3.register_adapter(dict, json.dumps)
        sqlite3.register_adapter(list, json.dumps)
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        raw_conn.execute('PRAGMA foreign_keys = ON')

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = None

    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = 'DEFERRED'

    @contextmanager
    def command_timeout(self, raw_conn: Any, seconds: int | None):
        """Interrupt the statement once `seconds` have elapsed (0 means no limit)."""
        if not seconds:
            yield
            return

        deadline = time.monotonic() + seconds

        def _expired() -> int:
            return 1 if time.monotonic() > deadline else 0

        raw_conn.set_progress_handler(_expired, PROGRESS_STEPS)
        logger.debug(f'Command timeout set to {seconds}s')
        try:
            yield
        finally:
            raw_conn.set_progress_handler(None, PROGRESS_STEPS)
