import sqlite3

import pytest
from fluentdb import ConnectionParameters, create_default_registry

SCHEMA = """
CREATE TABLE test_table (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    value INTEGER NOT NULL,
    created DATE
);

INSERT INTO test_table (name, value, created) VALUES
('Alice', 10, '2024-01-02'),
('Bob', 20, '2024-02-03'),
('Charlie', 30, NULL);
"""


@pytest.fixture
def sqlite_path(tmp_path):
    """File database staged with `test_table`"""
    path = tmp_path / 'fluentdb.db'
    cn = sqlite3.connect(path)
    try:
        cn.executescript(SCHEMA)
        cn.commit()
    finally:
        cn.close()
    return path


@pytest.fixture
def sqlite_params(sqlite_path):
    return ConnectionParameters(name='sqlite-test', provider='sqlite',
                                connection_string=f'sqlite:///{sqlite_path}')


@pytest.fixture
def sqlite_registry():
    return create_default_registry()


def fetch_all(path, sql, *args):
    """Read back through a separate stdlib connection."""
    cn = sqlite3.connect(path)
    try:
        return cn.execute(sql, args).fetchall()
    finally:
        cn.close()
