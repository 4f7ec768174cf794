import logging

import psycopg
import pytest
from testcontainers.postgres import PostgresContainer

from libb import Setting

from tests import config

logger = logging.getLogger(__name__)

USERNAME = 'postgres'
PASSWORD = 'postgres'
DATABASE = 'test_db'


def _docker_available():
    try:
        import docker
        docker.from_env().ping()
    except Exception as e:
        logger.info(f'Docker unavailable: {e}')
        return False
    return True


@pytest.fixture(scope='session')
def psql_docker(request):
    """Session-scoped PostgreSQL container using testcontainers.

    Skips the requesting tests when Docker cannot be reached.
    """
    if not _docker_available():
        pytest.skip('Docker is not available')

    container = PostgresContainer(
        image='postgres:16',
        username=USERNAME,
        password=PASSWORD,
        dbname=DATABASE,
    )
    container.start()

    def finalizer():
        try:
            container.stop()
            logger.info('PostgreSQL container stopped')
        except Exception as e:
            logger.warning(f'Error stopping container: {e}')

    request.addfinalizer(finalizer)

    host = container.get_container_host_ip()
    port = int(container.get_exposed_port(5432))
    Setting.unlock()
    config.postgresql.connection_string = f'postgresql://{USERNAME}:{PASSWORD}@{host}:{port}/{DATABASE}'
    Setting.lock()
    logger.info(f'PostgreSQL container started at {host}:{port}')
    return container


def _conninfo():
    return config.postgresql.connection_string


def stage_test_data(cn):
    cn.execute('drop table if exists test_table')
    cn.execute('drop procedure if exists add_values')
    cn.execute("""
create table test_table (
    id serial primary key,
    name varchar(255) not null unique,
    value integer not null,
    payload jsonb
)
""")
    cn.execute("""
insert into test_table (name, value) values
('Alice', 10),
('Bob', 20),
('Charlie', 30)
""")
    cn.execute("""
create procedure add_values(a integer, b integer, inout total integer)
language plpgsql
as $$
begin
    total := a + b;
end
$$
""")


@pytest.fixture
def pg_params(psql_docker):
    """Named `postgresql` connection from the test config, with fresh test data."""
    with psycopg.connect(_conninfo(), autocommit=True) as cn:
        stage_test_data(cn)
    return 'postgresql'


def pg_fetch_all(sql, *args):
    with psycopg.connect(_conninfo(), autocommit=True) as cn:
        return cn.execute(sql, args or None).fetchall()
