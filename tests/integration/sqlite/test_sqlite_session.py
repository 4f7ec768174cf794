"""
Session operations against a real SQLite database file.
"""
import datetime

import pytest
from fluentdb import DbType, ExecutionError, create_session
from fluentdb.types import SessionState

from tests.fixtures.sqlite import fetch_all

pytestmark = pytest.mark.sqlite


def _session(sqlite_params, sqlite_registry):
    return create_session(sqlite_params, registry=sqlite_registry)


@pytest.mark.asyncio
async def test_scalar(sqlite_params, sqlite_registry):
    count = await (_session(sqlite_params, sqlite_registry)
                   .create_command('select count(*) from test_table')
                   .execute_scalar(int))
    assert count == 3


@pytest.mark.asyncio
async def test_scalar_no_row_is_none(sqlite_params, sqlite_registry):
    value = await (_session(sqlite_params, sqlite_registry)
                   .create_command('select value from test_table where name = :name')
                   .add_parameter('name', 'Nobody')
                   .execute_scalar(int))
    assert value is None


@pytest.mark.asyncio
async def test_data_reader_projection(sqlite_params, sqlite_registry):
    rows = await (_session(sqlite_params, sqlite_registry)
                  .create_command('select name, value from test_table where value >= :lo order by value')
                  .add_parameter('lo', 20)
                  .execute_data_reader(lambda r: (r['name'], r.get_value('VALUE', int))))
    assert rows == [('Bob', 20), ('Charlie', 30)]


@pytest.mark.asyncio
async def test_data_reader_empty(sqlite_params, sqlite_registry):
    rows = await (_session(sqlite_params, sqlite_registry)
                  .create_command('select name from test_table where value > 100')
                  .execute_data_reader(lambda r: r['name']))
    assert rows == []


@pytest.mark.asyncio
async def test_date_column_converted(sqlite_params, sqlite_registry):
    rows = await (_session(sqlite_params, sqlite_registry)
                  .create_command('select created from test_table order by id')
                  .execute_data_reader(lambda r: r.get_value('created')))
    assert rows == [datetime.date(2024, 1, 2), datetime.date(2024, 2, 3), None]


@pytest.mark.asyncio
async def test_insert_is_durable(sqlite_params, sqlite_registry, sqlite_path):
    messages = []
    count = await (_session(sqlite_params, sqlite_registry)
                   .create_command('insert into test_table (name, value) values (:name, :value)')
                   .add_parameter('name', "O'Brien")
                   .add_parameter('value', 40, DbType.INT32)
                   .execute_insert(log=messages.append))
    assert count == 1
    assert fetch_all(sqlite_path, 'select value from test_table where name = ?', "O'Brien") == [(40,)]
    assert messages == ["insert into test_table (name, value) values ('O''Brien', 40)"]


@pytest.mark.asyncio
async def test_update_and_delete(sqlite_params, sqlite_registry, sqlite_path):
    updated = await (_session(sqlite_params, sqlite_registry)
                     .create_command('update test_table set value = value + 1 where value < :limit')
                     .add_parameter('limit', 25)
                     .execute_update())
    deleted = await (_session(sqlite_params, sqlite_registry)
                     .create_command('delete from test_table where name = :name')
                     .add_parameter('name', 'Charlie')
                     .execute_delete())
    assert (updated, deleted) == (2, 1)
    assert fetch_all(sqlite_path, 'select name, value from test_table order by id') == [
        ('Alice', 11), ('Bob', 21)]


@pytest.mark.asyncio
async def test_conditional_parameter(sqlite_params, sqlite_registry):
    name = None
    sql = 'select count(*) from test_table'
    session = _session(sqlite_params, sqlite_registry)
    count = await (session
                   .create_command(sql if name is None else f'{sql} where name = :name')
                   .add_parameter_if(lambda: name is not None, 'name', name)
                   .execute_scalar())
    assert count == 3


@pytest.mark.asyncio
async def test_null_parameter(sqlite_params, sqlite_registry, sqlite_path):
    await (_session(sqlite_params, sqlite_registry)
           .create_command('update test_table set created = :created where name = :name')
           .add_parameter('created', None)
           .add_parameter('name', 'Alice')
           .execute_update())
    assert fetch_all(sqlite_path, "select created from test_table where name = 'Alice'") == [(None,)]


@pytest.mark.asyncio
async def test_constraint_violation(sqlite_params, sqlite_registry):
    session = _session(sqlite_params, sqlite_registry)
    with pytest.raises(ExecutionError) as exc_info:
        await (session
               .create_command('insert into test_table (name, value) values (:name, :value)')
               .add_parameter('name', 'Alice')
               .add_parameter('value', 1)
               .execute_insert())
    assert exc_info.value.command_text == "insert into test_table (name, value) values ('Alice', 1)"
    assert session.state is SessionState.DISPOSED
    assert session.connection is None


@pytest.mark.asyncio
async def test_get_data_set(sqlite_params, sqlite_registry):
    data = await (_session(sqlite_params, sqlite_registry)
                  .create_command('select name, value from test_table order by id')
                  .get_data_set())
    assert len(data) == 1
    assert list(data.table.columns) == ['name', 'value']
    assert data.table['value'].tolist() == [10, 20, 30]


@pytest.mark.asyncio
async def test_stored_procedure_unsupported(sqlite_params, sqlite_registry):
    session = _session(sqlite_params, sqlite_registry)
    with pytest.raises(ExecutionError, match='stored procedure'):
        await session.create_command('add_values').add_parameter('a', 1).execute_stored_procedure()
    assert session.state is SessionState.DISPOSED


@pytest.mark.asyncio
async def test_command_timeout_interrupts(sqlite_params, sqlite_registry):
    sql = """
with recursive counter(x) as (select 1 union all select x + 1 from counter where x < 1000000000)
select count(*) from counter
"""
    with pytest.raises(ExecutionError):
        await (_session(sqlite_params, sqlite_registry)
               .create_command(sql)
               .set_command_timeout(1)
               .execute_scalar())


@pytest.mark.asyncio
async def test_session_reused_after_execution(sqlite_params, sqlite_registry):
    session = _session(sqlite_params, sqlite_registry)
    first = await session.create_command('select min(value) from test_table').execute_scalar()
    second = await session.create_command('select max(value) from test_table').execute_scalar()
    assert (first, second) == (10, 30)
    assert session.state is SessionState.EXECUTED


class TestStream:

    def test_sync_iteration(self, sqlite_params, sqlite_registry):
        session = _session(sqlite_params, sqlite_registry)
        stream = (session
                  .create_command('select name from test_table order by id')
                  .execute_data_reader_stream(lambda r: r['name']))
        assert list(stream) == ['Alice', 'Bob', 'Charlie']
        assert stream.closed
        assert session.connection is None

    def test_early_close(self, sqlite_params, sqlite_registry):
        session = _session(sqlite_params, sqlite_registry)
        with (session
              .create_command('select name from test_table order by id')
              .execute_data_reader_stream(lambda r: r['name'])) as stream:
            assert next(stream) == 'Alice'
        assert stream.closed
        assert session.state is SessionState.EXECUTED
        assert list(stream) == []

    @pytest.mark.asyncio
    async def test_async_iteration(self, sqlite_params, sqlite_registry):
        messages = []
        stream = (_session(sqlite_params, sqlite_registry)
                  .create_command('select value from test_table where value > :lo order by id')
                  .add_parameter('lo', 10)
                  .execute_data_reader_stream(lambda r: r['value'], log=messages.append))
        assert [value async for value in stream] == [20, 30]
        assert messages == ['select value from test_table where value > 10 order by id']

    def test_bad_sql_raises_on_first_row(self, sqlite_params, sqlite_registry):
        session = _session(sqlite_params, sqlite_registry)
        stream = (session
                  .create_command('select nope from test_table')
                  .execute_data_reader_stream(lambda r: r[0]))
        with pytest.raises(ExecutionError, match='data reader stream'):
            next(stream)
        assert stream.closed


if __name__ == '__main__':
    __import__('pytest').main([__file__])
