import pytest
from fluentdb.types import CommandType, DbType, ParameterDirection


@pytest.mark.asyncio
async def test_only_output_parameters_returned(session, fake_driver):
    fake_driver.output_values = {'@total': 15}
    outputs = await (session
                     .create_command('dbo.add_values')
                     .add_parameter('a', 5, DbType.INT32, ParameterDirection.INPUT, 0)
                     .add_parameter('total', None, DbType.INT32, ParameterDirection.OUTPUT, 0)
                     .execute_stored_procedure())

    assert [p.name for p in outputs] == ['@total']
    assert outputs[0].value == 15
    assert fake_driver.executed[0].command_type is CommandType.STORED_PROCEDURE


@pytest.mark.asyncio
async def test_return_value_and_input_output_returned(session):
    outputs = await (session
                     .create_command('dbo.proc')
                     .add_parameter('a', 1)
                     .add_parameter('b', 2, direction=ParameterDirection.INPUT_OUTPUT)
                     .add_parameter('rv', None, direction=ParameterDirection.RETURN_VALUE)
                     .execute_stored_procedure())
    assert [p.direction for p in outputs] == [ParameterDirection.INPUT_OUTPUT,
                                              ParameterDirection.RETURN_VALUE]


@pytest.mark.asyncio
async def test_log_renders_procedure_arguments(session):
    messages = []
    await (session
           .create_command('dbo.proc')
           .add_parameter('a', 'x', prefixed=False)
           .execute_stored_procedure(log=messages.append))
    assert messages == ["dbo.proc a='x'"]


@pytest.mark.asyncio
async def test_row_count(session, fake_driver):
    fake_driver.rowcount = 7
    count = await session.create_command('dbo.purge').execute_stored_procedure_row_count()
    assert count == 7
    assert fake_driver.executed[0].command_type is CommandType.STORED_PROCEDURE


if __name__ == '__main__':
    __import__('pytest').main([__file__])
