import pytest
from fluentdb.exceptions import is_retryable_error
from fluentdb.utils.connection_utils import check_connection, dispose_all_engines
from fluentdb.utils.connection_utils import get_engine
from sqlalchemy.pool import NullPool


@pytest.mark.parametrize(('message', 'expected'), [
    ('SSL connection has been closed unexpectedly', True),
    ('connection reset by peer', True),
    ('could not connect to server', True),
    ('FATAL: too many connections for role', True),
    ('password authentication failed for user', False),
    ('database "nope" does not exist', False),
])
def test_is_retryable_error(message, expected):
    assert is_retryable_error(Exception(message)) is expected


class TestCheckConnection:

    def test_retries_transient_errors(self, mocker):
        sleep = mocker.Mock()
        func = mocker.Mock(side_effect=[OSError('connection reset'), OSError('timed out'), 'ok'])

        wrapped = check_connection(max_retries=3, retry_delay=1, retry_backoff=2, sleep_func=sleep)(func)

        assert wrapped() == 'ok'
        assert func.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    def test_gives_up_after_max_retries(self, mocker):
        sleep = mocker.Mock()
        func = mocker.Mock(side_effect=OSError('connection refused'))

        wrapped = check_connection(max_retries=2, sleep_func=sleep)(func)

        with pytest.raises(OSError):
            wrapped()
        assert func.call_count == 2
        assert sleep.call_count == 1

    def test_permanent_error_not_retried(self, mocker):
        sleep = mocker.Mock()
        func = mocker.Mock(side_effect=ValueError('password authentication failed'))

        with pytest.raises(ValueError):
            check_connection(sleep_func=sleep)(func)()
        assert func.call_count == 1
        sleep.assert_not_called()


class TestEngineRegistry:

    def test_engine_cached_per_url_and_options(self, mocker):
        factory = mocker.Mock()
        first = get_engine('sqlite:///a.db', engine_factory=factory)
        second = get_engine('sqlite:///a.db', engine_factory=factory)
        third = get_engine('sqlite:///a.db', engine_factory=factory, connect_args={'timeout': 5})

        assert first is second
        assert factory.call_count == 2
        assert third is not None
        _, kwargs = factory.call_args_list[0]
        assert kwargs['poolclass'] is NullPool

    def test_dispose_all(self, mocker):
        factory = mocker.Mock()
        engine = get_engine('sqlite:///b.db', engine_factory=factory)
        dispose_all_engines()
        engine.dispose.assert_called_once()
        get_engine('sqlite:///b.db', engine_factory=factory)
        assert factory.call_count == 2


if __name__ == '__main__':
    __import__('pytest').main([__file__])
