import doctest

import pytest
from fluentdb import render, sql
from fluentdb.provider import sqlserver


@pytest.mark.parametrize('module', [render, sql, sqlserver])
def test_module_doctests(module):
    result = doctest.testmod(module, optionflags=4 | 8 | 32)
    assert result.failed == 0
