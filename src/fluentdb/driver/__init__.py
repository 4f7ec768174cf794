"""
Driver capability: the objects a provider manufactures for a session.
"""
from fluentdb.driver.base import Command as Command
from fluentdb.driver.base import Connection as Connection
from fluentdb.driver.base import DataAdapter as DataAdapter
from fluentdb.driver.base import DataReader as DataReader
from fluentdb.driver.base import DataRecord as DataRecord
from fluentdb.driver.base import DataSet as DataSet
from fluentdb.driver.base import DbTransaction as DbTransaction
from fluentdb.driver.base import DriverFactory as DriverFactory
from fluentdb.driver.base import Parameter as Parameter
from fluentdb.driver.base import ParameterCollection as ParameterCollection
from fluentdb.driver.dbapi import DbApiFactory as DbApiFactory
