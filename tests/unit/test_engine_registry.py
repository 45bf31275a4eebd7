from unittest.mock import MagicMock

from shapedb.connection import get_engine_for_options
from shapedb.options import DatabaseOptions, iterdict_data_loader
from sqlalchemy.pool import NullPool


def test_engines_are_shared_by_settings():
    factory = MagicMock()
    a = DatabaseOptions(drivername='sqlite', database='registry_a.db')
    b = DatabaseOptions(drivername='sqlite', database='registry_a.db', data_loader=iterdict_data_loader)
    c = DatabaseOptions(drivername='sqlite', database='registry_c.db')

    assert get_engine_for_options(a, factory) is get_engine_for_options(b, factory)
    get_engine_for_options(c, factory)
    assert factory.call_count == 2


def test_engine_kwargs_without_pool():
    factory = MagicMock()
    options = DatabaseOptions(drivername='sqlite', database='registry_nopool.db')
    get_engine_for_options(options, factory)

    url, = factory.call_args.args
    kwargs = factory.call_args.kwargs
    assert url.database == 'registry_nopool.db'
    assert kwargs['poolclass'] is NullPool
    assert 'detect_types' in kwargs['connect_args']


def test_engine_kwargs_with_pool():
    factory = MagicMock()
    options = DatabaseOptions(drivername='sqlite', database='registry_pool.db', use_pool=True,
                              pool_max_connections=7)
    get_engine_for_options(options, factory)

    kwargs = factory.call_args.kwargs
    assert 'poolclass' not in kwargs
    assert kwargs['pool_size'] == 7
    assert kwargs['pool_pre_ping'] is True
