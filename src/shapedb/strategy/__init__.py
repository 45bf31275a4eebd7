"""
Dialect strategies for the two supported backends.

Importing this package registers SQLiteStrategy and PostgresStrategy.
Strategies are stateless, so one shared instance per dialect is handed out:

    >>> get_strategy('sqlite').build_upsert_sql('t', ['k', 'v'], ['k'], ['v'])
"""
from functools import cache

from shapedb.strategy.base import _STRATEGY_REGISTRY
from shapedb.strategy.base import DatabaseStrategy as DatabaseStrategy
from shapedb.strategy.base import register_strategy as register_strategy
from shapedb.strategy.postgres import PostgresStrategy as PostgresStrategy
from shapedb.strategy.sqlite import SQLiteStrategy as SQLiteStrategy
from shapedb.utils import get_dialect_name


def get_strategy_class(dialect: str) -> type[DatabaseStrategy]:
    """Return the registered strategy class, raising ValueError for unknown dialects."""
    try:
        return _STRATEGY_REGISTRY[dialect]
    except KeyError:
        raise ValueError(f'Unsupported dialect: {dialect}. '
                         f'Available: {get_available_dialects()}') from None


@cache
def get_strategy(dialect: str) -> DatabaseStrategy:
    """Shared strategy instance for a dialect name."""
    return get_strategy_class(dialect)()


def get_db_strategy(cn) -> DatabaseStrategy:
    """Strategy for a connection, engine or raw DBAPI connection."""
    return get_strategy(get_dialect_name(cn))


def get_available_dialects() -> list[str]:
    return sorted(_STRATEGY_REGISTRY)


def is_supported_dialect(dialect: str) -> bool:
    return dialect in _STRATEGY_REGISTRY
