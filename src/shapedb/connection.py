"""
Database connection handling with SQLAlchemy.

This module provides the primary interfaces for connecting to databases:
1. The `connect()` function for creating new database connections
2. The `ConnectionWrapper` class that builds and runs SQL on them

SQLAlchemy is used exclusively for URL construction, connection management
and pooling. Statements run on the raw DBAPI connection, which stays
accessible as `dbapi_connection`.
"""
import atexit
import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from functools import wraps
from typing import Any, Self, TypeVar

import pandas as pd
import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from shapedb.batch import MultiRowInserter, RowByRowInserter
from shapedb.exceptions import ConnectionFailure, DbConnectionError
from shapedb.exceptions import ValidationError, is_retryable_error
from shapedb.options import DatabaseOptions, load_options
from shapedb.save import CheckThenWriteSaver, UpsertSaver
from shapedb.sql import build_count_sql, build_delete_sql, build_insert_sql
from shapedb.sql import build_update_sql, has_placeholders
from shapedb.statement import Statement
from shapedb.strategy import DatabaseStrategy, get_db_strategy, get_strategy
from shapedb.transaction import Transaction
from shapedb.utils import ensure_commit, get_dialect_name, get_raw_connection

logger = logging.getLogger(__name__)

T = TypeVar('T')

__all__ = [
    'ConnectionWrapper',
    'check_connection',
    'connect',
    'dispose_all_engines',
    'get_engine_for_options',
]

TABLE_PREFIX_TOKEN = '#__'

# Thread-safe engine registry
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()

CONNECT_ERRORS = (sa.exc.DBAPIError, *DbConnectionError)


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_errors: type | tuple[type, ...] | None = None,
                     retry_backoff: float = 1.5,
                     sleep_func: Callable[[float], None] = time.sleep) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Retries the operation when it fails with one of ``retry_errors`` and the
    error looks transient (see ``is_retryable_error``). Other errors, and
    the last failed attempt, propagate.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            error_types = retry_errors if retry_errors is not None else CONNECT_ERRORS

            tries = 0
            delay = retry_delay
            while True:
                try:
                    return f(*args, **kwargs)
                except error_types as err:
                    tries += 1
                    if not is_retryable_error(err):
                        raise
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Connection error (attempt {tries}/{max_retries}): {err}')
                    sleep_func(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.

    Engines are shared between connections with equal settings and
    disposed at interpreter exit.
    """
    key = f'{options}_{options.use_pool}_{options.pool_max_connections}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        strategy = get_strategy(options.drivername)
        url = strategy.build_connection_url(options)

        engine_kwargs: dict[str, Any] = {'echo': False}
        engine_kwargs.update(strategy.get_engine_kwargs(options))

        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(kwargs)
        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')
        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry."""
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class ConnectionWrapper:
    """Wraps a SQLAlchemy connection to build, run and track SQL statements.

    This class:
    1. Builds INSERT/UPDATE/DELETE/COUNT/upsert SQL from column-value maps
    2. Creates Statement objects for prepared and executed SQL
    3. Manages transactions and autocommit through the dialect strategy
    4. Tracks query execution counts and timing
    5. Supports the context manager protocol for explicit resource management
    """

    def __init__(self, sa_connection: sa.engine.Connection, options: DatabaseOptions) -> None:
        """Initialize a connection wrapper

        Args:
            sa_connection: SQLAlchemy connection object to wrap
            options: The DatabaseOptions used to create this connection
        """
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine
        self.options = options
        self.dbapi_connection = sa_connection.connection
        self.calls = 0
        self.time = 0
        self.in_transaction = False
        self.max_insert_rows = options.max_insert_rows
        self.return_insert_ids = options.return_insert_ids
        self._transaction: Transaction | None = None

        if options.multi_row_insert:
            self._inserter = MultiRowInserter(self)
        else:
            self._inserter = RowByRowInserter(self)
        if options.upsert:
            self._saver = UpsertSaver(self)
        else:
            self._saver = CheckThenWriteSaver(self)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        """Return the connection to the pool when exiting the context manager
        """
        try:
            self.close()
            logger.debug('Closed connection via context manager')
        except Exception as e:
            logger.debug(f'Error closing connection in __exit__: {e}')

    def __getattr__(self, name: str) -> Any:
        """Delegate unknown attributes to the DBAPI connection."""
        if name in {'sa_connection', 'dbapi_connection'}:
            raise AttributeError(name)
        return getattr(self.dbapi_connection, name)

    @property
    def dialect(self) -> str:
        return get_dialect_name(self.sa_connection)

    @property
    def strategy(self) -> DatabaseStrategy:
        return get_strategy(self.dialect)

    @property
    def driver_connection(self) -> Any:
        """The driver's own connection object (sqlite3 / psycopg)."""
        return get_raw_connection(self.dbapi_connection)

    @property
    def is_pooled(self) -> bool:
        """Check if this connection is using SQLAlchemy's connection pooling
        """
        return not isinstance(self.engine.pool, NullPool)

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics

        Args:
            elapsed: Time in seconds that the query took to execute
        """
        self.time += elapsed
        self.calls += 1

    def cursor(self) -> Any:
        """Get a DBAPI cursor, reconnecting first if the connection was closed.
        """
        if getattr(self.sa_connection, 'closed', False):
            self.sa_connection = self.engine.connect()
            self.dbapi_connection = self.sa_connection.connection
            configure_connection(self.sa_connection)
        return self.dbapi_connection.cursor()

    def close(self) -> None:
        """Close the SQLAlchemy connection, committing first if needed
        """
        if not getattr(self.sa_connection, 'closed', False):
            if not self.in_transaction:
                ensure_commit(self.dbapi_connection)

            if self.sa_connection and not self.sa_connection.closed:
                self.sa_connection.close()

            logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')

    # =========================================================================
    # Statements
    # =========================================================================

    def preprocess(self, sql: str) -> str:
        """Apply the configured preprocess hook, or the table prefix.
        """
        if self.options.preprocess is not None:
            return self.options.preprocess(sql)
        return sql.replace(TABLE_PREFIX_TOKEN, self.options.table_prefix)

    def prepare(self, sql: str) -> Statement:
        """Create an unexecuted statement for ``sql``.
        """
        sql = self.preprocess(sql)
        if has_placeholders(sql):
            sql = self.strategy.standardize_sql(sql)
        return Statement(self, sql, self.cursor())

    def query(self, sql: str, *args: Any) -> Statement:
        """Prepare and execute ``sql``, returning the executed statement.
        """
        return self.prepare(sql).execute(*args)

    def execute(self, sql: str, *args: Any) -> int:
        """Execute ``sql`` and return the number of affected rows.
        """
        stmt = self.prepare(sql).execute(*args)
        try:
            return stmt.rowcount
        finally:
            stmt.close()

    def insert(self, table: str, column_values: Mapping[str, Any],
               insert_id_name: str | None = None) -> Statement | Any:
        """Insert one row.

        Returns the executed statement, or the generated id when
        ``return_insert_ids`` is set.
        """
        if not column_values:
            raise ValidationError(f'No columns given for insert into {table}')
        sql = build_insert_sql(self.dialect, table, tuple(column_values))
        stmt = self.prepare(sql).bind(list(column_values.values())).execute()
        if self.return_insert_ids:
            return self.last_insert_id(insert_id_name)
        return stmt

    def batch_insert(self, table: str, column_values: Mapping[str, Any]) -> Statement | None:
        """Insert many rows given as ``{column: values}``; scalars are broadcast.
        """
        return self._inserter.batch_insert(table, column_values)

    def batch_insert_rows(self, table: str, column_names: Sequence[str],
                          rows: Sequence[Sequence[Any]], length_check: bool = True) -> Statement | None:
        """Insert many rows given as value sequences aligned with ``column_names``.
        """
        return self._inserter.batch_insert_rows(table, column_names, rows, length_check)

    def batch_insert_frame(self, table: str, frame: pd.DataFrame) -> Statement | None:
        """Insert the rows of a DataFrame.
        """
        return self._inserter.batch_insert_frame(table, frame)

    def update(self, table: str, column_values: Mapping[str, Any], where: str | None = None,
               where_params: Sequence[Any] = ()) -> Statement:
        """Update ``column_values`` in rows matching ``where``.
        """
        if not column_values:
            raise ValidationError(f'No columns given for update of {table}')
        sql = build_update_sql(self.dialect, table, list(column_values), where)
        params = [*column_values.values(), *where_params]
        return self.prepare(sql).bind(params).execute()

    def delete(self, table: str, where: str | None = None,
               where_params: Sequence[Any] = ()) -> Statement:
        """Delete rows matching ``where``, or all rows.
        """
        stmt = self.prepare(build_delete_sql(self.dialect, table, where))
        return stmt.bind(list(where_params)).execute()

    def count(self, table: str, where: str | None = None,
              where_params: Sequence[Any] = ()) -> int:
        """Count rows matching ``where``.
        """
        stmt = self.prepare(build_count_sql(self.dialect, table, where))
        return int(stmt.bind(list(where_params)).execute().cell())

    def save(self, table: str, key_values: Mapping[str, Any],
             data_values: Mapping[str, Any] | None = None) -> Statement | Any | None:
        """Insert or update the row identified by ``key_values``.
        """
        return self._saver.save(table, key_values, data_values)

    def last_insert_id(self, name: str | None = None) -> Any:
        """Return the id generated by the last INSERT on this connection.
        """
        return self.strategy.last_insert_id(self, name)

    def set_max_insert_rows(self, max_rows: int) -> None:
        """Set the number of rows combined into one batch INSERT statement.
        """
        if max_rows < 1:
            raise ValueError('max_insert_rows must be a positive integer')
        self.max_insert_rows = max_rows

    # =========================================================================
    # Transactions
    # =========================================================================

    def transaction(self, level: str | None = None) -> Transaction:
        """Return a transaction context manager for this connection.
        """
        return Transaction(self, level)

    def begin(self, level: str | None = None) -> Transaction:
        """Start a transaction to be finished by commit() or rollback().
        """
        self._transaction = Transaction(self, level).begin()
        return self._transaction

    def commit(self) -> None:
        """Commit the transaction started by begin(), or any pending work.
        """
        if self._transaction is None:
            ensure_commit(self.dbapi_connection)
            return
        transaction, self._transaction = self._transaction, None
        transaction.commit()

    def rollback(self) -> None:
        """Roll back the transaction started by begin(), or any pending work.
        """
        if self._transaction is None:
            self.dbapi_connection.rollback()
            return
        transaction, self._transaction = self._transaction, None
        transaction.rollback()

    def ta(self, func: Callable[[], T], level: str | None = None) -> T:
        """Run ``func`` in a transaction and return its result.

        Commits on success. On any exception the transaction is rolled back
        and the exception re-raised unchanged.
        """
        with Transaction(self, level):
            return func()


def configure_connection(sa_connection: sa.engine.Connection) -> None:
    """Configure a SQLAlchemy connection with database-specific settings.
    """
    strategy = get_db_strategy(sa_connection)
    strategy.configure_connection(sa_connection.connection)


@check_connection
def _open_connection(engine: Engine) -> sa.engine.Connection:
    return engine.connect()


def connect(options: DatabaseOptions | Mapping[str, Any] | str | None = None,
            config: Any | None = None, **kw: Any) -> ConnectionWrapper:
    """Connect to a database using SQLAlchemy for connection management

    Args:
        options: Can be:
                - DatabaseOptions object
                - Name of an option set on ``config``
                - Dictionary of options
                - None, with options specified as keyword arguments
        config: Configuration object (or mapping) holding named option sets
        **kw: Additional keyword arguments to override options

    Returns
        ConnectionWrapper object for connecting to the database

    Raises
        ConnectionFailure: if the connection cannot be established
    """
    options = load_options(options, config, **kw)
    engine = get_engine_for_options(options)

    try:
        sa_connection = _open_connection(engine)
    except CONNECT_ERRORS as e:
        raise ConnectionFailure(f'Could not connect to {options.drivername} database: {e}') from e
    configure_connection(sa_connection)

    return ConnectionWrapper(sa_connection, options)
