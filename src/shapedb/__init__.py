"""
Database convenience layer for PostgreSQL and SQLite.

Builds and runs parameterized INSERT/UPDATE/DELETE/COUNT/upsert SQL and
reshapes flat results into nested, grouped structures.

All operations can be called either as:
- Module functions: db.query(cn, sql, *args)
- ConnectionWrapper methods: cn.query(sql, *args)
"""
__version__ = '0.1.0'

from collections.abc import Callable, Mapping, Sequence
from typing import Any

import pandas as pd

from shapedb.connection import ConnectionWrapper, check_connection, connect
from shapedb.exceptions import BindError, CastError, ConnectionFailure
from shapedb.exceptions import DatabaseError, DbConnectionError, ExecutionError
from shapedb.exceptions import GroupingError, HandleError, IntegrityError
from shapedb.exceptions import IntegrityViolationError, IterationError
from shapedb.exceptions import OperationalError, ProgrammingError, ShapeError
from shapedb.exceptions import StatementStateError, TransformedError
from shapedb.exceptions import UniquenessError, ValidationError
from shapedb.options import DatabaseOptions, iterdict_data_loader
from shapedb.options import pandas_numpy_data_loader, pandas_pyarrow_data_loader
from shapedb.statement import Statement
from shapedb.transaction import READ_COMMITTED, READ_UNCOMMITTED
from shapedb.transaction import REPEATABLE_READ, SERIALIZABLE
from shapedb.transaction import Transaction as transaction
from shapedb.types import TypeTag, get_types, infer_type


def isconnection(cn: Any) -> bool:
    """Check if object is a shapedb connection."""
    return isinstance(cn, ConnectionWrapper)


def prepare(cn: ConnectionWrapper, sql: str) -> Statement:
    """Create an unexecuted statement.
    """
    return cn.prepare(sql)


def query(cn: ConnectionWrapper, sql: str, *args: Any) -> Statement:
    """Execute a query and return the executed statement for shaping.
    """
    return cn.query(sql, *args)


def execute(cn: ConnectionWrapper, sql: str, *args: Any) -> int:
    """Execute a SQL statement and return affected row count.
    """
    return cn.execute(sql, *args)


def insert(cn: ConnectionWrapper, table: str, column_values: Mapping[str, Any],
           insert_id_name: str | None = None) -> Statement | Any:
    """Insert one row from a column-value map.
    """
    return cn.insert(table, column_values, insert_id_name)


def batch_insert(cn: ConnectionWrapper, table: str,
                 column_values: Mapping[str, Any]) -> Statement | None:
    """Insert rows from a map of column name to sequence (or scalar) values.
    """
    return cn.batch_insert(table, column_values)


def batch_insert_rows(cn: ConnectionWrapper, table: str, column_names: Sequence[str],
                      rows: Sequence[Sequence[Any]], length_check: bool = True) -> Statement | None:
    """Insert rows given as value sequences.
    """
    return cn.batch_insert_rows(table, column_names, rows, length_check)


def batch_insert_frame(cn: ConnectionWrapper, table: str, frame: pd.DataFrame) -> Statement | None:
    """Insert the rows of a DataFrame.
    """
    return cn.batch_insert_frame(table, frame)


def update(cn: ConnectionWrapper, table: str, column_values: Mapping[str, Any],
           where: str | None = None, where_params: Sequence[Any] = ()) -> Statement:
    """Update rows of a table.
    """
    return cn.update(table, column_values, where, where_params)


def delete(cn: ConnectionWrapper, table: str, where: str | None = None,
           where_params: Sequence[Any] = ()) -> Statement:
    """Delete rows of a table.
    """
    return cn.delete(table, where, where_params)


def count(cn: ConnectionWrapper, table: str, where: str | None = None,
          where_params: Sequence[Any] = ()) -> int:
    """Count rows of a table.
    """
    return cn.count(table, where, where_params)


def save(cn: ConnectionWrapper, table: str, key_values: Mapping[str, Any],
         data_values: Mapping[str, Any] | None = None) -> Statement | Any | None:
    """Insert or update the row identified by ``key_values``.
    """
    return cn.save(table, key_values, data_values)


def begin(cn: ConnectionWrapper, level: str | None = None) -> transaction:
    return cn.begin(level)


def commit(cn: ConnectionWrapper) -> None:
    cn.commit()


def rollback(cn: ConnectionWrapper) -> None:
    cn.rollback()


def ta(cn: ConnectionWrapper, func: Callable[[], Any], level: str | None = None) -> Any:
    """Run ``func`` inside a transaction on ``cn`` and return its result.
    """
    return cn.ta(func, level)


def last_insert_id(cn: ConnectionWrapper, name: str | None = None) -> Any:
    return cn.last_insert_id(name)


__all__ = [
    # connection
    'ConnectionWrapper',
    'DatabaseOptions',
    'Statement',
    'check_connection',
    'connect',
    'isconnection',
    'transaction',
    # data loaders
    'iterdict_data_loader',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    # types
    'TypeTag',
    'get_types',
    'infer_type',
    # isolation levels
    'READ_UNCOMMITTED',
    'READ_COMMITTED',
    'REPEATABLE_READ',
    'SERIALIZABLE',
    # operations
    'prepare',
    'query',
    'execute',
    'insert',
    'batch_insert',
    'batch_insert_rows',
    'batch_insert_frame',
    'update',
    'delete',
    'count',
    'save',
    'begin',
    'commit',
    'rollback',
    'ta',
    'last_insert_id',
    # exceptions
    'DatabaseError',
    'ConnectionFailure',
    'ValidationError',
    'ShapeError',
    'BindError',
    'StatementStateError',
    'GroupingError',
    'CastError',
    'IterationError',
    'UniquenessError',
    'TransformedError',
    'ExecutionError',
    'IntegrityViolationError',
    'HandleError',
    'DbConnectionError',
    'IntegrityError',
    'ProgrammingError',
    'OperationalError',
]
