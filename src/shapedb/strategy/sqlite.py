"""
SQLite-specific strategy implementation.

This module implements the DatabaseStrategy interface for SQLite:
- qmark (``?``) and named (``:name``) paramstyle
- autocommit through ``isolation_level = None``
- date/datetime converters registered on connect
- ``IS NOT`` as the NULL-safe inequality operator in upserts
- no isolation levels beyond ``PRAGMA read_uncommitted``
"""
import datetime
import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import dateutil.parser
import sqlalchemy as sa

from shapedb.exceptions import DriverError, wrap_driver_error
from shapedb.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from shapedb.connection import ConnectionWrapper
    from shapedb.options import DatabaseOptions

logger = logging.getLogger(__name__)


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    # SQLITE_MAX_VARIABLE_NUMBER default since 3.32
    max_bind_params = 32766

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite."""
        return {
            'connect_args': {
                'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
            }
        }

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings for SQLite.

        Registers adapters for dict/list (stored as JSON) and converters for
        declared date/datetime columns, then switches to autocommit.
        """
        sqlite_conn = conn
        if hasattr(conn, 'dbapi_connection'):
            sqlite_conn = conn.dbapi_connection

        sqlite3.register_adapter(dict, json.dumps)
        sqlite3.register_adapter(list, json.dumps)
        sqlite3.register_adapter(datetime.date, datetime.date.isoformat)
        sqlite3.register_adapter(datetime.datetime, datetime.datetime.isoformat)
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)

        sqlite_conn.execute('PRAGMA foreign_keys = ON')
        self.enable_autocommit(sqlite_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = None

    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode for SQLite.

        The stdlib driver then opens a transaction before the next DML
        statement; BEGIN is issued explicitly so reads are covered too.
        """
        raw_conn.isolation_level = 'DEFERRED'
        if not raw_conn.in_transaction:
            raw_conn.execute('BEGIN')

    def isolation_level_sql(self, level: str) -> str | None:
        """SQLite transactions are serializable; only dirty reads can be enabled.
        """
        if level.upper() == 'READ UNCOMMITTED':
            return 'PRAGMA read_uncommitted = 1'
        if level.upper() != 'SERIALIZABLE':
            logger.warning(f'Isolation level {level} not supported in SQLite, transaction is SERIALIZABLE')
        return None

    def last_insert_id(self, cn: 'ConnectionWrapper', name: str | None = None) -> int:
        """Return ``last_insert_rowid()``; ``name`` is ignored.
        """
        cursor = cn.dbapi_connection.cursor()
        try:
            cursor.execute('SELECT last_insert_rowid()')
            return cursor.fetchone()[0]
        except DriverError as e:
            raise wrap_driver_error(e) from e
        finally:
            cursor.close()

    def get_placeholder_style(self) -> str:
        """Return SQLite's placeholder marker.
        """
        return '?'

    def distinct_expr(self, left: str, right: str) -> str:
        """SQLite spells NULL-safe inequality as ``IS NOT``.
        """
        return f'{left} IS NOT {right}'
