"""
PostgreSQL-specific strategy implementation.

This module implements the DatabaseStrategy interface for PostgreSQL via
psycopg 3:
- format (``%s``) and pyformat (``%(name)s``) paramstyle
- ``SET TRANSACTION ISOLATION LEVEL`` for explicit transactions
- ``lastval()`` / ``currval()`` for generated ids
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from shapedb.exceptions import DriverError, wrap_driver_error
from shapedb.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from shapedb.connection import ConnectionWrapper
    from shapedb.options import DatabaseOptions

logger = logging.getLogger(__name__)

ISOLATION_LEVELS = frozenset({
    'READ UNCOMMITTED',
    'READ COMMITTED',
    'REPEATABLE READ',
    'SERIALIZABLE',
    })


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    # wire protocol limit on bind parameters (Int16 count)
    max_bind_params = 65535

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for PostgreSQL."""
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)
        if options.appname:
            query['application_name'] = options.appname

        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query,
            )

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for PostgreSQL."""
        return {}

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['hostname', 'username', 'password', 'database', 'port', 'timeout']

    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings for PostgreSQL.
        """
        raw_conn = conn
        if hasattr(conn, 'driver_connection'):
            raw_conn = conn.driver_connection
        self.enable_autocommit(raw_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for PostgreSQL.
        """
        raw_conn.autocommit = True

    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode for PostgreSQL.
        """
        raw_conn.autocommit = False

    def isolation_level_sql(self, level: str) -> str | None:
        """Return ``SET TRANSACTION ISOLATION LEVEL`` for a known level.
        """
        level = level.upper()
        if level not in ISOLATION_LEVELS:
            raise ValueError(f'Unknown isolation level: {level}')
        return f'SET TRANSACTION ISOLATION LEVEL {level}'

    def last_insert_id(self, cn: 'ConnectionWrapper', name: str | None = None) -> Any:
        """Return ``currval(name)`` when a sequence is named, else ``lastval()``.
        """
        cursor = cn.dbapi_connection.cursor()
        try:
            if name:
                cursor.execute('SELECT currval(%s)', (name,))
            else:
                cursor.execute('SELECT lastval()')
            return cursor.fetchone()[0]
        except DriverError as e:
            raise wrap_driver_error(e) from e
        finally:
            cursor.close()
