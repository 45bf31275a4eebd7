"""Low-level connection utilities with no internal dependencies.

These utilities work with any connection type (ConnectionWrapper,
SQLAlchemy connections, raw DBAPI connections) and import nothing from
other shapedb modules, making them safe to import anywhere.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)


def get_dialect_name(obj: Any) -> str:
    """Get dialect name for a database connection or engine.
    """
    if hasattr(obj, 'dialect'):
        dialect = obj.dialect
        if isinstance(dialect, str):
            return dialect.lower()
        return str(dialect.name).lower()

    if hasattr(obj, 'engine') and hasattr(obj.engine, 'dialect'):
        return str(obj.engine.dialect.name).lower()

    type_name = f'{type(obj).__module__}.{type(obj).__name__}'
    if 'psycopg' in type_name:
        return 'postgresql'
    if 'sqlite3' in type_name:
        return 'sqlite'

    raise AttributeError(f'Cannot determine dialect for {type(obj)}')


def get_raw_connection(connection: Any) -> Any:
    """Extract the driver-level connection from a pooled wrapper."""
    raw_conn = connection
    if hasattr(connection, 'driver_connection'):
        raw_conn = connection.driver_connection
    return raw_conn


def ensure_commit(connection: Any) -> None:
    """Force a commit on a DBAPI connection.

    Works safely even if the connection is already in auto-commit mode.
    """
    try:
        connection.commit()
    except Exception as e:
        logger.debug(f'Could not commit transaction: {e}')
