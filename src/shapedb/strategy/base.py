"""
Base strategy interface for dialect-specific behaviour.

Defines the abstract base class that all database-specific strategy
implementations inherit from. The strategy pattern keeps connection URLs,
autocommit control, paramstyle conversion, upsert syntax and isolation
levels out of the connection and statement code, which work with any
database through this interface.
"""
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from shapedb.sql import make_placeholders
from shapedb.sql import quote_identifier as sql_quote_identifier
from shapedb.sql import standardize_placeholders

if TYPE_CHECKING:
    from shapedb.connection import ConnectionWrapper
    from shapedb.options import DatabaseOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for database-specific operations.
    """

    #: Upper bound on bind parameters in a single statement.
    max_bind_params: int = 32766

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> Any:
        """Build the SQLAlchemy connection URL for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            sqlalchemy URL suitable for create_engine
        """

    @abstractmethod
    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.
        """

    @abstractmethod
    def configure_connection(self, conn: Any) -> None:
        """Configure a freshly opened DBAPI connection.

        Args:
            conn: Pooled DBAPI connection to configure with database-specific settings
        """

    @abstractmethod
    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode on a raw database connection.
        """

    @abstractmethod
    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode on a raw database connection.
        """

    @abstractmethod
    def isolation_level_sql(self, level: str) -> str | None:
        """Return the statement that applies ``level`` to the open transaction.

        Returns None when the dialect has nothing to execute for the level.
        """

    @abstractmethod
    def last_insert_id(self, cn: 'ConnectionWrapper', name: str | None = None) -> Any:
        """Return the id generated by the most recent INSERT on ``cn``.

        Args:
            cn: Database connection object
            name: Sequence (or table) name, where the dialect supports it
        """

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.
        """

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    def quote_identifier(self, identifier: str) -> str:
        """Quote a database identifier.

        Default implementation uses standard SQL double-quote escaping.
        """
        return sql_quote_identifier(identifier, self.dialect_name)

    def get_placeholder_style(self) -> str:
        """Return the positional placeholder marker for this database.
        """
        return '%s'

    def standardize_sql(self, sql: str) -> str:
        """Convert placeholders to this dialect's paramstyle.
        """
        return standardize_placeholders(sql, dialect=self.dialect_name)

    def distinct_expr(self, left: str, right: str) -> str:
        """Return a NULL-safe inequality test between two expressions.
        """
        return f'{left} IS DISTINCT FROM {right}'

    def build_upsert_sql(self, table: str, columns: Sequence[str],
                         key_columns: Sequence[str],
                         update_columns: Sequence[str] | None = None) -> str:
        """Generate a single-row upsert statement.

        Inserts ``columns``; on a conflict over ``key_columns`` overwrites
        ``update_columns`` with the proposed values, but only when at least
        one of them actually changes, so an unchanged row reports zero
        affected rows. Without ``update_columns`` the conflict is ignored.
        """
        quoted_table = self.quote_identifier(table)
        quoted_columns = ', '.join(self.quote_identifier(c) for c in columns)
        insert_sql = (f'INSERT INTO {quoted_table} ({quoted_columns}) '
                      f'VALUES ({make_placeholders(len(columns))})')

        quoted_keys = ', '.join(self.quote_identifier(k) for k in key_columns)
        conflict_sql = f'ON CONFLICT ({quoted_keys})'

        if not update_columns:
            return f'{insert_sql} {conflict_sql} DO NOTHING'

        update_exprs = self._build_update_exprs(update_columns)
        changed = ' OR '.join(
            self.distinct_expr(f'{quoted_table}.{self.quote_identifier(c)}',
                               f'excluded.{self.quote_identifier(c)}')
            for c in update_columns)
        return (f"{insert_sql} {conflict_sql} DO UPDATE SET {', '.join(update_exprs)} "
                f'WHERE {changed}')

    def _build_update_exprs(self, update_columns: Sequence[str]) -> list[str]:
        """Build UPDATE SET expressions like ``"col" = excluded."col"``.
        """
        update_exprs = []
        for col in update_columns:
            qc = self.quote_identifier(col)
            update_exprs.append(f'{qc} = excluded.{qc}')
        return update_exprs
