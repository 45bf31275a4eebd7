"""
Database-specific exception classes.
"""
import re
import sqlite3

import psycopg

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server closed',
    r'eof detected',
    r'broken pipe',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r'could not connect',
    r'no route to host',
    r'network.*(unreachable|error)',
    # Database unavailable
    r'database.*unavailable',
    r'database is locked',
    r'too many connections',
    ]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Returns True for connection drops, timeouts, network issues and
    temporarily unavailable databases. Syntax errors, constraint violations
    and other programming errors will fail again and return False.
    """
    return bool(_RETRYABLE_REGEX.search(str(exc).lower()))


class DatabaseError(Exception):
    """Base class for all shapedb errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining database connection.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


class ShapeError(DatabaseError):
    """Malformed or inconsistent batch input.
    """


class BindError(DatabaseError):
    """Bound parameters and their type map do not line up.
    """


class StatementStateError(DatabaseError):
    """Operation is illegal for the current state of a statement.
    """


class GroupingError(StatementStateError):
    """group() cannot be applied.
    """


class CastError(StatementStateError):
    """cast() or map() named a column that is not available.
    """


class IterationError(StatementStateError):
    """cell() or row() iteration is not possible in the current state.
    """


class UniquenessError(StatementStateError):
    """A bucket expected to hold exactly one element did not.
    """


class TransformedError(StatementStateError):
    """A mapping-only operation was requested after transform().
    """


class ExecutionError(DatabaseError):
    """Driver failure while preparing or executing a statement.

    The original driver exception is available as ``__cause__``.
    """


class IntegrityViolationError(ExecutionError):
    """Database constraint violation error.
    """


class HandleError(DatabaseError):
    """The native statement handle was surrendered or already consumed.
    """


DriverError = (
    psycopg.Error,
    sqlite3.Error,
    )

DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    ConnectionFailure,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    IntegrityViolationError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    sqlite3.ProgrammingError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )


def wrap_driver_error(exc: BaseException) -> ExecutionError:
    """Translate a driver exception into the shapedb taxonomy.

    The caller is expected to ``raise wrap_driver_error(e) from e``.
    """
    if isinstance(exc, IntegrityError):
        return IntegrityViolationError(str(exc))
    return ExecutionError(str(exc))
