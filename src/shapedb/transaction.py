"""
Transaction handling for database operations.
"""
import logging
import threading
from typing import Any

from shapedb.exceptions import DriverError, ExecutionError, wrap_driver_error

logger = logging.getLogger(__name__)

__all__ = [
    'Transaction',
    'READ_UNCOMMITTED',
    'READ_COMMITTED',
    'REPEATABLE_READ',
    'SERIALIZABLE',
]

READ_UNCOMMITTED = 'READ UNCOMMITTED'
READ_COMMITTED = 'READ COMMITTED'
REPEATABLE_READ = 'REPEATABLE READ'
SERIALIZABLE = 'SERIALIZABLE'

_local = threading.local()


def _active_transactions() -> dict[int, 'Transaction']:
    if not hasattr(_local, 'active_transactions'):
        _local.active_transactions = {}
    return _local.active_transactions


class Transaction:
    """Context manager for running multiple commands in a transaction.

    Autocommit is switched off for the duration of the block and the
    isolation level, if given, is applied right after the transaction
    starts. Leaving the block commits; an exception rolls back and
    propagates unchanged. Nested transactions on one connection are not
    supported.

    Attribute access is delegated to the connection, so the transaction
    object can be used in its place.

    Examples
        with Transaction(cn) as tx:
            tx.execute('delete from ...', args)
            tx.update('t', {'a': 1}, 'id = ?', [5])
    """

    def __init__(self, cn: Any, level: str | None = None) -> None:
        self.cn = cn
        self.level = level
        if id(cn) in _active_transactions():
            raise RuntimeError('Nested transactions are not supported')

    def __getattr__(self, name: str) -> Any:
        return getattr(self.cn, name)

    def begin(self) -> 'Transaction':
        active = _active_transactions()
        if id(self.cn) in active:
            raise RuntimeError('Nested transactions are not supported')
        active[id(self.cn)] = self
        self.cn.in_transaction = True

        try:
            self.cn.strategy.disable_autocommit(self.cn.driver_connection)
            if self.level:
                self._apply_isolation_level(self.level)
        except DriverError as e:
            self._cleanup()
            raise wrap_driver_error(e) from e
        except Exception:
            self._cleanup()
            raise

        logger.debug(f'Started transaction for connection {id(self.cn)}')
        return self

    def _apply_isolation_level(self, level: str) -> None:
        sql = self.cn.strategy.isolation_level_sql(level)
        if sql is None:
            return
        cursor = self.cn.dbapi_connection.cursor()
        try:
            cursor.execute(sql)
        except DriverError as e:
            raise wrap_driver_error(e) from e
        finally:
            cursor.close()
        logger.debug(f'Transaction isolation level set to {level}')

    def commit(self) -> None:
        try:
            self.cn.dbapi_connection.commit()
            logger.debug(f'Committed transaction for connection {id(self.cn)}')
        except DriverError as e:
            raise wrap_driver_error(e) from e
        finally:
            self._cleanup()

    def rollback(self) -> None:
        try:
            logger.warning('Rolling back the current transaction')
            self.cn.dbapi_connection.rollback()
        except DriverError as e:
            raise wrap_driver_error(e) from e
        finally:
            self._cleanup()

    def _cleanup(self) -> None:
        _active_transactions().pop(id(self.cn), None)
        self.cn.in_transaction = False
        self.cn.strategy.enable_autocommit(self.cn.driver_connection)
        logger.debug(f'Transaction cleanup complete for connection {id(self.cn)}')

    def __enter__(self) -> 'Transaction':
        return self.begin()

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        if exc_type is not None:
            try:
                self.rollback()
            except ExecutionError as e:
                # the error from the block propagates, not the failed rollback
                logger.error(f'Rollback failed: {e}')
        else:
            self.commit()
