"""
Insert-or-update by key.

``UpsertSaver`` issues a single ``INSERT ... ON CONFLICT`` statement and is
safe under concurrent writers; it needs a unique constraint over the key
columns. ``CheckThenWriteSaver`` probes with ``SELECT COUNT(*)`` and then
inserts or updates, which works without a constraint but can race.
"""
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from shapedb.exceptions import ValidationError
from shapedb.sql import build_where_equals

if TYPE_CHECKING:
    from shapedb.connection import ConnectionWrapper
    from shapedb.statement import Statement

logger = logging.getLogger(__name__)

__all__ = ['CheckThenWriteSaver', 'UpsertSaver']


def combine_values(key_values: Mapping[str, Any],
                   data_values: Mapping[str, Any]) -> dict[str, Any]:
    """Data columns first, then key columns not already present."""
    combined = dict(data_values)
    for col, value in key_values.items():
        combined.setdefault(col, value)
    return combined


class CheckThenWriteSaver:

    def __init__(self, cn: 'ConnectionWrapper') -> None:
        self.cn = cn

    def save(self, table: str, key_values: Mapping[str, Any],
             data_values: Mapping[str, Any] | None = None) -> 'Statement | Any | None':
        """Update ``data_values`` where the keys match, else insert keys and data.

        Returns None when a matching row exists and there is nothing to update.
        """
        if not key_values:
            raise ValidationError('save() requires at least one key column')
        data_values = dict(data_values or {})
        where = build_where_equals(self.cn.dialect, list(key_values))
        where_params = list(key_values.values())

        if self.cn.count(table, where, where_params) == 0:
            return self.cn.insert(table, combine_values(key_values, data_values))
        if data_values:
            return self.cn.update(table, data_values, where, where_params)
        logger.debug(f'Row exists in {table} and no data given, nothing to save')
        return None


class UpsertSaver:

    def __init__(self, cn: 'ConnectionWrapper') -> None:
        self.cn = cn

    def save(self, table: str, key_values: Mapping[str, Any],
             data_values: Mapping[str, Any] | None = None) -> 'Statement':
        """Insert keys and data, or overwrite the data of the conflicting row.

        The affected row count is 1 for an insert or a changed row and 0
        when the stored data already equals ``data_values``.
        """
        if not key_values:
            raise ValidationError('save() requires at least one key column')
        combined = combine_values(key_values, data_values or {})
        update_columns = [c for c in (data_values or {}) if c not in key_values]
        sql = self.cn.strategy.build_upsert_sql(table, list(combined), list(key_values),
                                                update_columns)
        return self.cn.prepare(sql).bind(list(combined.values())).execute()
