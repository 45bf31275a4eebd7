"""
Batch inserts.

Column-oriented input is transposed into rows, and rows are written with
either one multi-row INSERT per chunk (``MultiRowInserter``) or one INSERT
per row (``RowByRowInserter``). The inserter is chosen per connection from
``DatabaseOptions.multi_row_insert``.

Bind types are inferred from the first row only and reused for every row.
"""
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
from more_itertools import chunked, flatten

from shapedb.exceptions import ShapeError
from shapedb.sql import build_insert_sql
from shapedb.types import get_types

if TYPE_CHECKING:
    from shapedb.connection import ConnectionWrapper
    from shapedb.statement import Statement

logger = logging.getLogger(__name__)

__all__ = ['BatchInserter', 'MultiRowInserter', 'RowByRowInserter']


def is_column_sequence(value: Any) -> bool:
    """Check whether a batch value holds one entry per row."""
    if isinstance(value, str | bytes):
        return False
    return isinstance(value, Sequence | np.ndarray | pd.Series)


def transpose_columns(column_values: Mapping[str, Any]) -> list[tuple]:
    """Turn ``{column: values}`` into a list of row tuples.

    Scalar values are repeated for every row. All sequences must have the
    same length.

    Raises
        ShapeError: if no value is a sequence or the sequences differ in length
    """
    lengths = {len(v) for v in column_values.values() if is_column_sequence(v)}
    if not lengths:
        raise ShapeError('Cannot determine batch size, no column holds a sequence of values')
    if len(lengths) > 1:
        raise ShapeError(f'Batch columns have unequal lengths: {sorted(lengths)}')

    size = lengths.pop()
    columns = [list(v) if is_column_sequence(v) else [v] * size
               for v in column_values.values()]
    return list(zip(*columns))


class BatchInserter:
    """Shared input handling for the batch insert strategies.
    """

    def __init__(self, cn: 'ConnectionWrapper') -> None:
        self.cn = cn

    def batch_insert(self, table: str, column_values: Mapping[str, Any]) -> 'Statement | None':
        """Insert rows given as ``{column: values}``.

        Scalar values are broadcast to the common length of the sequence
        values. Nothing is executed if the input is malformed.
        """
        rows = transpose_columns(column_values)
        return self.batch_insert_rows(table, list(column_values.keys()), rows, length_check=False)

    def batch_insert_frame(self, table: str, frame: pd.DataFrame) -> 'Statement | None':
        """Insert every row of a DataFrame, mapping NaN/NaT to NULL.
        """
        columns = [str(c) for c in frame.columns]
        values = frame.astype(object).where(frame.notna(), None)
        rows = list(values.itertuples(index=False, name=None))
        return self.batch_insert_rows(table, columns, rows, length_check=False)

    def _check_rows(self, column_names: Sequence[str], rows: Iterable[Sequence[Any]],
                    length_check: bool) -> list[Sequence[Any]]:
        if not column_names:
            raise ShapeError('No columns given for batch insert')
        rows = list(rows)
        if length_check:
            for i, row in enumerate(rows):
                if len(row) != len(column_names):
                    raise ShapeError(f'Row {i} has {len(row)} values, expected {len(column_names)}')
        return rows

    def batch_insert_rows(self, table: str, column_names: Sequence[str],
                          rows: Iterable[Sequence[Any]],
                          length_check: bool = True) -> 'Statement | None':
        raise NotImplementedError


class MultiRowInserter(BatchInserter):
    """Inserts rows with ``INSERT ... VALUES (...), (...), ...`` statements.

    Each statement carries at most ``max_insert_rows`` rows, further
    limited so that it stays below the dialect's bind parameter limit.
    """

    def rows_per_statement(self, ncols: int) -> int:
        limit = max(1, self.cn.strategy.max_bind_params // ncols)
        return min(self.cn.max_insert_rows, limit)

    def batch_insert_rows(self, table: str, column_names: Sequence[str],
                          rows: Iterable[Sequence[Any]],
                          length_check: bool = True) -> 'Statement | None':
        """Insert row sequences aligned with ``column_names``.

        Full chunks share one prepared statement; the final, possibly
        shorter chunk gets a statement of its own size.

        Returns
            The statement used for the last chunk, None if there were no rows
        """
        rows = self._check_rows(column_names, rows, length_check)
        if not rows:
            logger.debug(f'No rows to insert into {table}')
            return None

        columns = tuple(column_names)
        types = get_types(rows[0])
        size = self.rows_per_statement(len(columns))
        chunks = list(chunked(rows, size))
        last = chunks.pop()

        stmt = None
        if chunks:
            stmt = self.cn.prepare(build_insert_sql(self.cn.dialect, table, columns, size))
            for chunk in chunks:
                stmt.bind(list(flatten(chunk)), types).execute()
        if stmt is None or len(last) != size:
            stmt = self.cn.prepare(build_insert_sql(self.cn.dialect, table, columns, len(last)))
        stmt.bind(list(flatten(last)), types).execute()

        logger.debug(f'Inserted {len(rows)} rows into {table} in {len(chunks) + 1} statements')
        return stmt


class RowByRowInserter(BatchInserter):
    """Inserts rows with one single-row INSERT execution per row.
    """

    def batch_insert_rows(self, table: str, column_names: Sequence[str],
                          rows: Iterable[Sequence[Any]],
                          length_check: bool = True) -> 'Statement | None':
        rows = self._check_rows(column_names, rows, length_check)
        if not rows:
            logger.debug(f'No rows to insert into {table}')
            return None

        types = get_types(rows[0])
        stmt = self.cn.prepare(build_insert_sql(self.cn.dialect, table, tuple(column_names)))
        for row in rows:
            stmt.bind(row, types).execute()
        return stmt
