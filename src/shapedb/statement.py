"""
Executed statements and client-side result shaping.

A Statement owns one DB-API cursor and the buffered result of its last
execution. Results are fetched lazily into a list of ``{column: value}``
rows, which can then be regrouped into nested dictionaries and reshaped:

    >>> stmt = cn.query('SELECT country, city, population FROM cities')
    >>> stmt.group(['country', 'city']).get()
    {'FR': {'Paris': [2100000], 'Lyon': [513000]}, 'DE': {...}}

Every shaping operation builds new containers and leaves the previous
structure untouched. Leaves are always lists of row records (or whatever
``transform`` turned them into); one level of dictionary is added per
grouped column.
"""
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from functools import wraps
from typing import TYPE_CHECKING, Any

from shapedb.exceptions import BindError, CastError, DriverError, GroupingError
from shapedb.exceptions import HandleError, IterationError, StatementStateError
from shapedb.exceptions import TransformedError, UniquenessError
from shapedb.exceptions import wrap_driver_error
from shapedb.row import as_record
from shapedb.sql import has_placeholders
from shapedb.types import TypeTag, get_types, infer_type, resolve_cast
from shapedb.utils import ensure_commit

if TYPE_CHECKING:
    from shapedb.connection import ConnectionWrapper

logger = logging.getLogger(__name__)

__all__ = ['Statement', 'dumpsql']


def dumpsql(func):
    """Decorator for logging executed SQL, parameters and timing."""
    @wraps(func)
    def wrapper(self, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{self.sql}\nargs: {args or self._binds}')
        try:
            return func(self, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{self.sql}\nargs: {args or self._binds}')
            raise
        finally:
            elapsed = time.time() - start
            self.cn.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


def _partition(rows: list[dict], keys: Sequence[str]) -> dict:
    """Bucket rows by ``keys[0]``, removing the key column, then recurse.

    Bucket order is first-seen order of the key values.
    """
    key, rest = keys[0], keys[1:]
    buckets: dict[Any, list[dict]] = {}
    for rec in rows:
        rec = dict(rec)
        value = rec.pop(key)
        try:
            bucket = buckets.setdefault(value, [])
        except TypeError:
            raise GroupingError(f'Grouping column {key} holds unhashable value {value!r}') from None
        bucket.append(rec)
    if rest:
        return {k: _partition(v, rest) for k, v in buckets.items()}
    return buckets


def _first_value(rec: Mapping[str, Any]) -> Any:
    return next(iter(rec.values()))


class Statement:
    """A prepared SQL statement and its buffered, reshapeable result.

    Created by ``ConnectionWrapper.prepare`` (unexecuted) or
    ``ConnectionWrapper.query`` (executed). Shaping methods return ``self``
    so calls can be chained; terminal getters return the shaped structure.
    """

    def __init__(self, cn: 'ConnectionWrapper', sql: str, cursor: Any) -> None:
        self.cn = cn
        self.sql = sql
        self._cursor = cursor
        self._binds: dict[int | str, Any] = {}
        self._placeholders = has_placeholders(sql)
        self._reset_state()

    def _reset_state(self) -> None:
        self._data: list | dict | None = None
        self._columns: list[str] = []
        self._available: list[str] = []
        self._nesting = 0
        self._transformed = False
        self._pointer = -1
        self._line: list | None = None
        self._cell = 0

    def __repr__(self) -> str:
        state = 'materialized' if self._data is not None else 'pending'
        return f'<Statement {state} nesting={self._nesting} sql={self.sql!r}>'

    # =========================================================================
    # Binding and execution
    # =========================================================================

    def bind_value(self, parameter: int | str, value: Any, tag: TypeTag | str) -> 'Statement':
        """Bind a single value by 1-based position or by name.

        Names may be given with or without the leading colon.
        """
        tag = TypeTag(tag)
        if isinstance(parameter, str):
            parameter = parameter.removeprefix(':')
        elif not isinstance(parameter, int) or parameter < 1:
            raise BindError(f'Invalid bind position: {parameter!r}')
        self._binds[parameter] = tag.adapt(value)
        return self

    def bind(self, parameters: Sequence[Any] | Mapping[Any, Any],
             types: Sequence[TypeTag] | Mapping[str, TypeTag] | None = None) -> 'Statement':
        """Bind a sequence of positional values or a mapping of named values.

        Positional values take their types from ``types`` in rotation, so a
        flat list holding several rows can be bound with the types of one
        row. Without ``types`` every value's type is inferred.

        Named values need an entry in ``types`` for every name.
        """
        if isinstance(parameters, Mapping):
            keys = list(parameters.keys())
            if keys == list(range(len(keys))):
                return self.bind([parameters[k] for k in keys], types)
            for name, value in parameters.items():
                if types is None:
                    tag = infer_type(value)
                else:
                    tag = self._named_type(types, name)
                self.bind_value(name, value, tag)
            return self

        values = list(parameters)
        if types is None:
            types = get_types(values)
        if isinstance(types, Mapping):
            raise BindError('Positional parameters require a sequence of types')
        types = list(types)
        if values and not types:
            raise BindError('No types given for positional parameters')
        for i, value in enumerate(values):
            self.bind_value(i + 1, value, types[i % len(types)])
        return self

    @staticmethod
    def _named_type(types: Any, name: str) -> TypeTag:
        if not isinstance(types, Mapping):
            raise BindError('Named parameters require a mapping of types')
        bare = name.removeprefix(':')
        for key in (name, bare, f':{bare}'):
            if key in types:
                return types[key]
        raise BindError(f'No type given for parameter {name}')

    @property
    def parameters(self) -> tuple | dict:
        """Currently bound values in the form handed to the driver."""
        if not self._binds:
            return ()
        if all(isinstance(k, int) for k in self._binds):
            expected = list(range(1, len(self._binds) + 1))
            if sorted(self._binds) != expected:
                raise BindError(f'Positional binds are not contiguous: {sorted(self._binds)}')
            return tuple(self._binds[k] for k in expected)
        if any(isinstance(k, int) for k in self._binds):
            raise BindError('Cannot mix positional and named parameters')
        return dict(self._binds)

    @staticmethod
    def _adapt_args(args: tuple) -> tuple | dict:
        if len(args) == 1 and isinstance(args[0], Mapping):
            return {str(k).removeprefix(':'): infer_type(v).adapt(v)
                    for k, v in args[0].items()}
        if len(args) == 1 and isinstance(args[0], list | tuple):
            args = tuple(args[0])
        return tuple(infer_type(v).adapt(v) for v in args)

    @dumpsql
    def execute(self, *args: Any) -> 'Statement':
        """Run the statement, discarding any previous result and shaping state.

        Explicit arguments (one sequence or mapping, or several values)
        replace the stored binds for this execution only.
        """
        if self._cursor is None:
            raise HandleError('Statement handle was surrendered by to_native_statement()')
        params = self._adapt_args(args) if args else self.parameters
        self._reset_state()

        try:
            if params or self._placeholders:
                self._cursor.execute(self.sql, params)
            else:
                self._cursor.execute(self.sql)
        except DriverError as e:
            raise wrap_driver_error(e) from e

        if self._cursor.description is not None:
            self._columns = [d[0] for d in self._cursor.description]
            self._available = list(self._columns)

        if not self.cn.in_transaction:
            ensure_commit(self.cn.dbapi_connection)
        return self

    @property
    def rowcount(self) -> int:
        """Rows affected by the last execution."""
        if self._cursor is None:
            raise HandleError('Statement handle was surrendered by to_native_statement()')
        return self._cursor.rowcount

    @property
    def column_count(self) -> int:
        """Number of columns in the last result (0 for non-queries)."""
        return len(self._columns)

    @property
    def available_columns(self) -> list[str]:
        """Columns still present in leaf records, in result order."""
        return list(self._available)

    @property
    def nesting(self) -> int:
        return self._nesting

    @property
    def transformed(self) -> bool:
        return self._transformed

    def materialize(self) -> 'Statement':
        """Fetch the full result into the buffer, once per execution.

        A no-op when already materialized or after the handle was
        surrendered.
        """
        if self._data is not None or self._cursor is None:
            return self
        if self._cursor.description is None:
            self._data = []
            return self
        try:
            rows = self._cursor.fetchall()
        except DriverError as e:
            raise wrap_driver_error(e) from e
        self._data = [dict(zip(self._columns, row)) for row in rows]
        return self

    def _buffer(self) -> list | dict:
        self.materialize()
        if self._data is None:
            raise HandleError('Statement handle was surrendered by to_native_statement()')
        return self._data

    def to_native_statement(self) -> Any:
        """Surrender the underlying DB-API cursor.

        The statement is unusable afterwards. Not possible once the result
        was fetched into the buffer.
        """
        if self._data is not None:
            raise HandleError('Cannot surrender cursor, result has already been materialized')
        if self._cursor is None:
            raise HandleError('Statement handle was already surrendered')
        cursor, self._cursor = self._cursor, None
        return cursor

    def close(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None

    # =========================================================================
    # Shaping
    # =========================================================================

    def immerse(self, fn: Callable[[Any], Any], level: int | None = None) -> Any:
        """Apply ``fn`` to every node found ``level`` dictionaries deep.

        ``level`` defaults to the current nesting, where ``fn`` receives the
        leaf lists. Returns a new structure; the buffer is not modified.
        """
        data = self._buffer()
        if level is None:
            level = self._nesting

        def descend(node: Any, depth: int) -> Any:
            if depth == 0:
                return fn(node)
            if isinstance(node, Mapping):
                return {k: descend(v, depth - 1) for k, v in node.items()}
            return [descend(v, depth - 1) for v in node]

        return descend(data, level)

    def group(self, columns: Sequence[str] | str) -> 'Statement':
        """Regroup leaf records into nested dictionaries keyed by ``columns``.

        Each grouped column is removed from the records and adds one level
        of nesting. At least one column must remain in the records.
        """
        if isinstance(columns, str):
            columns = [columns]
        columns = list(columns)
        self._buffer()

        if self._transformed:
            raise GroupingError('Cannot group transformed elements, transform() must be called after group()')
        if self._nesting + len(columns) >= self.column_count:
            raise GroupingError(f'Cannot do more than {self.column_count - 1} group operations '
                                f'for {self.column_count} columns. Use get_unique() or immerse() '
                                'to retrieve a flat structure')
        remaining = list(self._available)
        for col in columns:
            if col not in remaining:
                raise GroupingError(f'Grouping column {col} not available')
            remaining.remove(col)

        if columns:
            self._data = self.immerse(lambda rows: _partition(rows, columns))
        self._available = remaining
        self._nesting += len(columns)
        return self

    def filter(self, predicate: Callable[[Any], bool]) -> 'Statement':
        """Keep leaf elements for which ``predicate`` is true."""
        self._data = self.immerse(lambda rows: [r for r in rows if predicate(r)])
        return self

    def _check_columns(self, columns: Sequence[str], action: str) -> None:
        if self._transformed:
            raise TransformedError(f'Cannot {action} columns of transformed elements')
        for col in columns:
            if col not in self._available:
                raise CastError(f'{action.capitalize()} column {col} not available')

    def cast(self, type_map: Mapping[str, Any]) -> 'Statement':
        """Coerce the named columns of every leaf record.

        Types may be Python types, callables or names such as ``'int'`` and
        ``'double'``. NULL stays None.
        """
        self._buffer()
        self._check_columns(type_map, 'cast')
        try:
            casters = {col: resolve_cast(t) for col, t in type_map.items()}
        except ValueError as e:
            raise CastError(str(e)) from e
        self._data = self.immerse(
            lambda rows: [{**r, **{c: f(r[c]) for c, f in casters.items()}} for r in rows])
        return self

    def map(self, func_map: Mapping[str, Callable[[Any], Any]]) -> 'Statement':
        """Replace the named columns of every leaf record with ``func(value)``."""
        self._buffer()
        self._check_columns(func_map, 'map')
        self._data = self.immerse(
            lambda rows: [{**r, **{c: f(r[c]) for c, f in func_map.items()}} for r in rows])
        return self

    def transform(self, func: Callable[[Any], Any]) -> 'Statement':
        """Replace every leaf element with ``func(element)``.

        After this, group(), get_objects() and row_record() are refused and
        getters no longer reduce single-column records.
        """
        self._data = self.immerse(lambda rows: [func(r) for r in rows])
        self._transformed = True
        return self

    # =========================================================================
    # Iteration
    # =========================================================================

    def _current(self) -> dict | bool:
        if self._pointer < len(self._data):
            return self._data[self._pointer]
        return False

    def _advance(self, reset: bool) -> dict | bool:
        if reset or self._pointer < 0:
            self._pointer = 0
        else:
            self._pointer = min(self._pointer + 1, len(self._data))
        return self._current()

    def cell(self, reset: bool = False) -> Any:
        """Return the next single value, row by row and column by column.

        Returns False once the data is exhausted. The row buffer is only
        refilled after all of its cells were read, on reset, or on the very
        first call.
        """
        if self._nesting > 0:
            raise IterationError('Cannot iterate cells after group()')
        if self._transformed:
            raise IterationError('Cannot iterate cells after transform()')
        self._buffer()

        if reset or not self._line or len(self._line) == self._cell:
            row = self._advance(reset)
            if not row:
                return False
            self._line = list(row.values())
            self._cell = 1
            return self._line[0]

        value = self._line[self._cell]
        self._cell += 1
        return value

    def row(self, reset: bool = False) -> dict | bool:
        """Return the next row as a dict, or False past the last row."""
        if self._nesting > 0:
            raise IterationError('Cannot iterate rows after group()')
        if self._line is not None:
            raise IterationError('Cannot iterate rows while iterating cells')
        self._buffer()
        row = self._advance(reset)
        if isinstance(row, dict):
            return dict(row)
        return row

    def row_record(self, reset: bool = False) -> tuple | bool:
        """Like row(), but as a read-only named-field record."""
        if self._transformed:
            raise TransformedError('Cannot convert transformed rows to records')
        row = self.row(reset)
        if row is False:
            return False
        return as_record(row)

    # =========================================================================
    # Getters
    # =========================================================================

    def _reduces(self, reduce: bool) -> bool:
        return reduce and not self._transformed and self.column_count == self._nesting + 1

    def get(self, reduce: bool = True) -> Any:
        """Return the shaped result.

        With one column left in the records, each record is reduced to its
        value unless ``reduce`` is False or the result was transformed.
        """
        self._buffer()
        if self._reduces(reduce):
            return self.immerse(lambda rows: [_first_value(r) for r in rows])
        return self.immerse(list)

    def get_unique(self, reduce: bool = True) -> Any:
        """Return the shaped result with every leaf list replaced by its only element.

        Raises UniquenessError if any leaf list does not hold exactly one
        element. Single-column records are reduced as in get().
        """
        self._buffer()
        reducing = self._reduces(reduce)

        def unique(rows: list) -> Any:
            if len(rows) != 1:
                raise UniquenessError(f'Unique fetch failed, found {len(rows)} elements where one was expected')
            if reducing:
                return _first_value(rows[0])
            return rows[0]

        return self.immerse(unique)

    def get_objects(self) -> Any:
        """Return the shaped result with leaf records as named-field records."""
        if self._transformed:
            raise TransformedError('Cannot convert transformed rows to records')
        return self.immerse(lambda rows: [as_record(r) for r in rows])

    def get_func(self, func: Callable[[Any], Any]) -> Any:
        """Return the shaped result with ``func`` applied to every leaf element.

        Unlike transform(), the statement itself is left unchanged.
        """
        return self.immerse(lambda rows: [func(r) for r in rows])

    def to_frame(self, data_loader: Callable[..., Any] | None = None) -> Any:
        """Load the flat result with the connection's data loader.

        By default this is a pandas DataFrame.
        """
        data = self._buffer()
        if self._nesting or self._transformed:
            raise StatementStateError('to_frame() requires an ungrouped, untransformed result')
        loader = data_loader or self.cn.options.data_loader
        return loader(data, self._columns)
