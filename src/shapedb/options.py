"""
Connection options and result data loaders.
"""
import sys
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import pandas as pd
import pyarrow as pa

from shapedb.strategy import get_available_dialects, get_strategy_class
from shapedb.strategy import is_supported_dialect

__all__ = [
    'DatabaseOptions',
    'load_options',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
]


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader.

    Accepts additional keyword arguments for compatibility with other data
    loaders, but doesn't use them.
    """
    if not data:
        return []
    return list(data)


def _empty_dataframe(columns) -> pd.DataFrame:
    """Create empty DataFrame that still carries the column names."""
    return pd.DataFrame(columns=list(columns))


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return _empty_dataframe(columns)
    return pd.DataFrame.from_records(list(data), columns=list(columns))


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """PyArrow-based pandas DataFrame loader.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return _empty_dataframe(columns)

    column_names = list(columns)
    columns_data = [[row[col] for row in data] for col in column_names]
    return pa.table(columns_data, names=column_names).to_pandas(types_mapper=pd.ArrowDtype)


def _scriptname() -> str | None:
    if not sys.argv or not sys.argv[0]:
        return None
    return Path(sys.argv[0]).stem or None


@dataclass
class DatabaseOptions:
    """Options

    supported driver names: `postgresql`, `sqlite`

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Write behaviour:
    - max_insert_rows: Rows per multi-row INSERT statement (default: 1000)
    - multi_row_insert: Batch inserts use multi-row statements (default: True)
    - upsert: save() uses a single upsert statement (default: True)
    - return_insert_ids: insert() returns the generated id (default: False)
    - table_prefix: Replacement for the ``#__`` token in SQL text
    - preprocess: Callable applied to all SQL text, replaces prefix handling
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    check_connection: bool = True
    data_loader: Callable[..., Any] | None = None
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30
    # Write behaviour
    max_insert_rows: int = 1000
    multi_row_insert: bool = True
    upsert: bool = True
    return_insert_ids: bool = False
    table_prefix: str = ''
    preprocess: Callable[[str], str] | None = None

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        self.appname = self.appname or _scriptname() or 'python_console'
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)
        if self.max_insert_rows < 1:
            raise ValueError('max_insert_rows must be a positive integer')
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader

    def __str__(self) -> str:
        # callables are excluded so equal settings share an engine
        params = {k: v for k, v in asdict(self).items() if not callable(v)}
        return ', '.join(f'{k}={v!r}' for k, v in sorted(params.items()))


def load_options(options: 'DatabaseOptions | Mapping[str, Any] | str | None' = None,
                 config: Any | None = None, **kw: Any) -> DatabaseOptions:
    """Build DatabaseOptions from any of the accepted forms.

    Args:
        options: One of
                - DatabaseOptions object (returned as-is, keywords ignored)
                - Dictionary of options
                - Name of an attribute or key on ``config``
                - None, options given entirely as keyword arguments
        config: Configuration object or mapping holding named option sets
        **kw: Keyword arguments overriding the loaded options

    Returns
        DatabaseOptions
    """
    if isinstance(options, DatabaseOptions):
        return options

    if isinstance(options, str):
        if config is None:
            raise ValueError(f'Config object required to load options {options!r}')
        if isinstance(config, Mapping):
            options = config[options]
        else:
            options = getattr(config, options)

    if options is None:
        params = {}
    elif isinstance(options, Mapping):
        params = dict(options)
    else:
        params = {k: v for k, v in vars(options).items() if not k.startswith('_')}

    params.update(kw)
    known = {f.name for f in fields(DatabaseOptions)}
    if unknown := set(params) - known:
        raise ValueError(f'Unknown options: {sorted(unknown)}')
    return DatabaseOptions(**params)
