"""
Type handling for bound parameters and result casting.

This module provides:
- TypeTag: bind-type tags handed to the driver with each value
- infer_type / get_types: map runtime values to a TypeTag
- resolve_cast: turn a cast type into a coercion callable
"""
import decimal
import logging
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)


class TypeTag(Enum):
    """Bind type of a parameter value.
    """
    BOOL = 'bool'
    INT = 'int'
    STRING = 'string'
    NULL = 'null'

    def adapt(self, value: Any) -> Any:
        """Convert a value to what the driver receives for this tag.
        """
        if value is None or value is pd.NA:
            return None
        if self is TypeTag.NULL:
            # tag sampled from a NULL, the value decides
            return infer_type(value).adapt(value)
        if self is TypeTag.BOOL and isinstance(value, (int, np.bool_, *NUMPY_INT_TYPES)):
            return bool(value)
        if self is TypeTag.INT and isinstance(value, (int, np.bool_, *NUMPY_INT_TYPES)):
            return int(value)
        # numeric-to-string safety for non-integral numbers
        if isinstance(value, (float, decimal.Decimal, *NUMPY_FLOAT_TYPES)):
            return str(value)
        return value


def infer_type(value: Any) -> TypeTag:
    """Infer the bind type for a single value.

    Total over all inputs: anything not recognised binds as a string.
    """
    if value is None or value is pd.NA:
        return TypeTag.NULL
    if isinstance(value, bool | np.bool_):
        return TypeTag.BOOL
    if isinstance(value, (int, *NUMPY_INT_TYPES)):
        return TypeTag.INT
    return TypeTag.STRING


def get_types(values: Iterable[Any]) -> list[TypeTag]:
    """Return the inferred bind types for every element of ``values``.
    """
    return [infer_type(v) for v in values]


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in {'', '0', 'false', 'f', 'no', 'n'}
    return bool(value)


CAST_NAMES: dict[str, Callable[[Any], Any]] = {
    'int': int,
    'integer': int,
    'float': float,
    'double': float,
    'str': str,
    'string': str,
    'bool': _to_bool,
    'boolean': _to_bool,
    'decimal': decimal.Decimal,
    }


def resolve_cast(type_: str | type | Callable[[Any], Any]) -> Callable[[Any], Any]:
    """Resolve a cast type to a coercion callable.

    Accepts a type name (``'int'``, ``'double'``, ...), a Python type or any
    one-argument callable. ``bool`` is mapped to a string-aware coercion so
    that ``'0'`` and ``'false'`` become False.

    The returned callable leaves None untouched, preserving SQL NULL.
    """
    if isinstance(type_, str):
        try:
            func = CAST_NAMES[type_.lower()]
        except KeyError:
            raise ValueError(f'Unknown cast type: {type_}') from None
    elif type_ is bool:
        func = _to_bool
    elif callable(type_):
        func = type_
    else:
        raise ValueError(f'Cannot cast to {type_!r}')

    def cast(value: Any) -> Any:
        if value is None:
            return None
        return func(value)

    return cast
