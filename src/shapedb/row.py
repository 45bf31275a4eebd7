"""Read-only record views of result rows."""
from collections import namedtuple
from collections.abc import Mapping
from functools import lru_cache
from typing import Any


@lru_cache(maxsize=256)
def record_type(fields: tuple[str, ...]) -> type:
    """Return a cached namedtuple class for the given column names.

    Column names that are not valid identifiers (``count(*)``) are renamed
    positionally (``_0``, ``_1``, ...).
    """
    return namedtuple('Record', fields, rename=True)


def as_record(row: Mapping[str, Any]) -> tuple:
    """Convert a row mapping to an immutable named-field record.
    """
    return record_type(tuple(row.keys()))(*row.values())
