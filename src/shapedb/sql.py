"""
SQL text assembly and placeholder handling.

Statements are assembled with dialect-neutral placeholders and converted to
the driver's paramstyle in a single tokenizing pass:

    SQL → Tokenize (string literals, casts, placeholders) → Rewrite per dialect

Callers may write positional parameters as ``?`` or ``%s`` and named
parameters as ``:name`` or ``%(name)s``. SQLite receives ``?`` / ``:name``,
PostgreSQL (psycopg) receives ``%s`` / ``%(name)s`` with literal percent
signs escaped.

Statement builders (INSERT/UPDATE/DELETE/COUNT) always emit ``?``.
"""
import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum, auto

from cachetools import LRUCache, cached

# =============================================================================
# Tokenizer
# =============================================================================


class TokenType(Enum):
    """Token types identified during SQL parsing."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    CAST = auto()               # ::type
    POSITIONAL_PH = auto()      # %s or ?
    NAMED_PH = auto()           # :name or %(name)s
    ESCAPED_PERCENT = auto()    # %%
    PERCENT = auto()            # bare %


@dataclass(slots=True)
class Token:
    """Token from SQL parsing."""
    type: TokenType
    text: str
    name: str | None = None


_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*")
    |(?P<cast>::)
    |(?P<pyformat>%\((?P<pname>[^)]+)\)s)
    |(?P<percent_s>%s)
    |(?P<escaped>%%)
    |(?P<percent>%)
    |(?P<qmark>\?)
    |(?P<colon>(?<![\w:]):(?P<cname>[A-Za-z_]\w*))
""", re.VERBOSE)

_HAS_PLACEHOLDER = re.compile(r'%s|\?|%\([^)]+\)s|(?<![\w:]):[A-Za-z_]\w*')


def tokenize_sql(sql: str) -> list[Token]:
    """Parse SQL into tokens in a single pass.

    Text between recognised tokens is preserved as SQL_TEXT so that joining
    every token's text reproduces the input.
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()
        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:start]))

        if match.group('string'):
            token = Token(TokenType.STRING_LITERAL, match.group(0))
        elif match.group('cast'):
            token = Token(TokenType.CAST, '::')
        elif match.group('pyformat'):
            token = Token(TokenType.NAMED_PH, match.group(0), match.group('pname'))
        elif match.group('colon'):
            token = Token(TokenType.NAMED_PH, match.group(0), match.group('cname'))
        elif match.group('percent_s') or match.group('qmark'):
            token = Token(TokenType.POSITIONAL_PH, match.group(0))
        elif match.group('escaped'):
            token = Token(TokenType.ESCAPED_PERCENT, '%%')
        else:
            token = Token(TokenType.PERCENT, '%')

        tokens.append(token)
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:]))

    return tokens


def has_placeholders(sql: str | None) -> bool:
    """Check if SQL has any parameter placeholders outside string literals.
    """
    if not sql or not _HAS_PLACEHOLDER.search(sql):
        return False
    return any(t.type in {TokenType.POSITIONAL_PH, TokenType.NAMED_PH}
               for t in tokenize_sql(sql))


def standardize_placeholders(sql: str, dialect: str = 'postgresql') -> str:
    """Convert placeholders to the paramstyle of ``dialect``.

    Parameters
        sql: SQL query string
        dialect: 'sqlite' (qmark/named) or 'postgresql' (format/pyformat)

    Returns
        SQL with standardized placeholders
    """
    if not sql:
        return sql

    result = []
    for token in tokenize_sql(sql):
        match token.type, dialect:
            case TokenType.POSITIONAL_PH, 'sqlite':
                result.append('?')
            case TokenType.POSITIONAL_PH, 'postgresql':
                result.append('%s')
            case TokenType.NAMED_PH, 'sqlite':
                result.append(f':{token.name}')
            case TokenType.NAMED_PH, 'postgresql':
                result.append(f'%({token.name})s')
            case TokenType.ESCAPED_PERCENT, 'sqlite':
                result.append('%')
            case TokenType.PERCENT, 'postgresql':
                result.append('%%')
            case TokenType.STRING_LITERAL, 'postgresql':
                result.append(token.text.replace('%', '%%'))
            case _:
                result.append(token.text)
    return ''.join(result)


# =============================================================================
# Identifiers and statement builders
# =============================================================================

def quote_identifier(identifier: str, dialect: str = 'postgresql') -> str:
    """Safely quote database identifiers.

    Parameters
        identifier: Table or column name
        dialect: Database dialect

    Returns
        Quoted identifier

    Raises
        ValueError: If dialect is unsupported
    """
    if dialect in {'postgresql', 'sqlite'}:
        return '"' + identifier.replace('"', '""') + '"'

    raise ValueError(f'Unknown dialect: {dialect}')


def make_placeholders(count: int) -> str:
    """Return ``count`` comma separated positional placeholders.
    """
    return ', '.join(['?'] * count)


def build_where_equals(dialect: str, columns: Sequence[str]) -> str:
    """Build ``"a" = ? AND "b" = ?`` for the given columns.
    """
    return ' AND '.join(f'{quote_identifier(c, dialect)} = ?' for c in columns)


@cached(LRUCache(maxsize=256))
def build_insert_sql(dialect: str, table: str, columns: tuple[str, ...],
                     n_rows: int = 1) -> str:
    """Generate an INSERT statement with ``n_rows`` row groups.

    Multi-row statements are built once per (table, columns, n_rows) and
    reused, since chunked inserts request the same shape repeatedly.
    """
    quoted_table = quote_identifier(table, dialect)
    quoted_columns = ', '.join(quote_identifier(col, dialect) for col in columns)
    row_group = f'({make_placeholders(len(columns))})'
    values = ', '.join([row_group] * n_rows)
    return f'INSERT INTO {quoted_table} ({quoted_columns}) VALUES {values}'


def build_update_sql(dialect: str, table: str, columns: Sequence[str],
                     where: str | None = None) -> str:
    """Generate an UPDATE statement setting ``columns``.
    """
    quoted_table = quote_identifier(table, dialect)
    set_clause = ', '.join(f'{quote_identifier(c, dialect)} = ?' for c in columns)
    sql = f'UPDATE {quoted_table} SET {set_clause}'
    if where:
        sql += f' WHERE {where}'
    return sql


def build_delete_sql(dialect: str, table: str, where: str | None = None) -> str:
    """Generate a DELETE statement.
    """
    sql = f'DELETE FROM {quote_identifier(table, dialect)}'
    if where:
        sql += f' WHERE {where}'
    return sql


def build_count_sql(dialect: str, table: str, where: str | None = None) -> str:
    """Generate a ``SELECT COUNT(*)`` statement.
    """
    sql = f'SELECT COUNT(*) FROM {quote_identifier(table, dialect)}'
    if where:
        sql += f' WHERE {where}'
    return sql
