import pytest
import shapedb as db
from shapedb.exceptions import ConnectionFailure, IntegrityViolationError
from shapedb.exceptions import ValidationError


def test_query_rows(sqlite_conn):
    """Test basic SELECT with SQLite"""
    result = db.query(sqlite_conn, 'SELECT name, value FROM test_table ORDER BY value').get()
    assert result == [
        {'name': 'Alice', 'value': 10},
        {'name': 'Bob', 'value': 20},
        {'name': 'Charlie', 'value': 30},
        ]


def test_query_single_column(sqlite_conn):
    names = sqlite_conn.query('SELECT name FROM test_table ORDER BY name').get()
    assert names == ['Alice', 'Bob', 'Charlie']


def test_query_lookup_table(sqlite_conn):
    result = sqlite_conn.query('SELECT name, value FROM test_table').group(['name']).get_unique()
    assert result == {'Alice': 10, 'Bob': 20, 'Charlie': 30}


def test_query_cells(sqlite_conn):
    stmt = sqlite_conn.query('SELECT name, value FROM test_table ORDER BY value')
    assert [stmt.cell() for _ in range(7)] == ['Alice', 10, 'Bob', 20, 'Charlie', 30, False]


def test_positional_parameters(sqlite_conn):
    stmt = sqlite_conn.query('SELECT value FROM test_table WHERE name = ?', 'Bob')
    assert stmt.get_unique() == 20

    stmt = sqlite_conn.query('SELECT value FROM test_table WHERE name = %s', ['Charlie'])
    assert stmt.get_unique() == 30


def test_named_parameters(sqlite_conn):
    stmt = sqlite_conn.query('SELECT value FROM test_table WHERE name = :name', {'name': 'Bob'})
    assert stmt.cell() == 20

    stmt = sqlite_conn.query('SELECT value FROM test_table WHERE name = %(name)s', {'name': 'Alice'})
    assert stmt.cell() == 10


def test_reexecute_prepared(sqlite_conn):
    stmt = db.prepare(sqlite_conn, 'SELECT value FROM test_table WHERE name = ?')
    assert stmt.bind(['Alice']).execute().cell() == 10
    assert stmt.bind(['Bob']).execute().cell() == 20


def test_percent_literal_without_parameters(sqlite_conn):
    stmt = sqlite_conn.query("SELECT name FROM test_table WHERE name LIKE 'A%'")
    assert stmt.get() == ['Alice']


def test_execute_returns_rowcount(sqlite_conn):
    assert db.execute(sqlite_conn, 'UPDATE test_table SET value = value + 1') == 3
    assert db.execute(sqlite_conn, 'DELETE FROM test_table WHERE name = ?', 'Bob') == 1


def test_insert(sqlite_conn):
    stmt = db.insert(sqlite_conn, 'test_table', {'name': 'Diana', 'value': 40})
    assert stmt.rowcount == 1
    assert sqlite_conn.query("SELECT value FROM test_table WHERE name = 'Diana'").cell() == 40


def test_insert_requires_columns(sqlite_conn):
    with pytest.raises(ValidationError):
        db.insert(sqlite_conn, 'test_table', {})


def test_insert_returns_id(sqlite_conn_factory):
    cn = sqlite_conn_factory(return_insert_ids=True)
    assert db.insert(cn, 'test_table', {'name': 'Diana', 'value': 40}) == 4
    assert db.last_insert_id(cn) == 4


def test_unique_violation(sqlite_conn):
    with pytest.raises(IntegrityViolationError) as exc_info:
        db.insert(sqlite_conn, 'test_table', {'name': 'Alice', 'value': 1})
    assert exc_info.value.__cause__ is not None
    assert db.count(sqlite_conn, 'test_table') == 3


def test_update(sqlite_conn):
    stmt = db.update(sqlite_conn, 'test_table', {'value': 25}, 'name = ?', ['Bob'])
    assert stmt.rowcount == 1
    assert sqlite_conn.query("SELECT value FROM test_table WHERE name = 'Bob'").cell() == 25


def test_delete(sqlite_conn):
    assert db.delete(sqlite_conn, 'test_table', 'value > ?', [15]).rowcount == 2
    assert db.delete(sqlite_conn, 'test_table').rowcount == 1


def test_count(sqlite_conn):
    assert db.count(sqlite_conn, 'test_table') == 3
    assert db.count(sqlite_conn, 'test_table', 'value > ?', [15]) == 2
    assert db.count(sqlite_conn, 'test_table', 'name = ?', ['Nobody']) == 0


def test_table_prefix(sqlite_conn_factory):
    cn = sqlite_conn_factory(table_prefix='test_')
    assert cn.query('SELECT COUNT(*) FROM #__table').cell() == 3


def test_preprocess_hook(sqlite_conn_factory):
    cn = sqlite_conn_factory(preprocess=lambda sql: sql.replace('{people}', 'test_table'),
                             table_prefix='ignored_')
    assert cn.query('SELECT name FROM {people} WHERE value = ?', 10).get() == ['Alice']


def test_query_counts_calls(sqlite_conn):
    before = sqlite_conn.calls
    sqlite_conn.query('SELECT 1')
    sqlite_conn.query('SELECT 2')
    assert sqlite_conn.calls == before + 2


def test_native_statement(sqlite_conn):
    cursor = sqlite_conn.query('SELECT name FROM test_table ORDER BY value').to_native_statement()
    assert cursor.fetchone() == ('Alice',)


def test_file_connection_persists(sqlite_file_conn):
    """Writes outside a transaction are committed immediately"""
    db.insert(sqlite_file_conn, 'test_table', {'name': 'Diana', 'value': 40})
    options = sqlite_file_conn.options
    with db.connect(options) as other:
        assert db.count(other, 'test_table') == 4


def test_isconnection(sqlite_conn):
    assert db.isconnection(sqlite_conn)
    assert not db.isconnection(object())


def test_connect_failure(tmp_path):
    with pytest.raises(ConnectionFailure):
        db.connect(drivername='sqlite', database=str(tmp_path / 'missing' / 'test.db'))
