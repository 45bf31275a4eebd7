"""
Unit tests for result shaping on Statement, using canned cursor rows.
"""
import pytest
from shapedb.exceptions import CastError, GroupingError, HandleError
from shapedb.exceptions import IterationError, StatementStateError
from shapedb.exceptions import TransformedError, UniquenessError

CITIES = [
    ('FR', 'Paris', 2100),
    ('FR', 'Lyon', 513),
    ('DE', 'Berlin', 3600),
    ('DE', 'Hamburg', 1800),
    ('IT', 'Rome', 2800),
    ]


@pytest.fixture
def cities(make_statement):
    return make_statement(['country', 'city', 'population'], CITIES)


class TestGet:

    def test_flat_rows(self, cities):
        rows = cities.get()
        assert len(rows) == 5
        assert rows[0] == {'country': 'FR', 'city': 'Paris', 'population': 2100}

    def test_single_column_is_reduced(self, make_statement):
        stmt = make_statement(['a'], [(1,), (2,), (3,)])
        assert stmt.get() == [1, 2, 3]
        assert stmt.get(reduce=False) == [{'a': 1}, {'a': 2}, {'a': 3}]

    def test_empty_result_keeps_columns(self, make_statement):
        stmt = make_statement(['a', 'b'], [])
        assert stmt.get() == []
        assert stmt.column_count == 2
        assert stmt.available_columns == ['a', 'b']

    def test_get_returns_copy(self, cities):
        rows = cities.get()
        rows.clear()
        assert len(cities.get()) == 5


class TestGroup:

    def test_group_one_level(self, cities):
        result = cities.group(['country']).get()
        assert list(result) == ['FR', 'DE', 'IT']
        assert result['FR'] == [{'city': 'Paris', 'population': 2100},
                                {'city': 'Lyon', 'population': 513}]
        assert cities.nesting == 1
        assert cities.available_columns == ['city', 'population']

    def test_group_two_levels_reduces_last_column(self, cities):
        result = cities.group(['country', 'city']).get()
        assert result == {
            'FR': {'Paris': [2100], 'Lyon': [513]},
            'DE': {'Berlin': [3600], 'Hamburg': [1800]},
            'IT': {'Rome': [2800]},
            }

    def test_successive_groups_equal_one_call(self, cities, make_statement):
        other = make_statement(['country', 'city', 'population'], CITIES)
        assert cities.group(['country']).group(['city']).get() == \
            other.group(['country', 'city']).get()

    def test_group_accepts_single_name(self, cities):
        assert list(cities.group('country').get()) == ['FR', 'DE', 'IT']

    def test_group_unique_collapses_to_scalar(self, make_statement):
        stmt = make_statement(['col1', 'col2'], [(123, 234)])
        assert stmt.group(['col1']).get_unique() == {123: 234}

    def test_group_unique_fails_on_duplicates(self, make_statement):
        stmt = make_statement(['col1', 'col2'], [(1, 2), (1, 3)])
        with pytest.raises(UniquenessError):
            stmt.group(['col1']).get_unique()

    def test_group_must_leave_a_column(self, make_statement):
        stmt = make_statement(['a', 'b'], [(1, 2)])
        with pytest.raises(GroupingError, match='more than 1 group operations for 2 columns'):
            stmt.group(['a', 'b'])

    def test_group_budget_counts_previous_groups(self, cities):
        cities.group(['country', 'city'])
        with pytest.raises(GroupingError):
            cities.group(['population'])

    def test_group_unknown_column(self, cities):
        with pytest.raises(GroupingError, match='zip not available'):
            cities.group(['zip'])

    def test_grouped_column_is_no_longer_available(self, cities):
        cities.group(['country'])
        with pytest.raises(GroupingError, match='country not available'):
            cities.group(['country'])

    def test_group_after_transform(self, cities):
        cities.transform(lambda r: r['city'])
        with pytest.raises(GroupingError, match='transformed'):
            cities.group(['country'])

    def test_group_empty_result(self, make_statement):
        stmt = make_statement(['a', 'b'], [])
        assert stmt.group(['a']).get() == {}
        assert stmt.get_unique() == {}

    def test_null_key(self, make_statement):
        stmt = make_statement(['a', 'b'], [(None, 1), (2, 3)])
        assert stmt.group(['a']).get_unique() == {None: 1, 2: 3}


class TestImmerse:

    def test_immerse_defaults_to_leaf_lists(self, cities):
        cities.group(['country'])
        assert cities.immerse(len) == {'FR': 2, 'DE': 2, 'IT': 1}

    def test_immerse_explicit_level(self, cities):
        cities.group(['country', 'city'])
        assert cities.immerse(lambda d: sorted(d), level=1) == {
            'FR': ['Lyon', 'Paris'], 'DE': ['Berlin', 'Hamburg'], 'IT': ['Rome']}


class TestFilterCastMap:

    def test_filter_inside_groups(self, cities):
        result = cities.group(['country']).filter(lambda r: r['population'] > 2000).get()
        assert result == {
            'FR': [{'city': 'Paris', 'population': 2100}],
            'DE': [{'city': 'Berlin', 'population': 3600}],
            'IT': [{'city': 'Rome', 'population': 2800}],
            }

    def test_cast(self, make_statement):
        stmt = make_statement(['a', 'b', 'c'], [('1', '2.5', None)])
        assert stmt.cast({'a': 'int', 'b': float, 'c': 'int'}).get() == [{'a': 1, 'b': 2.5, 'c': None}]

    def test_cast_unknown_column(self, cities):
        with pytest.raises(CastError, match='zip not available'):
            cities.cast({'zip': int})

    def test_cast_unknown_type(self, cities):
        with pytest.raises(CastError, match='Unknown cast type'):
            cities.cast({'city': 'geometry'})

    def test_cast_grouped_column(self, cities):
        cities.group(['country'])
        with pytest.raises(CastError):
            cities.cast({'country': str})

    def test_map(self, cities):
        result = cities.group(['country']).map({'city': str.upper}).get()
        assert [r['city'] for r in result['DE']] == ['BERLIN', 'HAMBURG']

    def test_map_after_transform(self, cities):
        cities.transform(lambda r: r['city'])
        with pytest.raises(TransformedError):
            cities.map({'city': str.upper})

    def test_shaping_does_not_touch_earlier_results(self, cities):
        before = cities.get()
        cities.map({'city': str.upper})
        assert before[0]['city'] == 'Paris'


class TestTransform:

    def test_transform_leaves(self, cities):
        result = cities.group(['country']).transform(lambda r: f"{r['city']}:{r['population']}").get()
        assert result['FR'] == ['Paris:2100', 'Lyon:513']
        assert cities.transformed

    def test_no_reduction_after_transform(self, make_statement):
        stmt = make_statement(['a'], [(1,), (2,)])
        assert stmt.transform(lambda r: r).get() == [{'a': 1}, {'a': 2}]

    def test_unique_after_transform_keeps_element(self, make_statement):
        stmt = make_statement(['k', 'v'], [(1, 'x'), (2, 'y')])
        result = stmt.group(['k']).transform(lambda r: r['v'] * 2).get_unique()
        assert result == {1: 'xx', 2: 'yy'}

    def test_get_objects_refused(self, cities):
        cities.transform(str)
        with pytest.raises(TransformedError):
            cities.get_objects()

    def test_row_record_refused(self, cities):
        cities.transform(str)
        with pytest.raises(TransformedError):
            cities.row_record()

    def test_get_func_is_read_only(self, cities):
        names = cities.get_func(lambda r: r['city'])
        assert names == ['Paris', 'Lyon', 'Berlin', 'Hamburg', 'Rome']
        assert not cities.transformed
        assert cities.get()[0]['city'] == 'Paris'


class TestGetUnique:

    def test_flat_single_value(self, make_statement):
        assert make_statement(['n'], [(42,)]).get_unique() == 42

    def test_flat_single_row(self, make_statement):
        assert make_statement(['a', 'b'], [(1, 2)]).get_unique() == {'a': 1, 'b': 2}

    def test_flat_without_reduction(self, make_statement):
        assert make_statement(['n'], [(42,)]).get_unique(reduce=False) == {'n': 42}

    def test_flat_multiple_rows(self, make_statement):
        with pytest.raises(UniquenessError):
            make_statement(['n'], [(1,), (2,)]).get_unique()

    def test_flat_empty(self, make_statement):
        with pytest.raises(UniquenessError):
            make_statement(['n'], []).get_unique()


class TestGetObjects:

    def test_records(self, cities):
        result = cities.group(['country']).get_objects()
        paris = result['FR'][0]
        assert paris.city == 'Paris'
        assert paris.population == 2100
        with pytest.raises(AttributeError):
            paris.city = 'Lutetia'

    def test_non_identifier_columns(self, make_statement):
        stmt = make_statement(['count(*)'], [(3,)])
        assert stmt.get_objects()[0][0] == 3


CELLS = [(1, 2, 3), (4, 5, 6), (7, 8, 9)]


class TestCell:

    def test_sequence(self, make_statement):
        stmt = make_statement(['a', 'b', 'c'], CELLS)
        values = [stmt.cell() for _ in range(10)]
        assert values == [1, 2, 3, 4, 5, 6, 7, 8, 9, False]

    def test_stays_exhausted(self, make_statement):
        stmt = make_statement(['a', 'b', 'c'], CELLS)
        for _ in range(10):
            stmt.cell()
        assert stmt.cell() is False

    def test_reset_restarts(self, make_statement):
        stmt = make_statement(['a', 'b', 'c'], CELLS)
        first = [stmt.cell() for _ in range(4)]
        again = [stmt.cell(reset=True)] + [stmt.cell() for _ in range(3)]
        assert first == again == [1, 2, 3, 4]

    def test_single_cell(self, make_statement):
        stmt = make_statement(['n'], [(7,)])
        assert stmt.cell() == 7
        assert stmt.cell() is False

    def test_empty(self, make_statement):
        assert make_statement(['n'], []).cell() is False

    def test_cell_after_get(self, make_statement):
        stmt = make_statement(['a', 'b'], [(1, 2), (3, 4)])
        stmt.get()
        assert [stmt.cell() for _ in range(5)] == [1, 2, 3, 4, False]

    def test_cell_after_filter(self, make_statement):
        stmt = make_statement(['a', 'b'], [(1, 2), (3, 4), (5, 6)])
        stmt.filter(lambda r: r['a'] > 1)
        assert stmt.cell() == 3

    def test_refused_after_group(self, cities):
        cities.group(['country'])
        with pytest.raises(IterationError):
            cities.cell()

    def test_refused_after_transform(self, cities):
        cities.transform(str)
        with pytest.raises(IterationError):
            cities.cell()


class TestRow:

    def test_rows_then_false(self, make_statement):
        stmt = make_statement(['a', 'b'], [(1, 2), (3, 4)])
        assert stmt.row() == {'a': 1, 'b': 2}
        assert stmt.row() == {'a': 3, 'b': 4}
        assert stmt.row() is False
        assert stmt.row(reset=True) == {'a': 1, 'b': 2}

    def test_row_after_get(self, make_statement):
        stmt = make_statement(['a', 'b'], [(1, 2), (3, 4)])
        stmt.get()
        assert stmt.row() == {'a': 1, 'b': 2}
        assert stmt.row() == {'a': 3, 'b': 4}

    def test_row_after_cast(self, make_statement):
        stmt = make_statement(['a', 'b'], [('1', 2), ('3', 4)])
        assert stmt.cast({'a': int}).row() == {'a': 1, 'b': 2}

    def test_row_after_execute_restarts(self, make_statement):
        stmt = make_statement(['a'], [(1,), (2,)])
        stmt.row()
        stmt.get()
        stmt.execute()
        stmt.get()
        assert stmt.row() == {'a': 1}

    def test_row_record(self, make_statement):
        stmt = make_statement(['a', 'b'], [(1, 2)])
        rec = stmt.row_record()
        assert (rec.a, rec.b) == (1, 2)
        assert stmt.row_record() is False

    def test_refused_while_iterating_cells(self, make_statement):
        stmt = make_statement(['a', 'b'], [(1, 2)])
        stmt.cell()
        with pytest.raises(IterationError, match='iterating cells'):
            stmt.row()

    def test_refused_after_group(self, cities):
        cities.group(['country'])
        with pytest.raises(IterationError):
            cities.row()


class TestLifecycle:

    def test_execute_resets_shaping(self, cities):
        cities.group(['country']).transform(str)
        cities.execute()
        assert cities.nesting == 0
        assert not cities.transformed
        assert cities.available_columns == ['country', 'city', 'population']
        assert len(cities.get()) == 5

    def test_execute_resets_cell_iteration(self, make_statement):
        stmt = make_statement(['a', 'b', 'c'], CELLS)
        stmt.cell()
        stmt.execute()
        assert stmt.row() == {'a': 1, 'b': 2, 'c': 3}

    def test_to_native_statement(self, make_statement):
        stmt = make_statement(['a'], [(1,)])
        cursor = stmt.to_native_statement()
        assert cursor.fetchall() == [(1,)]
        with pytest.raises(HandleError):
            stmt.get()
        with pytest.raises(HandleError):
            stmt.execute()

    def test_to_native_statement_after_materialize(self, cities):
        cities.get()
        with pytest.raises(HandleError):
            cities.to_native_statement()

    def test_materialize_is_noop_after_surrender(self, cities):
        cities.to_native_statement()
        assert cities.materialize() is cities

    def test_non_query_has_no_columns(self, make_statement):
        stmt = make_statement(None, rowcount=3, sql='DELETE FROM t')
        assert stmt.rowcount == 3
        assert stmt.column_count == 0
        assert stmt.get() == []


class TestToFrame:

    def test_default_loader(self, cities):
        df = cities.to_frame()
        assert list(df.columns) == ['country', 'city', 'population']
        assert len(df) == 5

    def test_custom_loader(self, cities):
        assert cities.to_frame(lambda data, columns: columns) == ['country', 'city', 'population']

    def test_refused_when_grouped(self, cities):
        cities.group(['country'])
        with pytest.raises(StatementStateError):
            cities.to_frame()
