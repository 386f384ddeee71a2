# tests/test_schema_adapter.py
import datetime as dt
from decimal import Decimal

import pytest

from conftest import describe

from tabtk.adapter import ColumnMapping, RowAdapter, ValidatingRowAdapter
from tabtk.connection import ConnectionManager
from tabtk.exceptions import SchemaMismatchError, TypeCoercionError
from tabtk.executor import StatementExecutor
from tabtk.record import record_class
from tabtk.schema import (
    ColumnInfo, DestinationTableSchema, TypeFamily, coerce_value, fetch_table_schema, type_family
)


@pytest.fixture
def schema():
    return DestinationTableSchema('benders', [
        ColumnInfo('id', 'int', nullable=False),
        ColumnInfo('name', 'varchar', nullable=False, max_length=20),
        ColumnInfo('nation', 'varchar', max_length=30),
        ColumnInfo('rank', 'int'),
    ])


def file_rows(headers, *rows):
    """Rows shaped like a reader's records."""
    FileRecord = record_class(headers, 'FileRecord')
    return [FileRecord(*row) for row in rows]


class TestTypeFamily:

    @pytest.mark.parametrize('data_type, family', [
        ('int', TypeFamily.INTEGER),
        ('INTEGER', TypeFamily.INTEGER),
        ('varchar(30)', TypeFamily.TEXT),
        ('nvarchar', TypeFamily.TEXT),
        ('numeric(10, 2)', TypeFamily.DECIMAL),
        ('datetime2', TypeFamily.DATETIME),
        ('timestamp with time zone', TypeFamily.DATETIME),
        ('bit', TypeFamily.BOOLEAN),
        ('date', TypeFamily.DATE),
        ('varbinary', TypeFamily.BINARY),
        ('UNSIGNED BIG INT', TypeFamily.INTEGER),
        ('geography', None),
        (None, None),
    ])
    def test_families(self, data_type, family):
        assert type_family(data_type) == family


class TestCoerceValue:

    def test_integer(self):
        col = ColumnInfo('rank', 'int')
        assert coerce_value('5', col) == 5
        assert coerce_value(' 7 ', col) == 7
        assert coerce_value('5.0', col) == 5
        assert coerce_value(5.0, col) == 5

    def test_integer_rejects_fraction_and_text(self):
        col = ColumnInfo('rank', 'int')
        with pytest.raises(ValueError):
            coerce_value('5.5', col)
        with pytest.raises(ValueError):
            coerce_value('abc', col)

    def test_blank_is_null(self):
        assert coerce_value('', ColumnInfo('rank', 'int')) is None
        assert coerce_value('  ', ColumnInfo('enlisted', 'date')) is None

    def test_blank_text_stays_text(self):
        assert coerce_value('', ColumnInfo('nation', 'varchar')) == ''

    def test_not_null(self):
        with pytest.raises(ValueError, match='NULL not allowed'):
            coerce_value(None, ColumnInfo('id', 'int', nullable=False))
        with pytest.raises(ValueError, match='NULL not allowed'):
            coerce_value('', ColumnInfo('id', 'int', nullable=False))

    def test_text_length(self):
        col = ColumnInfo('name', 'varchar', max_length=4)
        assert coerce_value('Toph', col) == 'Toph'
        with pytest.raises(ValueError, match='longer than 4'):
            coerce_value('Katara', col)

    def test_text_from_other_types(self):
        col = ColumnInfo('note', 'text')
        assert coerce_value(42, col) == '42'
        assert coerce_value(dt.date(2024, 1, 15), col) == '2024-01-15'

    def test_decimal(self):
        col = ColumnInfo('stipend', 'numeric(8, 2)')
        assert coerce_value('12.50', col) == Decimal('12.50')
        with pytest.raises(ValueError):
            coerce_value('twelve', col)

    def test_boolean(self):
        col = ColumnInfo('is_avatar', 'bit')
        assert coerce_value('Y', col) is True
        assert coerce_value('0', col) is False
        assert coerce_value(1, col) is True
        with pytest.raises(ValueError):
            coerce_value('maybe', col)

    def test_dates(self):
        assert coerce_value('2024-01-15', ColumnInfo('enlisted', 'date')) == dt.date(2024, 1, 15)
        assert coerce_value('2024-01-15 08:30', ColumnInfo('ts', 'datetime')) == dt.datetime(2024, 1, 15, 8, 30)
        assert coerce_value('08:30:15', ColumnInfo('t', 'time')) == dt.time(8, 30, 15)
        with pytest.raises(ValueError):
            coerce_value('not a date', ColumnInfo('enlisted', 'date'))

    @pytest.mark.parametrize('text', ['5', '2024-01', 'January', '10:30'])
    def test_partial_date_rejected(self, text):
        with pytest.raises(ValueError):
            coerce_value(text, ColumnInfo('enlisted', 'date'))
        with pytest.raises(ValueError):
            coerce_value(text, ColumnInfo('ts', 'datetime'))

    def test_date_with_time_of_day_rejected(self):
        col = ColumnInfo('enlisted', 'date')
        with pytest.raises(ValueError, match='time of day'):
            coerce_value('2024-01-15 10:30', col)
        with pytest.raises(ValueError, match='time of day'):
            coerce_value(dt.datetime(2024, 1, 15, 10, 30), col)
        assert coerce_value('2024-01-15 00:00:00', col) == dt.date(2024, 1, 15)
        assert coerce_value(dt.datetime(2024, 1, 15), col) == dt.date(2024, 1, 15)

    def test_time_without_time_of_day_rejected(self):
        col = ColumnInfo('sunrise', 'time')
        with pytest.raises(ValueError, match='no time of day'):
            coerce_value('2024-01-15', col)
        assert coerce_value('00:00', col) == dt.time(0, 0)
        assert coerce_value('2024-01-15 06:45', col) == dt.time(6, 45)

    def test_date_only_string_fills_midnight(self):
        assert coerce_value('2024-01-15', ColumnInfo('ts', 'datetime')) == dt.datetime(2024, 1, 15)

    def test_unknown_type_passes_through(self):
        marker = object()
        assert coerce_value(marker, ColumnInfo('shape', 'geography')) is marker


class TestDestinationTableSchema:

    def test_find(self, schema):
        assert schema.find('name').name == 'name'
        assert schema.find('NAME').name == 'name'
        assert schema.find(' Nation ').name == 'nation'
        assert schema.find('element') is None

    def test_names(self, schema):
        assert schema.names == ['id', 'name', 'nation', 'rank']
        assert len(schema) == 4


class TestFetchTableSchema:

    def test_sqlite(self, sqlite_profile):
        with ConnectionManager(sqlite_profile) as manager:
            executor = StatementExecutor(manager)
            schema = fetch_table_schema(executor, 'benders')
        assert schema.names == ['id', 'name', 'nation', 'rank']
        id_col, name_col = schema.columns[0], schema.columns[1]
        assert not id_col.nullable
        assert id_col.type_family == TypeFamily.INTEGER
        assert name_col.max_length == 20
        assert schema.columns[2].nullable

    def test_missing_table(self, sqlite_profile):
        with ConnectionManager(sqlite_profile) as manager:
            executor = StatementExecutor(manager)
            with pytest.raises(SchemaMismatchError, match='table not found'):
                fetch_table_schema(executor, 'sky_bison')
            # schema discovery releases the statement slot
            assert not executor.is_busy()

    def test_information_schema_query(self, fake_driver, server_profile):
        fake_driver.description = describe('column_name', 'data_type', 'is_nullable', 'character_maximum_length')
        fake_driver.rows = [('id', 'int', 'NO', None), ('name', 'nvarchar', 'YES', 40)]
        executor = StatementExecutor(ConnectionManager(server_profile))
        schema = fetch_table_schema(executor, 'dbo.benders')
        sql, params = fake_driver.connections[0].cursors[0].execute.call_args[0]
        assert 'information_schema.columns' in sql
        assert params == ('benders', 'dbo')
        assert schema.columns == [ColumnInfo('id', 'int', False, None), ColumnInfo('name', 'nvarchar', True, 40)]


class TestRowAdapter:

    def test_name_matching_reorders(self, schema):
        rows = file_rows(['Rank', 'Nation', 'Name', 'ID'], ['10', 'Air Nomads', 'Aang', '1'])
        assert list(RowAdapter(rows, schema)) == [('1', 'Aang', 'Air Nomads', '10')]

    def test_falls_back_to_position(self, schema):
        rows = file_rows(['a', 'b', 'c', 'd'], ['1', 'Aang', 'Air Nomads', '10'])
        assert list(RowAdapter(rows, schema)) == [('1', 'Aang', 'Air Nomads', '10')]

    def test_positional_for_plain_sequences(self, schema):
        assert list(RowAdapter([(1, 'Aang')], schema)) == [(1, 'Aang', None, None)]

    def test_dict_rows(self, schema):
        rows = [{'name': 'Sokka', 'id': 5, 'rank': 1, 'nation': 'Water Tribe'}]
        assert list(RowAdapter(rows, schema)) == [(5, 'Sokka', 'Water Tribe', 1)]

    def test_name_matching_required(self, schema):
        rows = file_rows(['id', 'name', 'element'], ['1', 'Aang', 'air'])
        with pytest.raises(SchemaMismatchError) as exc_info:
            list(RowAdapter(rows, schema, positional=False))
        assert exc_info.value.column == 'nation'
        assert exc_info.value.table == 'benders'

    def test_column_mappings_subset(self, schema):
        rows = file_rows(['bender_name', 'bender_id', 'element'], ['Toph', '3', 'earth'])
        adapter = RowAdapter(rows, schema, column_mappings={'bender_id': 'id', 'bender_name': 'name'})
        assert adapter.column_names == ['id', 'name']
        assert list(adapter) == [('3', 'Toph')]

    def test_column_mappings_by_ordinal(self, schema):
        adapter = RowAdapter([('earth', 'Toph', 3)], schema,
                             column_mappings=[ColumnMapping(2, 'id'), ColumnMapping(1, 'name')])
        assert list(adapter) == [(3, 'Toph')]

    def test_mapping_to_unknown_column(self, schema):
        with pytest.raises(SchemaMismatchError, match="'element'"):
            RowAdapter([], schema, column_mappings=[('element', 'element')])

    def test_mapping_from_missing_field(self, schema):
        rows = file_rows(['id'], ['1'])
        adapter = RowAdapter(rows, schema, column_mappings={'id': 'id', 'bender_name': 'name'})
        with pytest.raises(SchemaMismatchError, match="source field 'bender_name' not found"):
            list(adapter)

    def test_requires_schema(self):
        with pytest.raises(ValueError, match='bind'):
            next(RowAdapter([(1,)]))

    def test_close_closes_source(self, schema):
        class Source(list):
            closed = False

            def close(self):
                self.closed = True
        source = Source([(1, 'Aang', None, None)])
        with RowAdapter(source, schema) as adapter:
            list(adapter)
        assert source.closed


class TestValidatingRowAdapter:

    def test_converts_values(self, schema):
        rows = file_rows(['id', 'name', 'nation', 'rank'], ['5', 'Toph', 'Earth Kingdom', ''])
        assert list(ValidatingRowAdapter(rows, schema)) == [(5, 'Toph', 'Earth Kingdom', None)]

    def test_bad_value_names_row_and_column(self, schema):
        rows = file_rows(['id', 'name', 'nation', 'rank'],
                         ['1', 'Aang', 'Air Nomads', '10'],
                         ['abc', 'Toph', 'Earth Kingdom', '10'])
        adapter = ValidatingRowAdapter(rows, schema)
        assert next(adapter) == (1, 'Aang', 'Air Nomads', 10)
        with pytest.raises(TypeCoercionError) as exc_info:
            next(adapter)
        error = exc_info.value
        assert error.row_index == 2
        assert error.column == 'id'
        assert error.value == 'abc'
        assert error.target_type == 'int'

    def test_name_matching_by_default(self, schema):
        rows = file_rows(['a', 'b', 'c', 'd'], ['1', 'Aang', 'Air Nomads', '10'])
        with pytest.raises(SchemaMismatchError):
            list(ValidatingRowAdapter(rows, schema))

    def test_too_long_text(self, schema):
        rows = [{'id': 1, 'name': 'Avatar Kyoshi of the Earth Kingdom', 'nation': None, 'rank': 1}]
        with pytest.raises(TypeCoercionError, match='longer than 20'):
            list(ValidatingRowAdapter(rows, schema))

    def test_partial_date_names_row_and_column(self):
        schema = DestinationTableSchema('recruits', [
            ColumnInfo('id', 'int', nullable=False),
            ColumnInfo('enlisted', 'date'),
        ])
        rows = file_rows(['id', 'enlisted'], ['10', '2024-03-01'], ['11', '5'])
        adapter = ValidatingRowAdapter(rows, schema)
        assert next(adapter) == (10, dt.date(2024, 3, 1))
        with pytest.raises(TypeCoercionError) as exc_info:
            next(adapter)
        assert exc_info.value.row_index == 2
        assert exc_info.value.column == 'enlisted'
        assert exc_info.value.value == '5'
