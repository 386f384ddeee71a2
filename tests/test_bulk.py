# tests/test_bulk.py
import datetime as dt
from decimal import Decimal

import openpyxl
import pytest

from conftest import table_rows
from tabtk.bulk import BulkCopyChannel, BulkLoader
from tabtk.connection import ConnectionManager
from tabtk.exceptions import BulkLoadError, NotConnectedError, SchemaMismatchError, TypeCoercionError
from tabtk.executor import StatementExecutor
from tabtk.sources import DelimitedFileSource, WorksheetSource


@pytest.fixture
def executor(sqlite_profile):
    manager = ConnectionManager(sqlite_profile)
    yield StatementExecutor(manager)
    manager.terminate()


class TestBulkCopyChannel:
    """Test the batched insert path."""

    def test_insert_statement(self, fake_driver, server_profile):
        executor = StatementExecutor(ConnectionManager(server_profile))
        with BulkCopyChannel(executor, 'benders', ['id', 'name', 'Home Nation']) as channel:
            assert channel.insert_sql == 'INSERT INTO benders (id, name, "Home Nation") VALUES (?, ?, ?)'

    def test_single_row_and_batches(self, fake_driver, server_profile):
        executor = StatementExecutor(ConnectionManager(server_profile))
        channel = BulkCopyChannel(executor, 'benders', ['id', 'name'])
        cursor = fake_driver.connections[0].cursors[-1]
        assert channel.write([(1, 'Aang')]) == 1
        cursor.execute.assert_called_once_with(channel.insert_sql, (1, 'Aang'))
        assert channel.write([(2, 'Katara'), (3, 'Sokka')]) == 2
        cursor.executemany.assert_called_once_with(channel.insert_sql, [(2, 'Katara'), (3, 'Sokka')])
        assert channel.write([]) == 0
        assert channel.rows_sent == 3
        channel.close()

    def test_timeout_raised_and_restored(self, fake_driver, server_profile):
        executor = StatementExecutor(ConnectionManager(server_profile))
        connection = fake_driver.connections[0]
        assert connection.timeout == 2000
        channel = BulkCopyChannel(executor, 'benders', ['id'], timeout=9000)
        assert connection.timeout == 9000
        channel.close()
        channel.close()
        assert connection.timeout == 2000
        assert channel.closed

    def test_write_after_close(self, fake_driver, server_profile):
        executor = StatementExecutor(ConnectionManager(server_profile))
        channel = BulkCopyChannel(executor, 'benders', ['id'])
        channel.close()
        with pytest.raises(ValueError, match='closed'):
            channel.write([(1,)])

    def test_abort_rolls_back(self, fake_driver, server_profile):
        executor = StatementExecutor(ConnectionManager(server_profile))
        with pytest.raises(RuntimeError):
            with BulkCopyChannel(executor, 'benders', ['id']):
                raise RuntimeError('fire nation attack')
        assert fake_driver.connections[0].rollback_count == 1

    def test_rejects_dangerous_identifiers(self, fake_driver, server_profile):
        executor = StatementExecutor(ConnectionManager(server_profile))
        with pytest.raises(ValueError, match='dangerous'):
            BulkCopyChannel(executor, 'benders; DROP TABLE benders', ['id'])


class TestBulkLoader:
    """Test complete loads into SQLite."""

    def test_load_delimited_file(self, executor, benders_db, recruits_file):
        source = DelimitedFileSource(recruits_file)
        count = BulkLoader(executor).load(source, 'recruits')
        assert count == 3
        assert not source.is_open
        rows = table_rows(benders_db, "SELECT id, name, nation, enlisted, stipend FROM recruits ORDER BY id")
        assert rows[0] == (10, 'Haru', 'Earth Kingdom', '2024-03-01', 12.5)
        assert rows[2] == (12, 'Teo', 'Air Nomads', None, None)

    def test_small_batches(self, executor, benders_db, recruits_file):
        count = BulkLoader(executor, batch_size=2).load(DelimitedFileSource(recruits_file), 'recruits')
        assert count == 3
        assert table_rows(benders_db, "SELECT COUNT(*) FROM recruits") == [(3,)]

    def test_headerless_file_maps_by_position(self, executor, benders_db, tmp_path):
        path = tmp_path / 'recruits_noheader.txt'
        path.write_text("20\tMeng\tEarth Kingdom\t2024-04-01\t1.25\n", encoding='utf-8')
        source = DelimitedFileSource(path, delimiter='\t', has_header=False)
        assert BulkLoader(executor).load(source, 'recruits') == 1
        assert table_rows(benders_db, "SELECT name FROM recruits") == [('Meng',)]

    def test_column_mappings(self, executor, benders_db, tmp_path):
        path = tmp_path / 'villagers.txt'
        path.write_text("villager|number|home\nJet|30|Freedom Fighters\n", encoding='utf-8')
        count = BulkLoader(executor).load(DelimitedFileSource(path), 'recruits',
                                          column_mappings={'number': 'id', 'villager': 'name'})
        assert count == 1
        assert table_rows(benders_db, "SELECT id, name, nation FROM recruits") == [(30, 'Jet', None)]

    def test_bad_value_aborts_load(self, executor, benders_db, tmp_path):
        path = tmp_path / 'bad.txt'
        path.write_text("id|name\n40|Azula\nforty-one|Mai\n", encoding='utf-8')
        source = DelimitedFileSource(path)
        with pytest.raises(BulkLoadError) as exc_info:
            BulkLoader(executor).load(source, 'recruits')
        error = exc_info.value
        assert error.table == 'recruits'
        assert isinstance(error.cause, TypeCoercionError)
        assert isinstance(error.__cause__, TypeCoercionError)
        assert error.cause.row_index == 2
        # source released and nothing committed
        assert not source.is_open
        assert table_rows(benders_db, "SELECT COUNT(*) FROM recruits") == [(0,)]
        assert not executor.is_busy()

    def test_failure_after_rows_sent(self, executor, benders_db, tmp_path):
        path = tmp_path / 'dupes.txt'
        path.write_text("id|name|nation|rank\n5|Ty Lee|Fire Nation|3\n5|Ty Lee|Fire Nation|3\n",
                        encoding='utf-8')
        source = DelimitedFileSource(path)
        with pytest.raises(BulkLoadError) as exc_info:
            BulkLoader(executor, batch_size=1).load(source, 'benders')
        assert exc_info.value.rows_sent == 1
        assert exc_info.value.__cause__ is exc_info.value.cause
        assert not isinstance(exc_info.value.cause, TypeCoercionError)
        assert not source.is_open
        assert not executor.is_busy()
        assert table_rows(benders_db, "SELECT COUNT(*) FROM benders WHERE id = 5") == [(0,)]

    def test_unvalidated_load(self, executor, benders_db, tmp_path):
        path = tmp_path / 'raw.txt'
        path.write_text("a|b\n50|Hakoda\n", encoding='utf-8')
        count = BulkLoader(executor).load(DelimitedFileSource(path), 'recruits',
                                          column_mappings=[('a', 'id'), ('b', 'name')], validate=False)
        assert count == 1

    def test_missing_table(self, executor, recruits_file):
        source = DelimitedFileSource(recruits_file)
        with pytest.raises(BulkLoadError) as exc_info:
            BulkLoader(executor).load(source, 'sky_bison')
        assert isinstance(exc_info.value.cause, SchemaMismatchError)
        assert exc_info.value.rows_sent == 0
        assert not source.is_open

    def test_not_connected(self, recruits_file):
        source = DelimitedFileSource(recruits_file)
        loader = BulkLoader(StatementExecutor(ConnectionManager()))
        with pytest.raises(NotConnectedError):
            loader.load(source, 'recruits')
        assert not source.is_open

    def test_load_worksheet(self, executor, benders_db, tmp_path):
        path = tmp_path / 'recruits.xlsx'
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = 'Recruits'
        ws.append(['ID', 'Name', 'Nation', 'Enlisted', 'Stipend'])
        ws.append([60, 'Yue', 'Water Tribe', dt.datetime(2024, 5, 1), 20.5])
        ws.append([None, None, None, None, None])
        ws.append([61, 'Pakku', 'Water Tribe', None, None])
        wb.save(path)

        source = WorksheetSource(path, 'Recruits')
        assert BulkLoader(executor).load(source, 'recruits') == 2
        assert not source.is_open
        rows = table_rows(benders_db, "SELECT id, name, enlisted, stipend FROM recruits ORDER BY id")
        assert rows == [(60, 'Yue', '2024-05-01', 20.5), (61, 'Pakku', None, None)]

    def test_invalid_batch_size(self, executor):
        with pytest.raises(ValueError):
            BulkLoader(executor, batch_size=-1)
