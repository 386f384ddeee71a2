# tests/test_cli.py
from unittest.mock import patch

import openpyxl
import pytest
from cryptography.fernet import Fernet

from conftest import TEST_KEY, table_rows
from tabtk.cli import build_parser, main


@pytest.fixture
def cli_config(tmp_path, benders_db):
    """Config file naming the benders database ember_island."""
    path = tmp_path / 'cli.yml'
    path.write_text(f"connections:\n  ember_island:\n    type: sqlite\n    catalog: '{benders_db}'\n",
                    encoding='utf-8')
    return str(path)


class TestParser:

    def test_export_defaults(self):
        args = build_parser().parse_args(['export', 'ember_island', '-q', 'SELECT 1', 'out.txt'])
        assert args.command == 'export'
        assert args.delimiter == 'pipe'
        assert args.query == 'SELECT 1'
        assert args.file is None

    def test_export_needs_query_or_file(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['export', 'ember_island', 'out.txt'])
        with pytest.raises(SystemExit):
            build_parser().parse_args(['export', 'ember_island', '-q', 'SELECT 1', '-f', 'q.sql', 'out.txt'])

    def test_load_options(self):
        args = build_parser().parse_args(['load', 'ember_island', 'in.tsv', 'recruits', '-d', 'tab',
                                          '--no-header', '--no-validate'])
        assert args.delimiter == 'tab'
        assert args.no_header and args.no_validate

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestKeyCommands:

    def test_generate_key(self, capsys):
        assert main(['generate-key']) == 0
        key = capsys.readouterr().out.strip()
        Fernet(key.encode())

    def test_encrypt_password(self, capsys):
        assert main(['encrypt-password', 'sozins_comet']) == 0
        encrypted = capsys.readouterr().out.strip()
        assert Fernet(TEST_KEY.encode()).decrypt(encrypted.encode()) == b'sozins_comet'

    def test_store_key_exit_codes(self):
        with patch('tabtk.cli.config.store_key', return_value=True) as store:
            assert main(['store-key', '--force']) == 0
        store.assert_called_once_with(None, force=True)
        with patch('tabtk.cli.config.store_key', return_value=False):
            assert main(['store-key']) == 1

    def test_drivers(self, capsys):
        assert main(['drivers']) == 0
        assert 'sqlite3' in capsys.readouterr().out


class TestTransferCommands:

    def test_export(self, cli_config, tmp_path, capsys):
        out = tmp_path / 'benders.txt'
        code = main(['--config', cli_config, 'export', 'ember_island',
                     '-q', 'SELECT id, name FROM benders ORDER BY id', str(out)])
        assert code == 0
        assert out.read_text(encoding='utf-8').splitlines()[:2] == ['id|name', '1|Aang']
        assert 'Wrote 3 rows' in capsys.readouterr().out

    def test_export_query_file_as_tab(self, cli_config, tmp_path):
        query_file = tmp_path / 'masters.sql'
        query_file.write_text("SELECT name FROM benders WHERE rank = 10 ORDER BY id", encoding='utf-8')
        out = tmp_path / 'masters.tsv'
        assert main(['-c', cli_config, 'export', 'ember_island', '-f', str(query_file), str(out),
                     '-d', 'tab']) == 0
        assert out.read_text(encoding='utf-8') == "name\nAang\nToph\n"

    def test_export_sheet(self, cli_config, tmp_path):
        workbook = tmp_path / 'benders.xlsx'
        args = ['-c', cli_config, 'export-sheet', 'ember_island', '-q', 'SELECT id, name FROM benders',
                str(workbook), 'Benders']
        assert main(args) == 0
        # second run opens the existing workbook and replaces the sheet
        assert main(args) == 0
        wb = openpyxl.load_workbook(workbook)
        assert wb.sheetnames == ['Benders']
        assert wb['Benders'].max_row == 4

    def test_load_file(self, cli_config, benders_db, recruits_file, capsys):
        assert main(['-c', cli_config, 'load', 'ember_island', str(recruits_file), 'recruits']) == 0
        assert 'Loaded 3 rows into recruits' in capsys.readouterr().out
        assert table_rows(benders_db, "SELECT COUNT(*) FROM recruits") == [(3,)]

    def test_load_sheet(self, cli_config, benders_db, tmp_path):
        path = tmp_path / 'recruits.xlsx'
        wb = openpyxl.Workbook()
        wb.active.title = 'New'
        wb.active.append(['id', 'name', 'nation', 'enlisted', 'stipend'])
        wb.active.append([80, 'Hope', 'Water Tribe', None, None])
        wb.save(path)
        assert main(['-c', cli_config, 'load', 'ember_island', str(path), 'recruits', '--sheet', 'New']) == 0
        assert table_rows(benders_db, "SELECT name FROM recruits") == [('Hope',)]

    def test_failed_load_exit_code(self, cli_config, tmp_path, capsys):
        path = tmp_path / 'bad.txt'
        path.write_text("id|name\nnot-a-number|Mai\n", encoding='utf-8')
        assert main(['-c', cli_config, 'load', 'ember_island', str(path), 'recruits']) == 1
        assert "Bulk load into 'recruits' failed" in capsys.readouterr().err

    def test_unknown_connection(self, cli_config, tmp_path, capsys):
        code = main(['-c', cli_config, 'export', 'omashu', '-q', 'SELECT 1', str(tmp_path / 'x.txt')])
        assert code == 1
        assert "Connection 'omashu' not found" in capsys.readouterr().err

    def test_missing_config_file(self, tmp_path, capsys):
        assert main(['-c', str(tmp_path / 'nope.yml'), 'drivers']) == 1
        assert 'Config file not found' in capsys.readouterr().err

    @pytest.mark.usefixtures('restore_root_logger')
    def test_log_option_writes_log_file(self, cli_config, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        (tmp_path / 'bad.txt').write_text("id|name\nnot-a-number|Mai\n", encoding='utf-8')
        assert main(['-c', cli_config, '--log', 'cli_job', 'load', 'ember_island', 'bad.txt', 'recruits']) == 1
        logs = list((tmp_path / 'logs').glob('cli_job_*.log'))
        assert any(p.name.endswith('_error.log') for p in logs)
        assert 'Errors were logged to' in capsys.readouterr().err
