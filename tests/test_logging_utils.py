# tests/test_logging_utils.py
import logging
import os
import time
from pathlib import Path

import pytest

from tabtk.defaults import settings
from tabtk.logging_utils import ErrorCountHandler, cleanup_old_logs, errors_logged, setup_logging


def make_record(level, msg='test'):
    return logging.LogRecord(name='test', level=level, pathname='', lineno=0, msg=msg, args=(), exc_info=None)


class TestErrorCountHandler:
    """Test ErrorCountHandler class functionality."""

    def test_counts_errors_and_critical(self):
        handler = ErrorCountHandler()
        handler.emit(make_record(logging.ERROR))
        handler.emit(make_record(logging.INFO))
        handler.emit(make_record(logging.CRITICAL))
        assert handler.error_count == 2

    def test_ignores_lower_levels(self):
        handler = ErrorCountHandler()
        handler.emit(make_record(logging.DEBUG))
        handler.emit(make_record(logging.WARNING))
        assert handler.error_count == 0

    def test_unwritable_error_log(self, tmp_path):
        handler = ErrorCountHandler(error_log_path=str(tmp_path / 'missing' / 'job_error.log'))
        handler.emit(make_record(logging.ERROR))
        handler.emit(make_record(logging.ERROR))
        assert handler.error_count == 2
        assert handler.error_log_path is None


@pytest.mark.usefixtures('restore_root_logger')
class TestSetupLogging:
    """Test setup_logging() and errors_logged()."""

    def test_creates_log_file(self, tmp_path):
        main_log, error_log = setup_logging('roster_load', log_dir=str(tmp_path), console=False)
        logging.getLogger('tabtk.test').info("Loading the Earth Kingdom roster")
        assert Path(main_log).name.startswith('roster_load_')
        assert Path(main_log).parent == tmp_path
        assert error_log == main_log[:-len('.log')] + '_error.log'
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert 'Earth Kingdom roster' in Path(main_log).read_text(encoding='utf-8')

    def test_no_errors_returns_none(self, tmp_path):
        main_log, error_log = setup_logging('roster_load', log_dir=str(tmp_path), console=False)
        logging.info("This is just info")
        logging.warning("This is a warning")
        assert errors_logged() is None
        # error log only appears when something goes wrong
        assert not Path(error_log).exists()

    def test_with_errors_split_true(self, tmp_path):
        main_log, error_log = setup_logging('roster_load', log_dir=str(tmp_path), split_errors=True,
                                            console=False)
        logging.error("Bulk load into staging.roster failed")
        result = errors_logged()
        assert result == error_log
        assert Path(result).exists()
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert 'staging.roster failed' in Path(error_log).read_text(encoding='utf-8')

    def test_with_errors_split_false(self, tmp_path):
        main_log, error_log = setup_logging('roster_load', log_dir=str(tmp_path), split_errors=False,
                                            console=False)
        assert error_log is None
        logging.error("This is an error")
        assert errors_logged() == main_log

    def test_single_log_file_name(self, tmp_path):
        with pytest.MonkeyPatch.context() as mp:
            mp.setitem(settings['logging'], 'filename_format', '')
            main_log, _ = setup_logging('nightly', log_dir=str(tmp_path), console=False)
        assert Path(main_log).name == 'nightly.log'

    def test_level(self, tmp_path):
        setup_logging('roster_load', log_dir=str(tmp_path), level='warning', console=False)
        assert logging.getLogger().level == logging.WARNING

    def test_invalid_level(self, tmp_path):
        with pytest.raises(ValueError, match='Invalid log level'):
            setup_logging('roster_load', log_dir=str(tmp_path), level='LOUD', console=False)

    def test_console_handler(self, tmp_path):
        setup_logging('roster_load', log_dir=str(tmp_path), console=True)
        stream_handlers = [h for h in logging.getLogger().handlers
                           if type(h) is logging.StreamHandler]
        assert len(stream_handlers) == 1

    def test_repeat_setup_replaces_handlers(self, tmp_path):
        setup_logging('first', log_dir=str(tmp_path), console=False)
        setup_logging('second', log_dir=str(tmp_path), console=False)
        handlers = logging.getLogger().handlers
        assert len([h for h in handlers if isinstance(h, ErrorCountHandler)]) == 1
        assert len([h for h in handlers if isinstance(h, logging.FileHandler)]) == 1


class TestCleanupOldLogs:

    def test_removes_only_old_logs(self, tmp_path):
        old_log = tmp_path / 'roster_load_20200101_000000.log'
        new_log = tmp_path / 'roster_load_today.log'
        other = tmp_path / 'notes.txt'
        for path in (old_log, new_log, other):
            path.write_text('x', encoding='utf-8')
        forty_days_ago = time.time() - 40 * 86400
        os.utime(old_log, (forty_days_ago, forty_days_ago))
        os.utime(other, (forty_days_ago, forty_days_ago))

        assert cleanup_old_logs(str(tmp_path), retention_days=30, dry_run=True) == [str(old_log)]
        assert old_log.exists()

        assert cleanup_old_logs(str(tmp_path), retention_days=30) == [str(old_log)]
        assert not old_log.exists()
        assert new_log.exists()
        assert other.exists()

    def test_missing_directory(self, tmp_path):
        assert cleanup_old_logs(str(tmp_path / 'nowhere')) == []
