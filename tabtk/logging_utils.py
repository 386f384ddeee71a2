# tabtk/logging_utils.py
"""
Logging setup for scheduled transfer jobs.

Jobs write timestamped log files named ``job_name_YYYYMMDD_HHMMSS.log`` and,
only when something goes wrong, a matching ``_error.log`` that a scheduler or
wrapper script can look for.
"""

import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from .defaults import settings

logger = logging.getLogger(__name__)

# Module-level state for error tracking
_error_handler: Optional['ErrorCountHandler'] = None
_main_log_path: Optional[str] = None
_error_log_path: Optional[str] = None


class ErrorCountHandler(logging.Handler):
    """Counts ERROR and CRITICAL records and opens the error log on the first one."""

    def __init__(self, error_log_path: Optional[str] = None, formatter: Optional[logging.Formatter] = None):
        super().__init__(level=logging.ERROR)
        self.error_count = 0
        self.error_log_path = error_log_path
        self.formatter = formatter
        self._error_file_handler: Optional[logging.FileHandler] = None

    def emit(self, record):
        if record.levelno < logging.ERROR:
            return
        self.error_count += 1
        if self.error_log_path and self._error_file_handler is None:
            try:
                handler = logging.FileHandler(self.error_log_path, encoding='utf-8')
            except OSError as e:
                # only report once
                self.error_log_path = None
                logger.warning(f"Failed to create error log file: {e}")
                return
            handler.setLevel(logging.ERROR)
            if self.formatter:
                handler.setFormatter(self.formatter)
            self._error_file_handler = handler
            # added after this handler, so the root logger still passes it the current record
            logging.getLogger().addHandler(handler)

    def close(self):
        if self._error_file_handler is not None:
            logging.getLogger().removeHandler(self._error_file_handler)
            self._error_file_handler.close()
            self._error_file_handler = None
        super().close()


def _logging_settings() -> dict:
    return dict(settings.get('logging') or {})


def setup_logging(
    script_name: Optional[str] = None,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    split_errors: Optional[bool] = None,
    console: Optional[bool] = None
) -> Tuple[str, Optional[str]]:
    """
    Configure root logging for a transfer job.

    Creates log files with pattern: {script_name}_{datetime}.log and, when
    split_errors is on, {script_name}_{datetime}_error.log on the first error.
    Defaults come from ``settings['logging']``, which the ``logging`` section of
    tabtk.yml overrides.

    Args:
        script_name: Base name for log files (defaults to the running script's name)
        log_dir: Directory for log files (default './logs')
        level: DEBUG, INFO, WARNING or ERROR (default 'INFO')
        split_errors: Create a separate error log (default True)
        console: Also log to stdout (default True)

    Returns:
        Tuple of (log_file_path, error_log_path or None)

    Example
    -------
    ::

        import tabtk

        tabtk.setup_logging('nightly_roster_load')
        with tabtk.connect('warehouse') as engine:
            engine.bulk_load_file('roster.txt', 'staging.roster')
        if tabtk.errors_logged():
            sys.exit(1)
    """
    global _error_handler, _main_log_path, _error_log_path

    if script_name is None:
        script_name = Path(sys.argv[0]).stem or 'tabtk'
    logging_config = _logging_settings()

    log_dir = log_dir or logging_config.get('directory', './logs')
    level = (level or logging_config.get('level', 'INFO')).upper()
    split_errors = split_errors if split_errors is not None else logging_config.get('split_errors', True)
    console = console if console is not None else logging_config.get('console', True)
    log_format = logging_config.get('format', '%(asctime)s [%(levelname)s] %(name)s: %(message)s')
    timestamp_format = logging_config.get('timestamp_format', '%Y-%m-%d %H:%M:%S')
    filename_format = logging_config.get('filename_format', '%Y%m%d_%H%M%S')

    numeric_level = logging.getLevelName(level)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    log_dir_path = Path(log_dir)
    log_dir_path.mkdir(parents=True, exist_ok=True)

    stem = f"{script_name}_{datetime.now().strftime(filename_format)}" if filename_format else script_name
    log_file = log_dir_path / f"{stem}.log"
    error_file = log_dir_path / f"{stem}_error.log" if split_errors else None

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    # replace whatever a previous setup_logging() call installed
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format, datefmt=timestamp_format)

    _error_handler = ErrorCountHandler(
        error_log_path=str(error_file) if error_file else None,
        formatter=formatter
    )
    root_logger.addHandler(_error_handler)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    logging.info(f"Logging initialized: {log_file}")
    if error_file:
        logging.info(f"Error log will be created at: {error_file} (if errors occur)")

    _main_log_path = str(log_file)
    _error_log_path = str(error_file) if error_file else None
    return _main_log_path, _error_log_path


def errors_logged() -> Optional[str]:
    """
    Path of the log holding errors if any ERROR or CRITICAL record was logged, else None.

    Returns the error log when split_errors is on and the main log otherwise.
    Returns None if setup_logging() was never called.
    """
    if _error_handler is None:
        logger.warning("errors_logged() called but setup_logging() was not called")
        return None
    if _error_handler.error_count == 0:
        return None
    return _error_log_path or _main_log_path


def cleanup_old_logs(
    log_dir: Optional[str] = None,
    retention_days: Optional[int] = None,
    pattern: str = "*.log",
    dry_run: bool = False
) -> List[str]:
    """
    Remove log files last modified more than ``retention_days`` ago.

    Args:
        log_dir: Directory to clean (default from ``settings['logging']``)
        retention_days: Days of logs to keep (default 30)
        pattern: Glob pattern for log files
        dry_run: Only report what would be deleted

    Returns:
        Deleted (or would-be-deleted) file paths
    """
    logging_config = _logging_settings()
    log_dir_path = Path(log_dir or logging_config.get('directory', './logs'))
    retention_days = retention_days or logging_config.get('retention_days', 30)

    if not log_dir_path.exists():
        logger.warning(f"Log directory does not exist: {log_dir_path}")
        return []

    cutoff = datetime.now() - timedelta(days=retention_days)
    deleted = []
    for log_file in sorted(log_dir_path.glob(pattern)):
        if not log_file.is_file():
            continue
        if datetime.fromtimestamp(log_file.stat().st_mtime) >= cutoff:
            continue
        if dry_run:
            logger.info(f"Would delete: {log_file}")
        else:
            try:
                log_file.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete {log_file}: {e}")
                continue
            logger.info(f"Deleted old log: {log_file}")
        deleted.append(str(log_file))

    if deleted and not dry_run:
        logger.info(f"Cleaned up {len(deleted)} old log files")
    return deleted
