"""
Logging - Log setup for the custody engine.

Console output always; with a positive retention, a daily file
(custody-YYYY-MM-DD.log) in the logs directory, pruned on startup.
"""

from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional
import logging

from utils import get_logs_dir

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_FILE_PREFIX = "custody-"
LOG_FILE_DATE = "%Y-%m-%d"


def _handler(handler: logging.Handler, level: int, datefmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=datefmt))
    return handler


def configure_logging(level: int = logging.INFO, retention_days: int = 0) -> None:
    """
    Configure the root logger.

    Does nothing if the root logger already has handlers (e.g. under a test
    runner or an embedding application).

    Args:
        level: Logging level (default: INFO)
        retention_days: Days of log files to keep (0 = console only)
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    root_logger.setLevel(level)
    root_logger.addHandler(_handler(logging.StreamHandler(), level, '%H:%M:%S'))

    if retention_days > 0:
        file_handler = logging.FileHandler(get_log_file_path(), encoding='utf-8')
        root_logger.addHandler(_handler(file_handler, level, '%Y-%m-%d %H:%M:%S'))
        removed = cleanup_old_logs(retention_days)
        if removed:
            logging.getLogger(__name__).debug(f"Removed {removed} old log file(s)")


def get_log_file_path(day: Optional[datetime] = None) -> Path:
    """Log file for a given day (today by default)."""
    day = day or datetime.now()
    return get_logs_dir() / f"{LOG_FILE_PREFIX}{day.strftime(LOG_FILE_DATE)}.log"


def _log_file_date(path: Path) -> Optional[date]:
    try:
        return datetime.strptime(path.stem[len(LOG_FILE_PREFIX):], LOG_FILE_DATE).date()
    except ValueError:
        return None


def cleanup_old_logs(retention_days: int) -> int:
    """
    Delete log files older than retention_days.

    Files whose name carries no date are left alone.

    Returns:
        Number of files deleted
    """
    if retention_days < 0:
        return 0

    cutoff = (datetime.now() - timedelta(days=retention_days)).date()
    deleted = 0
    for path in get_logs_dir().glob(f"{LOG_FILE_PREFIX}*.log"):
        file_date = _log_file_date(path)
        if file_date is None or file_date >= cutoff:
            continue
        try:
            path.unlink()
            deleted += 1
        except OSError as e:
            logging.getLogger(__name__).warning(f"Could not remove {path.name}: {e}")
    return deleted
